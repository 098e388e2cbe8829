"""flowcore - lifecycle transitions and dialogue orchestration for a service marketplace."""

from flowcore.domain.models.chat import ChatMode, ChatRequest, ChatResponse
from flowcore.domain.models.entity import EntityType
from flowcore.infrastructure.config.settings import OrchestratorSettings
from flowcore.orchestrator import Orchestrator

__version__ = "0.1.0"

__all__ = [
    "Orchestrator",
    "OrchestratorSettings",
    "EntityType",
    "ChatMode",
    "ChatRequest",
    "ChatResponse",
]
