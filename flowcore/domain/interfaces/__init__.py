"""Domain interfaces (abstract base classes)."""

from flowcore.domain.interfaces.collaborators import (
    CommissionProcessor,
    IdentityResolver,
    IntentClassifier,
    LLMProvider,
    Notifier,
    ServiceCatalog,
)
from flowcore.domain.interfaces.entity_repository import EntityRepository, StateStoreError
from flowcore.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from flowcore.domain.interfaces.session_store import SessionStore

__all__ = [
    "EntityRepository",
    "StateStoreError",
    "SessionStore",
    "ObservabilityManager",
    "ObservabilityError",
    "Notifier",
    "CommissionProcessor",
    "LLMProvider",
    "IntentClassifier",
    "IdentityResolver",
    "ServiceCatalog",
]
