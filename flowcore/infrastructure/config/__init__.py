"""Configuration management."""

from flowcore.infrastructure.config.settings import OrchestratorSettings

__all__ = ["OrchestratorSettings"]
