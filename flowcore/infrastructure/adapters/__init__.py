"""Adapters for external collaborators."""

from flowcore.infrastructure.adapters.identity_resolver import FernetIdentityResolver
from flowcore.infrastructure.adapters.llm_adapter import OpenAICompatibleProvider
from flowcore.infrastructure.adapters.notifier import LoggingNotifier
from flowcore.infrastructure.adapters.service_catalog import InMemoryServiceCatalog

__all__ = [
    "FernetIdentityResolver",
    "OpenAICompatibleProvider",
    "LoggingNotifier",
    "InMemoryServiceCatalog",
]
