"""Narrow interfaces for collaborators outside the orchestration core.

Notification delivery, commission bookkeeping, LLM completion, intent
classification, identity resolution and the service catalog all live
outside this package; the core only sees these abstractions.
"""

from abc import ABC, abstractmethod
from typing import Any

from flowcore.domain.models.chat import Identity
from flowcore.domain.models.dialog_session import Intent
from flowcore.domain.models.entity import Order
from flowcore.domain.models.notification import Notification
from flowcore.domain.models.service_offering import ServiceOffering


class Notifier(ABC):
    """Delivers in-app (and optionally email) notifications."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Send a notification to one user.

        Raises:
            Exception: Any delivery failure. Callers running inside event
                handlers rely on the event bus to contain it.
        """
        pass


class CommissionProcessor(ABC):
    """Books affiliate commission when an order's payment is confirmed."""

    @abstractmethod
    async def process_order_commission(self, order: Order) -> None:
        """Record commission for ``order``. Must be idempotent per order id."""
        pass


class LLMProvider(ABC):
    """Chat-completion provider. May time out or fail."""

    @abstractmethod
    async def complete(self, messages: list[dict[str, Any]]) -> str:
        """Return assistant text for an OpenAI-style message list.

        Raises:
            ProviderError: On any failure, including timeouts and empty replies.
        """
        pass


class IntentClassifier(ABC):
    """Pure ``text -> Intent`` mapping. Deterministic, no I/O."""

    @abstractmethod
    def classify(self, text: str) -> Intent:
        pass


class IdentityResolver(ABC):
    """Derives a stable session key from auth identity or an anonymous cookie token.

    Resolving the same user id, or the same valid anonymous token, must
    always yield the same key.
    """

    @abstractmethod
    def resolve(self, user_id: str | None, anonymous_token: str | None) -> Identity:
        pass


class ServiceCatalog(ABC):
    """Read-only view of purchasable services."""

    @abstractmethod
    async def find_match(self, text: str, platform: str | None = None) -> ServiceOffering | None:
        """Best active offering for a free-text service description, or None."""
        pass

    @abstractmethod
    async def list_active(self, limit: int = 10) -> list[ServiceOffering]:
        pass
