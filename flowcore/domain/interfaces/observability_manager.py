"""ObservabilityManager interface for events and logging."""

from abc import ABC, abstractmethod
from typing import Any


class ObservabilityManager(ABC):
    """Abstract interface for observability (events and structured logs).

    Components never talk to a logging backend directly; they emit
    events and log lines through this interface so tests can capture
    them and deployments can route them.
    """

    @abstractmethod
    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Emit an event for observability.

        Args:
            event_type: Type of event (e.g., "entity_transitioned", "sweep_completed").
            payload: Event payload data.
            metadata: Optional metadata (timestamp, actor, etc.).

        Raises:
            ObservabilityError: If event emission fails.
        """
        pass

    @abstractmethod
    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a message with structured context.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            message: Log message.
            context: Optional structured context data.

        Raises:
            ObservabilityError: If logging fails.
        """
        pass

    async def try_log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> bool:
        """Log without raising.

        Used on paths that must never fail because of the logging backend
        (event handlers, fallbacks in the chat layer).

        Returns:
            True if the line was logged, False if the backend failed.
        """
        try:
            await self.log(level=level, message=message, context=context)
        except ObservabilityError:
            return False
        return True

    async def try_emit(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Emit an event without raising; a failure is logged as WARNING instead."""
        try:
            await self.emit_event(event_type=event_type, payload=payload, metadata=metadata)
        except Exception as e:
            await self.try_log(
                level="WARNING",
                message=f"Failed to emit {event_type} event: {e}",
                context={"event_type": event_type},
            )
            return False
        return True


class ObservabilityError(Exception):
    """Raised when observability operations fail."""

    pass
