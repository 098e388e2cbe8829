"""Error taxonomy for the orchestration core."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories of orchestration errors."""

    ConfigError = "config_error"
    """Unknown entity type, unmapped state or missing collaborator (caller bug)."""

    NotFound = "not_found"
    """Entity id does not resolve to a record."""

    InvalidTransition = "invalid_transition"
    """Requested edge is not in the state graph."""

    ValidationError = "validation_error"
    """Malformed transition metadata or lead-capture answer."""

    ProviderError = "provider_error"
    """Classification or LLM provider failure."""

    HookError = "hook_error"
    """A published-event handler raised."""

    ConcurrentModification = "concurrent_modification"
    """Conditional write lost against a newer version."""


class OrchestrationError(Exception):
    """Base class for typed orchestration failures.

    Every subclass carries an ``ErrorCategory`` so callers (controllers,
    chat layer) can map failures to user-facing messages without
    inspecting exception types.

    Example:
        ```python
        try:
            await engine.transition(EntityType.Ticket, "t-1", "closed")
        except OrchestrationError as e:
            return {"ok": False, "category": e.category.value, "message": str(e)}
        ```
    """

    category: ErrorCategory = ErrorCategory.ConfigError

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize OrchestrationError.

        Args:
            message: Human-readable error message.
            details: Additional structured error details.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses and logs."""
        return {
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        """String representation of the error."""
        return f"{type(self).__name__}(category={self.category.value}, message={self.message!r})"

    def __str__(self) -> str:
        """Human-readable error message."""
        return self.message


class ConfigError(OrchestrationError):
    """Raised for configuration problems: unknown types, unmapped states, bad graphs."""

    category = ErrorCategory.ConfigError


class NotFoundError(OrchestrationError):
    """Raised when an entity id does not resolve."""

    category = ErrorCategory.NotFound

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


class InvalidTransitionError(OrchestrationError):
    """Raised when the requested next state is not an allowed edge.

    Carries the current state and the allowed next states so callers can
    render the legal actions instead of a generic failure.
    """

    category = ErrorCategory.InvalidTransition

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        next_state: str,
        allowed: Iterable[str],
    ) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.next_state = next_state
        self.allowed = sorted(allowed)
        allowed_text = ", ".join(self.allowed) if self.allowed else "none (terminal state)"
        super().__init__(
            f"Invalid {entity_type} transition from {current_state} to {next_state}; "
            f"allowed: {allowed_text}",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "next_state": next_state,
                "allowed": self.allowed,
            },
        )


class ValidationError(OrchestrationError):
    """Raised when transition metadata or a captured answer fails validation."""

    category = ErrorCategory.ValidationError

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message, details={"field": field} if field else None)

    def __str__(self) -> str:
        """Return error message with field name if available."""
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class ProviderError(OrchestrationError):
    """Raised by classification or LLM providers; always absorbed by the chat layer."""

    category = ErrorCategory.ProviderError

    def __init__(
        self,
        message: str,
        provider_code: str | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.provider_code = provider_code
        self.retryable = retryable
        super().__init__(message, details=details)


class HookError(OrchestrationError):
    """Wraps an exception raised inside an event handler. Logged, never re-raised."""

    category = ErrorCategory.HookError

    def __init__(self, event: str, handler_name: str, cause: BaseException) -> None:
        self.event = event
        self.handler_name = handler_name
        self.cause = cause
        super().__init__(
            f"Handler {handler_name} failed for {event}: {cause}",
            details={
                "event_name": event,
                "handler": handler_name,
                "error_type": type(cause).__name__,
            },
        )


class ConcurrentModificationError(OrchestrationError):
    """Raised when a conditional save finds a newer version than the one loaded."""

    category = ErrorCategory.ConcurrentModification

    def __init__(self, entity_type: str, entity_id: str, expected_version: int) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version})",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_version": expected_version,
            },
        )
