"""Audit trail and transition metadata models."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Timezone-aware current UTC time used for every persisted timestamp."""
    return datetime.now(UTC)


class AuditEntry(BaseModel):
    """One structured timeline record of a status change or lifecycle event.

    Timeline entries are append-only and ordered by insertion; they are
    never edited or removed once written.
    """

    event: str = Field(
        ...,
        description="Event name; the target state for transitions (e.g. 'closed')",
        min_length=1,
    )
    from_state: str | None = Field(
        default=None,
        description="Status before the event, None for creation events",
    )
    to_state: str | None = Field(
        default=None,
        description="Status after the event",
    )
    at: datetime = Field(
        default_factory=utc_now,
        description="When the event happened",
    )
    actor: str = Field(
        default="system",
        description="Who caused the event (user id, admin id, 'system', 'cron')",
    )
    reason: str | None = Field(
        default=None,
        description="Free-text reason supplied by the actor",
    )
    meta: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional structured context",
    )

    model_config = ConfigDict(
        frozen=True,  # Immutable audit trail
        validate_assignment=True,
    )


class StatusLogEntry(BaseModel):
    """Human-readable status log line shown to admins and users."""

    text: str = Field(..., description="Rendered log line")
    by: str = Field(default="system", description="Actor that produced the line")
    at: datetime = Field(default_factory=utc_now, description="When the line was written")

    model_config = ConfigDict(frozen=True)


class TransitionMeta(BaseModel):
    """Caller-supplied metadata attached to a transition.

    Constructing this from a malformed dict raises a pydantic validation
    error which the engine re-raises as the orchestration ``ValidationError``.
    """

    actor: str = Field(
        default="system",
        description="Identifier of whoever requested the transition",
        min_length=1,
        max_length=200,
    )
    reason: str | None = Field(
        default=None,
        description="Optional human-readable reason",
        max_length=2000,
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary structured payload forwarded to hooks",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("actor")
    @classmethod
    def validate_actor(cls, v: str) -> str:
        """Actors are trimmed and must not be blank."""
        v = v.strip()
        if not v:
            raise ValueError("actor cannot be blank")
        return v


class CanTransitionResult(BaseModel):
    """Result of a pre-flight transition check. Produced without any writes."""

    allowed: bool = Field(..., description="Whether the transition would be accepted")
    current_state: str | None = Field(
        default=None,
        description="Current status, None when the entity does not exist",
    )
    allowed_states: list[str] = Field(
        default_factory=list,
        description="Legal next states from the current state",
    )
    reason: str | None = Field(
        default=None,
        description="Why the transition is not allowed",
    )

    model_config = ConfigDict(frozen=True)
