"""Payloads produced by the transition engine."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flowcore.domain.models.entity import EntityType, TransitionableEntity
from flowcore.domain.models.state_transition import TransitionMeta, utc_now


class TransitionEvent(BaseModel):
    """Published on ``"{type}.{next_state}"`` and on the generic ``"transition"`` event."""

    entity_type: EntityType
    entity_id: str
    item: TransitionableEntity = Field(
        ...,
        description="Snapshot of the entity after the transition was persisted",
    )
    previous_state: str
    next_state: str
    meta: TransitionMeta = Field(default_factory=TransitionMeta)
    transitioned_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)

    @property
    def event_name(self) -> str:
        return f"{self.entity_type.value}.{self.next_state}"

    def summary(self) -> dict[str, Any]:
        """Flat, log-friendly view without the entity body."""
        return {
            "type": self.entity_type.value,
            "id": self.entity_id,
            "from": self.previous_state,
            "to": self.next_state,
            "actor": self.meta.actor,
            "reason": self.meta.reason,
            "transitioned_at": self.transitioned_at.isoformat(),
        }


class BatchTransitionResult(BaseModel):
    """Outcome of one id within a batch transition."""

    id: str
    success: bool
    item: TransitionableEntity | None = None
    error: str | None = None
    error_category: str | None = None

    model_config = ConfigDict(frozen=True)
