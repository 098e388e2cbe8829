"""Transitionable entity models.

Each lifecycle entity carries a ``status``, a human-readable ``status_log``
and a structured ``timeline``. The transition engine mutates these fields;
derived timestamps are owned by each entity class through
``apply_transition_effects``.
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flowcore.domain.models.state_transition import AuditEntry, StatusLogEntry, utc_now


class EntityType(str, Enum):
    """Closed set of entity types governed by a state graph."""

    Order = "order"
    """Marketplace service order."""

    Ticket = "ticket"
    """Support ticket."""

    Rental = "rental"
    """Time-boxed account or tool rental."""

    Wallet = "wallet"
    """Wallet credit or debit transaction."""

    AffiliateWithdrawal = "affiliate_withdrawal"
    """Affiliate payout request."""

    ServiceRequest = "service_request"
    """Lead captured from chat for a service that is not in the catalog."""


class Urgency(str, Enum):
    """Normalized urgency values for service requests."""

    Asap = "asap"
    ThisWeek = "this_week"
    ThisMonth = "this_month"
    Flexible = "flexible"


class TransitionableEntity(BaseModel):
    """Base model for any record whose status moves along a state graph.

    The entity is owned by its domain module (creation and deletion happen
    elsewhere); the transition engine only changes ``status`` and appends
    to the logs.
    """

    entity_type: ClassVar[EntityType]

    id: str = Field(..., description="Stable entity identifier", min_length=1)
    status: str = Field(..., description="Current lifecycle state", min_length=1)
    user_id: str | None = Field(default=None, description="Owning user, if any")
    version: int = Field(
        default=0,
        description="Incremented on every transition; used for conditional writes",
        ge=0,
    )
    status_log: list[StatusLogEntry] = Field(
        default_factory=list,
        description="Human-readable status history",
    )
    timeline: list[AuditEntry] = Field(
        default_factory=list,
        description="Structured, append-only audit trail",
    )
    markers: list[str] = Field(
        default_factory=list,
        description="Idempotency markers claimed by periodic jobs",
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(validate_assignment=True)

    def apply_transition_effects(self, previous: str, next_state: str, at: datetime) -> None:
        """Set type-specific derived fields after a status change.

        Called by the transition engine after ``status`` has been updated and
        before the entity is persisted. The default does nothing.
        """

    def record_event(
        self,
        event: str,
        actor: str = "system",
        reason: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append a non-transition event to the timeline."""
        entry = AuditEntry(
            event=event,
            from_state=self.status,
            to_state=self.status,
            actor=actor,
            reason=reason,
            meta=meta or {},
        )
        self.timeline.append(entry)
        return entry

    def has_marker(self, marker: str) -> bool:
        return marker in self.markers

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id!r}, status={self.status!r}, "
            f"version={self.version})"
        )


class Order(TransitionableEntity):
    """Service order. Payment verification happens on pending -> in_progress."""

    entity_type: ClassVar[EntityType] = EntityType.Order

    status: str = "pending"
    service_name: str = ""
    amount: float | None = None
    payment_verified_at: datetime | None = None
    paid_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    def apply_transition_effects(self, previous: str, next_state: str, at: datetime) -> None:
        if previous == "pending" and next_state == "in_progress":
            if self.payment_verified_at is None:
                self.payment_verified_at = at
            if self.paid_at is None:
                self.paid_at = at
        elif next_state == "completed":
            self.completed_at = at
        elif next_state == "cancelled":
            self.cancelled_at = at


class Ticket(TransitionableEntity):
    """Support ticket."""

    entity_type: ClassVar[EntityType] = EntityType.Ticket

    status: str = "open"
    subject: str = ""
    first_response_at: datetime | None = None
    resolved_at: datetime | None = None

    def apply_transition_effects(self, previous: str, next_state: str, at: datetime) -> None:
        if next_state == "in_progress" and self.first_response_at is None:
            self.first_response_at = at
        elif next_state == "closed":
            self.resolved_at = at


class Rental(TransitionableEntity):
    """Rental with an end date; expiry is driven by the sweep job."""

    entity_type: ClassVar[EntityType] = EntityType.Rental

    status: str = "pending"
    service_name: str = ""
    end_date: datetime | None = None
    activated_at: datetime | None = None
    expired_at: datetime | None = None
    cancelled_at: datetime | None = None
    renewed_at: datetime | None = None

    def apply_transition_effects(self, previous: str, next_state: str, at: datetime) -> None:
        if next_state == "active" and self.activated_at is None:
            self.activated_at = at
        elif next_state == "expired":
            self.expired_at = at
        elif next_state == "cancelled":
            self.cancelled_at = at
        elif next_state == "renewed":
            self.renewed_at = at


class WalletTransaction(TransitionableEntity):
    """Wallet credit or debit awaiting settlement."""

    entity_type: ClassVar[EntityType] = EntityType.Wallet

    status: str = "pending"
    kind: str = Field(default="credit", pattern="^(credit|debit)$")
    amount: float = 0.0
    balance_after: float | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None

    def apply_transition_effects(self, previous: str, next_state: str, at: datetime) -> None:
        if next_state == "completed":
            self.completed_at = at
        elif next_state == "failed":
            self.failed_at = at
        elif next_state == "cancelled":
            self.cancelled_at = at


class AffiliateWithdrawal(TransitionableEntity):
    """Affiliate payout request reviewed by an admin."""

    entity_type: ClassVar[EntityType] = EntityType.AffiliateWithdrawal

    status: str = "pending"
    amount: float = 0.0
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    rejected_at: datetime | None = None

    def apply_transition_effects(self, previous: str, next_state: str, at: datetime) -> None:
        if next_state == "approved":
            self.approved_at = at
        elif next_state == "paid":
            self.paid_at = at
        elif next_state == "rejected":
            self.rejected_at = at


class ServiceRequest(TransitionableEntity):
    """Lead-capture draft and, once submitted, an admin-facing service request.

    ``budget`` is the only optional field. ``budget_answered`` separates
    "not yet asked" (False) from "explicitly skipped" (True with
    ``budget`` left as None).
    """

    entity_type: ClassVar[EntityType] = EntityType.ServiceRequest

    status: str = "draft"
    source: str = "chat"
    identity_key: str | None = None
    raw_message: str = ""
    requested_service: str | None = None
    platform: str | None = None
    country: str | None = None
    urgency: Urgency | None = None
    budget: float | None = Field(default=None, ge=0)
    budget_answered: bool = False
    budget_currency: str = "USD"
    capture_step: str | None = None
    notes: str = ""
    submitted_at: datetime | None = None
    contacted_at: datetime | None = None
    converted_at: datetime | None = None
    closed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @field_validator("requested_service", "platform", "country")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def apply_transition_effects(self, previous: str, next_state: str, at: datetime) -> None:
        if next_state == "new":
            self.submitted_at = at
            self.capture_step = "created"
        elif next_state == "contacted":
            self.contacted_at = at
        elif next_state == "converted":
            self.converted_at = at
        elif next_state == "closed":
            self.closed_at = at
        elif next_state == "cancelled":
            self.cancelled_at = at
            if previous == "draft":
                self.capture_step = "cancelled"


ENTITY_MODELS: dict[EntityType, type[TransitionableEntity]] = {
    EntityType.Order: Order,
    EntityType.Ticket: Ticket,
    EntityType.Rental: Rental,
    EntityType.Wallet: WalletTransaction,
    EntityType.AffiliateWithdrawal: AffiliateWithdrawal,
    EntityType.ServiceRequest: ServiceRequest,
}
"""Concrete model per entity type, used by stores to rehydrate documents."""
