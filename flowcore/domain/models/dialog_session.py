"""Dialogue session models: flows, steps and per-flow collected data."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from flowcore.domain.models.state_transition import utc_now


class Flow(str, Enum):
    """Overall task a conversation is working on."""

    BuyService = "BUY_SERVICE"
    OrderStatus = "ORDER_STATUS"
    InterviewHelp = "INTERVIEW_HELP"
    PaymentHelp = "PAYMENT_HELP"
    CustomService = "CUSTOM_SERVICE"
    ApplyToWork = "APPLY_TO_WORK"
    LeadCapture = "LEAD_CAPTURE"


class Step(str, Enum):
    """Position within a flow. Terminal markers end the flow."""

    AskServiceType = "ASK_SERVICE_TYPE"
    ListServices = "LIST_SERVICES"
    AskPlatform = "ASK_PLATFORM"
    AskRegion = "ASK_REGION"
    AskUrgency = "ASK_URGENCY"
    AskOrderId = "ASK_ORDER_ID"
    AskInterviewPlatform = "ASK_INTERVIEW_PLATFORM"
    AskInterviewUrgency = "ASK_INTERVIEW_URGENCY"
    LeadRequestedService = "LEAD_REQUESTED_SERVICE"
    LeadPlatform = "LEAD_PLATFORM"
    LeadCountry = "LEAD_COUNTRY"
    LeadUrgency = "LEAD_URGENCY"
    LeadBudget = "LEAD_BUDGET"
    Complete = "COMPLETE"
    Cancelled = "CANCELLED"
    Done = "DONE"


TERMINAL_STEPS: frozenset[Step] = frozenset({Step.Complete, Step.Cancelled, Step.Done})


class Intent(str, Enum):
    """Deterministic intent tags produced by the classifier."""

    BuyService = "BUY_SERVICE"
    OrderStatus = "ORDER_STATUS"
    InterviewHelp = "INTERVIEW_HELP"
    PaymentHelp = "PAYMENT_HELP"
    CustomService = "CUSTOM_SERVICE"
    GeneralChat = "GENERAL_CHAT"


class _FlowData(BaseModel):
    """Shared behaviour of the per-flow collected-data variants."""

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ()

    model_config = ConfigDict(validate_assignment=True)

    def known(self, field: str) -> bool:
        value = getattr(self, field, None)
        return value is not None and value != ""

    def missing_fields(self) -> list[str]:
        return [name for name in self.REQUIRED_FIELDS if not self.known(name)]

    def is_complete(self) -> bool:
        return not self.missing_fields()


class BuyServiceData(_FlowData):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("service_type", "platform", "region", "urgency")

    flow: Literal[Flow.BuyService] = Flow.BuyService
    service_type: str | None = None
    platform: str | None = None
    region: str | None = None
    urgency: str | None = None


class InterviewHelpData(_FlowData):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("platform", "urgency")

    flow: Literal[Flow.InterviewHelp] = Flow.InterviewHelp
    platform: str | None = None
    urgency: str | None = None


class OrderStatusData(_FlowData):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("order_id",)

    flow: Literal[Flow.OrderStatus] = Flow.OrderStatus
    order_id: str | None = None


class PaymentHelpData(_FlowData):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("order_id",)

    flow: Literal[Flow.PaymentHelp] = Flow.PaymentHelp
    order_id: str | None = None


class CustomServiceData(_FlowData):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("service_type",)

    flow: Literal[Flow.CustomService] = Flow.CustomService
    service_type: str | None = None


class ApplyToWorkData(_FlowData):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("position",)

    flow: Literal[Flow.ApplyToWork] = Flow.ApplyToWork
    position: str | None = None


class LeadCaptureData(_FlowData):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("draft_id",)

    flow: Literal[Flow.LeadCapture] = Flow.LeadCapture
    draft_id: str | None = None


FlowData = Annotated[
    BuyServiceData
    | InterviewHelpData
    | OrderStatusData
    | PaymentHelpData
    | CustomServiceData
    | ApplyToWorkData
    | LeadCaptureData,
    Field(discriminator="flow"),
]

FLOW_DATA_MODELS: dict[Flow, type[_FlowData]] = {
    Flow.BuyService: BuyServiceData,
    Flow.InterviewHelp: InterviewHelpData,
    Flow.OrderStatus: OrderStatusData,
    Flow.PaymentHelp: PaymentHelpData,
    Flow.CustomService: CustomServiceData,
    Flow.ApplyToWork: ApplyToWorkData,
    Flow.LeadCapture: LeadCaptureData,
}


def new_flow_data(flow: Flow, **values: Any) -> Any:
    """Create an empty collected-data variant for ``flow``, optionally prefilled."""
    return FLOW_DATA_MODELS[flow](**values)


class ChatMessage(BaseModel):
    """One entry of the bounded message history."""

    role: Literal["user", "assistant"]
    content: str
    at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


class DialogSession(BaseModel):
    """Per-identity conversation state.

    ``identity_key`` is derived once and never changes. ``expires_at`` is
    slid forward on every saved turn.
    """

    identity_key: str = Field(..., min_length=1, frozen=True)
    authenticated: bool = False
    flow: Flow | None = None
    step: Step | None = None
    collected: FlowData | None = None
    asked_questions: set[str] = Field(default_factory=set)
    message_history: list[ChatMessage] = Field(default_factory=list)
    last_intent: str | None = None
    turn_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime | None = None

    model_config = ConfigDict(validate_assignment=True)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self) -> str:
        return (
            f"DialogSession(identity_key={self.identity_key!r}, flow={self.flow}, "
            f"step={self.step}, turns={self.turn_count})"
        )
