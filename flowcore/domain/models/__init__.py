"""Domain models for the orchestration core."""

from flowcore.domain.models.chat import ChatMode, ChatRequest, ChatResponse, Identity
from flowcore.domain.models.dialog_session import (
    FLOW_DATA_MODELS,
    TERMINAL_STEPS,
    ApplyToWorkData,
    BuyServiceData,
    ChatMessage,
    CustomServiceData,
    DialogSession,
    Flow,
    FlowData,
    Intent,
    InterviewHelpData,
    LeadCaptureData,
    OrderStatusData,
    PaymentHelpData,
    Step,
    new_flow_data,
)
from flowcore.domain.models.entity import (
    ENTITY_MODELS,
    AffiliateWithdrawal,
    EntityType,
    Order,
    Rental,
    ServiceRequest,
    Ticket,
    TransitionableEntity,
    Urgency,
    WalletTransaction,
)
from flowcore.domain.models.errors import (
    ConcurrentModificationError,
    ConfigError,
    ErrorCategory,
    HookError,
    InvalidTransitionError,
    NotFoundError,
    OrchestrationError,
    ProviderError,
    ValidationError,
)
from flowcore.domain.models.notification import Notification
from flowcore.domain.models.service_offering import ServiceOffering, SweepReport
from flowcore.domain.models.state_transition import (
    AuditEntry,
    CanTransitionResult,
    StatusLogEntry,
    TransitionMeta,
    utc_now,
)
from flowcore.domain.models.transition_event import BatchTransitionResult, TransitionEvent

__all__ = [
    "EntityType",
    "TransitionableEntity",
    "Order",
    "Ticket",
    "Rental",
    "WalletTransaction",
    "AffiliateWithdrawal",
    "ServiceRequest",
    "Urgency",
    "ENTITY_MODELS",
    "AuditEntry",
    "StatusLogEntry",
    "TransitionMeta",
    "CanTransitionResult",
    "TransitionEvent",
    "BatchTransitionResult",
    "utc_now",
    "Flow",
    "Step",
    "Intent",
    "TERMINAL_STEPS",
    "FlowData",
    "FLOW_DATA_MODELS",
    "BuyServiceData",
    "InterviewHelpData",
    "OrderStatusData",
    "PaymentHelpData",
    "CustomServiceData",
    "ApplyToWorkData",
    "LeadCaptureData",
    "new_flow_data",
    "ChatMessage",
    "DialogSession",
    "ChatMode",
    "ChatRequest",
    "ChatResponse",
    "Identity",
    "Notification",
    "ServiceOffering",
    "SweepReport",
    "ErrorCategory",
    "OrchestrationError",
    "ConfigError",
    "NotFoundError",
    "InvalidTransitionError",
    "ValidationError",
    "ProviderError",
    "HookError",
    "ConcurrentModificationError",
]
