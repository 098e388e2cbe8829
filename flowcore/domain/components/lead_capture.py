"""LeadCaptureFlow: resumable multi-field form over a ServiceRequest draft.

Collects requested_service, platform, country, urgency and an optional
budget from free-form chat when no catalog item matches. The draft moves
draft -> new when every field is answered, or draft -> cancelled on an
explicit cancel phrase, always through the TransitionEngine.
"""

import re
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flowcore.domain.components.dialog_router import (
    DEFAULT_NUDGE,
    is_cancel_phrase,
    normalize,
    normalize_urgency,
    reset_flow,
)
from flowcore.domain.components.session_manager import is_confused
from flowcore.domain.components.transition_engine import TransitionEngine
from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.models.dialog_session import DialogSession, Flow, LeadCaptureData, Step
from flowcore.domain.models.entity import EntityType, ServiceRequest
from flowcore.domain.models.errors import ValidationError

MAIN_MENU: tuple[str, ...] = ("Buy service", "Order status", "Interview help")

_BUDGET_SKIP = re.compile(
    r"^(skip|no|none|n/?a|no budget|not sure|don'?t know|idk|later|no idea)$",
    re.IGNORECASE,
)
_AMOUNT = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*(k)?\b", re.IGNORECASE)
_COUNTRY = re.compile(r"^[^\W\d_][\w .'\-()]*$")


class LeadField(BaseModel):
    """One field of the lead-capture form."""

    name: str
    step: Step
    prompt: str
    rephrase: str
    quick_replies: tuple[str, ...] = ()
    optional: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def question_key(self) -> str:
        return f"lead_{self.name}"


LEAD_FIELDS: tuple[LeadField, ...] = (
    LeadField(
        name="requested_service",
        step=Step.LeadRequestedService,
        prompt="Sure, let's set up a custom request. What service do you need?",
        rephrase="In a few words, what should we do for you?",
    ),
    LeadField(
        name="platform",
        step=Step.LeadPlatform,
        prompt="Which platform or company is this for?",
        rephrase="Which website, app or company is the service for?",
        quick_replies=("HFM", "Binance", "PayPal", "Other"),
    ),
    LeadField(
        name="country",
        step=Step.LeadCountry,
        prompt="Which country do you need this for?",
        rephrase="Which country should the service be set up in?",
        quick_replies=("USA", "UK", "Nigeria", "Other"),
    ),
    LeadField(
        name="urgency",
        step=Step.LeadUrgency,
        prompt="How soon do you need it?",
        rephrase="When should we have this done: ASAP, this week, this month or flexible?",
        quick_replies=("ASAP", "This week", "This month", "Flexible"),
    ),
    LeadField(
        name="budget",
        step=Step.LeadBudget,
        prompt="Do you have a budget in mind (USD)? You can also skip this.",
        rephrase="Roughly how much would you like to spend, in USD? Type 'skip' to leave it open.",
        quick_replies=("Skip",),
        optional=True,
    ),
)
LEAD_FIELDS_BY_NAME: dict[str, LeadField] = {field.name: field for field in LEAD_FIELDS}


class LeadReply(BaseModel):
    """Outcome of one lead-capture turn."""

    reply: str
    quick_replies: list[str] = Field(default_factory=list)
    question_key: str | None = None
    completed: bool = False
    cancelled: bool = False
    reference_id: str | None = None

    model_config = ConfigDict(frozen=True)


def next_lead_question(draft: ServiceRequest) -> str | None:
    """Name of the first field still to ask, or None when the form is complete.

    Pure. Budget counts as answered once ``budget_answered`` is set, even
    when the user skipped it and ``budget`` stayed None.
    """
    for field in LEAD_FIELDS:
        if field.optional:
            if not draft.budget_answered:
                return field.name
        elif getattr(draft, field.name) in (None, ""):
            return field.name
    return None


def _audit_value(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def is_budget_skip(text: str) -> bool:
    return bool(_BUDGET_SKIP.match(normalize(text)))


def validate_lead_answer(field: str, text: str) -> Any:
    """Validate and normalize one answer.

    Returns:
        The value to store. For budget, None means explicitly skipped.

    Raises:
        ValidationError: With a user-readable hint when the answer is unusable.
    """
    value = re.sub(r"\s+", " ", text or "").strip()
    if field == "requested_service":
        if len(value) < 2:
            raise ValidationError("Please describe the service in a few words.", field=field)
        return value[:200]
    if field == "platform":
        if not value:
            raise ValidationError("Please tell me the platform name, or pick 'Other'.", field=field)
        return value[:100]
    if field == "country":
        if len(value) < 2 or not _COUNTRY.match(value):
            raise ValidationError(
                "Please reply with a country name, like 'USA' or 'Nigeria'.", field=field
            )
        return value[:100]
    if field == "urgency":
        urgency = normalize_urgency(value)
        if urgency is None:
            raise ValidationError(
                "Please choose one of: ASAP, this week, this month or flexible.", field=field
            )
        return urgency
    if field == "budget":
        if is_budget_skip(value):
            return None
        match = _AMOUNT.search(value)
        if match is None:
            raise ValidationError(
                "That doesn't look like an amount. Reply with a number like 150, or 'skip'.",
                field=field,
            )
        amount = float(match.group(1).replace(",", ""))
        if match.group(2):
            amount *= 1000
        return amount
    raise ValidationError(f"Unknown lead field: {field}", field=field)


class LeadCaptureFlow:
    """Drives the lead-capture form for one dialogue session at a time."""

    def __init__(
        self,
        transition_engine: TransitionEngine,
        observability_manager: ObservabilityManager,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._engine = transition_engine
        self._repository = transition_engine.repository(EntityType.ServiceRequest)
        self._observability = observability_manager
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    @staticmethod
    def draft_id(session: DialogSession) -> str | None:
        if session.flow != Flow.LeadCapture or not isinstance(session.collected, LeadCaptureData):
            return None
        return session.collected.draft_id

    def is_active(self, session: DialogSession) -> bool:
        return self.draft_id(session) is not None and session.step not in (
            None,
            Step.Complete,
            Step.Cancelled,
            Step.Done,
        )

    async def start(
        self,
        session: DialogSession,
        raw_message: str,
        prefill: dict[str, str | None] | None = None,
        user_id: str | None = None,
    ) -> LeadReply:
        """Create a draft, attach it to the session and ask the first open question."""
        prefill = {k: v for k, v in (prefill or {}).items() if k in LEAD_FIELDS_BY_NAME and v}
        urgency = normalize_urgency(prefill.pop("urgency", None)) if "urgency" in prefill else None

        draft = ServiceRequest(
            id=self._id_factory(),
            status="draft",
            user_id=user_id,
            identity_key=session.identity_key,
            raw_message=raw_message[:2000],
            urgency=urgency,
            **{k: str(v)[:200] for k, v in prefill.items() if k != "budget"},
        )
        draft.capture_step = next_lead_question(draft)
        draft.record_event(
            "draft_created",
            actor=session.identity_key,
            meta={"prefilled": sorted(k for k in prefill if getattr(draft, k, None))},
        )
        await self._repository.insert(draft)

        session.flow = Flow.LeadCapture
        session.collected = LeadCaptureData(draft_id=draft.id)
        session.asked_questions = set()
        await self._observability.try_log(
            level="INFO",
            message="Lead capture started",
            context={"service_request_id": draft.id, "identity_key": session.identity_key},
        )
        return await self._advance(session, draft, intro=True)

    async def handle(self, session: DialogSession, text: str) -> LeadReply:
        """Process one answer for the active draft."""
        draft_id = self.draft_id(session)
        draft = await self._repository.find_by_id(draft_id) if draft_id else None
        if not isinstance(draft, ServiceRequest) or draft.status != "draft":
            reset_flow(session)
            return LeadReply(
                reply="That request is no longer open. What would you like to do next?",
                quick_replies=list(MAIN_MENU),
            )

        if is_cancel_phrase(text):
            return await self.cancel(session, draft)

        field_name = next_lead_question(draft)
        if field_name is None:
            return await self._complete(session, draft)
        field = LEAD_FIELDS_BY_NAME[field_name]

        skipping_budget = field.optional and is_budget_skip(text)
        already_asked = field.question_key in session.asked_questions
        if not skipping_budget and already_asked and is_confused(text):
            return LeadReply(
                reply=field.rephrase,
                quick_replies=list(field.quick_replies),
                question_key=field.question_key,
            )

        try:
            value = validate_lead_answer(field_name, text)
        except ValidationError as e:
            return LeadReply(reply=e.message, quick_replies=list(field.quick_replies))

        if field_name == "budget":
            draft.budget = value
            draft.budget_answered = True
        else:
            setattr(draft, field_name, value)
        draft.record_event(
            "field_captured",
            actor=session.identity_key,
            meta={"field": field_name, "value": _audit_value(value)},
        )
        return await self._advance(session, draft)

    async def _advance(
        self,
        session: DialogSession,
        draft: ServiceRequest,
        intro: bool = False,
    ) -> LeadReply:
        field_name = next_lead_question(draft)
        if field_name is None:
            await self._repository.save(draft)
            return await self._complete(session, draft)

        draft.capture_step = field_name
        if not intro:
            await self._repository.save(draft)

        field = LEAD_FIELDS_BY_NAME[field_name]
        session.step = field.step
        if field.question_key in session.asked_questions:
            return LeadReply(reply=DEFAULT_NUDGE, quick_replies=list(field.quick_replies))
        session.asked_questions.add(field.question_key)
        return LeadReply(
            reply=field.prompt,
            quick_replies=list(field.quick_replies),
            question_key=field.question_key,
        )

    async def _complete(self, session: DialogSession, draft: ServiceRequest) -> LeadReply:
        submitted = await self._engine.transition(
            EntityType.ServiceRequest,
            draft.id,
            "new",
            {"actor": session.identity_key, "reason": "Lead capture completed"},
        )
        submitted.record_event(
            "created",
            actor=session.identity_key,
            meta={"reference_id": submitted.id},
        )
        await self._repository.save(submitted)

        session.step = Step.Complete
        reference = submitted.id[-8:].upper()
        return LeadReply(
            reply=(
                f"Thanks! Your request has been submitted (reference {reference}). "
                "An admin will contact you soon."
            ),
            quick_replies=list(MAIN_MENU),
            completed=True,
            reference_id=submitted.id,
        )

    async def cancel(self, session: DialogSession, draft: ServiceRequest) -> LeadReply:
        """Cancel the draft immediately, whatever fields remain unset."""
        await self._engine.transition(
            EntityType.ServiceRequest,
            draft.id,
            "cancelled",
            {"actor": session.identity_key, "reason": "Cancelled by user in chat"},
        )
        reset_flow(session)
        return LeadReply(
            reply="No problem, I've cancelled that request. Anything else I can help with?",
            quick_replies=list(MAIN_MENU),
            cancelled=True,
            reference_id=draft.id,
        )
