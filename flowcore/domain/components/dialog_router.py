"""DialogRouter: maps chat input to (flow, step) and advances flows.

Each flow is a static, ordered list of steps; a step names the field it
fills and the question it asks. Steps whose field is already known are
skipped. This is the conversational counterpart of the entity state
graphs: position changes only along declared edges.

Quick-reply routes are consulted before any free-text classification so
a button click always lands on the same flow and step.
"""

import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flowcore.domain.components.session_manager import is_confused
from flowcore.domain.models.dialog_session import (
    TERMINAL_STEPS,
    DialogSession,
    Flow,
    Intent,
    Step,
    new_flow_data,
)
from flowcore.domain.models.entity import Urgency

DEFAULT_NUDGE = (
    "I'm still waiting on this one. Pick an option below, or type 'cancel' to start over."
)
URGENCY_REPLIES: tuple[str, ...] = ("ASAP", "This week", "Flexible")


class QuickReplyRoute(BaseModel):
    """Deterministic target of a quick-reply button or trigger phrase."""

    flow: Flow | None = None
    step: Step | None = None
    extra_fields: dict[str, str] = Field(default_factory=dict)
    escalate: bool = False

    model_config = ConfigDict(frozen=True)


class StepSpec(BaseModel):
    """One step of a flow: the field it fills and the question it asks."""

    step: Step
    field: str
    question_key: str
    prompt: str
    quick_replies: tuple[str, ...] = ()
    rephrase: str = "Can you clarify what you need?"
    nudge: str = DEFAULT_NUDGE

    model_config = ConfigDict(frozen=True)


class FlowAdvance(BaseModel):
    """Result of ``advance_flow``: where the flow goes after an answer."""

    next_step: Step | None
    complete: bool
    field: str | None = None
    value: str | None = None

    model_config = ConfigDict(frozen=True)


class StepPrompt(BaseModel):
    """What to say for the current step.

    ``question_key`` is None when the question was already asked and the
    user was not confused; the text is then a nudge, never the question.
    """

    question_key: str | None
    text: str
    quick_replies: list[str] = Field(default_factory=list)
    rephrased: bool = False

    model_config = ConfigDict(frozen=True)


QUICK_REPLY_ROUTES: Mapping[str, QuickReplyRoute] = MappingProxyType(
    {
        "buy service": QuickReplyRoute(flow=Flow.BuyService, step=Step.AskServiceType),
        "buy a service": QuickReplyRoute(flow=Flow.BuyService, step=Step.AskServiceType),
        "browse services": QuickReplyRoute(flow=Flow.BuyService, step=Step.ListServices),
        "show services": QuickReplyRoute(flow=Flow.BuyService, step=Step.ListServices),
        "kyc help": QuickReplyRoute(
            flow=Flow.BuyService, step=Step.AskPlatform, extra_fields={"service_type": "KYC"}
        ),
        "kyc service": QuickReplyRoute(
            flow=Flow.BuyService, step=Step.AskPlatform, extra_fields={"service_type": "KYC"}
        ),
        "kyc verification": QuickReplyRoute(
            flow=Flow.BuyService, step=Step.AskPlatform, extra_fields={"service_type": "KYC"}
        ),
        "order status": QuickReplyRoute(flow=Flow.OrderStatus, step=Step.AskOrderId),
        "check order": QuickReplyRoute(flow=Flow.OrderStatus, step=Step.AskOrderId),
        "check orders": QuickReplyRoute(flow=Flow.OrderStatus, step=Step.AskOrderId),
        "my orders": QuickReplyRoute(flow=Flow.OrderStatus, step=Step.AskOrderId),
        "go to orders": QuickReplyRoute(flow=Flow.OrderStatus, step=Step.AskOrderId),
        "interview help": QuickReplyRoute(flow=Flow.InterviewHelp, step=Step.AskInterviewPlatform),
        "assessment help": QuickReplyRoute(flow=Flow.InterviewHelp, step=Step.AskInterviewPlatform),
        "interview support": QuickReplyRoute(
            flow=Flow.InterviewHelp, step=Step.AskInterviewPlatform
        ),
        "payment help": QuickReplyRoute(flow=Flow.PaymentHelp, step=Step.AskOrderId),
        "payment status": QuickReplyRoute(flow=Flow.PaymentHelp, step=Step.AskOrderId),
        "check payment status": QuickReplyRoute(flow=Flow.PaymentHelp, step=Step.AskOrderId),
        "upload proof": QuickReplyRoute(flow=Flow.PaymentHelp, step=Step.AskOrderId),
        "custom request": QuickReplyRoute(flow=Flow.CustomService, step=Step.AskServiceType),
        "custom service": QuickReplyRoute(flow=Flow.CustomService, step=Step.AskServiceType),
        "need custom service": QuickReplyRoute(flow=Flow.CustomService, step=Step.AskServiceType),
        "apply to work": QuickReplyRoute(flow=Flow.ApplyToWork, step=Step.ListServices),
        "talk to admin": QuickReplyRoute(escalate=True),
        "contact support": QuickReplyRoute(escalate=True),
    }
)

FLOW_STEPS: Mapping[Flow, tuple[StepSpec, ...]] = MappingProxyType(
    {
        Flow.BuyService: (
            StepSpec(
                step=Step.AskServiceType,
                field="service_type",
                question_key="service_selection",
                prompt=(
                    "What type of service do you need? We offer KYC verification, "
                    "interview support, account creation, and more."
                ),
                quick_replies=("KYC help", "Interview help", "Account setup", "Other"),
                rephrase="Which specific service are you looking for?",
            ),
            StepSpec(
                step=Step.ListServices,
                field="service_type",
                question_key="service_list",
                prompt="Here are our available services. Which one interests you?",
                quick_replies=("KYC help", "Interview help", "Custom request"),
                rephrase="Pick one of the services below, or describe what you need.",
            ),
            StepSpec(
                step=Step.AskPlatform,
                field="platform",
                question_key="platform",
                prompt="Great, which platform is this for?",
                quick_replies=("HFM", "Binance", "Bybit", "PayPal", "Other"),
                rephrase="Let me clarify, which platform or company is this for?",
            ),
            StepSpec(
                step=Step.AskRegion,
                field="region",
                question_key="region",
                prompt="Which country or region do you need this for?",
                quick_replies=("USA", "UK", "Nigeria", "Other"),
                rephrase="Which country should the account or service be set up in?",
            ),
            StepSpec(
                step=Step.AskUrgency,
                field="urgency",
                question_key="urgency",
                prompt="How urgent is this? When do you need it done?",
                quick_replies=URGENCY_REPLIES,
                rephrase="When would you like this finished? ASAP, this week, or are you flexible?",
            ),
        ),
        Flow.InterviewHelp: (
            StepSpec(
                step=Step.AskInterviewPlatform,
                field="platform",
                question_key="platform",
                prompt=(
                    "Yes, we can help with interview and screening assessments. "
                    "Which platform is it for?"
                ),
                quick_replies=("Outlier", "HFM", "TikTok", "Other"),
                rephrase="Let me clarify, which platform or company is the assessment for?",
            ),
            StepSpec(
                step=Step.AskInterviewUrgency,
                field="urgency",
                question_key="urgency",
                prompt="Got it! How urgent is this assessment?",
                quick_replies=URGENCY_REPLIES,
                rephrase="When is the assessment due?",
            ),
        ),
        Flow.OrderStatus: (
            StepSpec(
                step=Step.AskOrderId,
                field="order_id",
                question_key="order_identifier",
                prompt=(
                    "To check your order status, please share your order ID "
                    "or open your order from the Orders page."
                ),
                quick_replies=("Go to Orders",),
                rephrase="What's your order ID? You can find it on the Orders page.",
            ),
        ),
        Flow.PaymentHelp: (
            StepSpec(
                step=Step.AskOrderId,
                field="order_id",
                question_key="payment_proof",
                prompt=(
                    "I can help with payment questions. Do you have an order ID, "
                    "or would you like to upload payment proof?"
                ),
                quick_replies=("Upload proof", "Check payment status"),
                rephrase="Please share the order ID the payment was for.",
                nudge=(
                    "Share your order ID here, then upload the payment screenshot "
                    "from your order page."
                ),
            ),
        ),
        Flow.CustomService: (
            StepSpec(
                step=Step.AskServiceType,
                field="service_type",
                question_key="service_name",
                prompt="We can handle custom requests! Tell me what service you need.",
                quick_replies=("KYC help", "Account setup", "Marketing", "Other"),
                rephrase="What should we call this service?",
            ),
        ),
        Flow.ApplyToWork: (
            StepSpec(
                step=Step.ListServices,
                field="position",
                question_key="work_position",
                prompt="Great! Which role would you like to apply for?",
                quick_replies=("KYC agent", "Interview support", "Account setup", "Other"),
                rephrase="Which kind of work are you interested in doing with us?",
            ),
        ),
    }
)

INTENT_FLOWS: Mapping[Intent, Flow] = MappingProxyType(
    {
        Intent.BuyService: Flow.BuyService,
        Intent.OrderStatus: Flow.OrderStatus,
        Intent.InterviewHelp: Flow.InterviewHelp,
        Intent.PaymentHelp: Flow.PaymentHelp,
        Intent.CustomService: Flow.CustomService,
    }
)

_GREETING = re.compile(
    r"^(hi|hello|hey|yo|sup|good morning|good afternoon|good evening|howdy|what'?s up)$",
    re.IGNORECASE,
)
_CANCEL = re.compile(
    r"^(please\s+)?(cancel|stop|quit|exit|never\s*mind|forget it|start over|restart)"
    r"(\s+(it|this|that|please|the request))?$",
    re.IGNORECASE,
)
_URGENCY_WORDS: tuple[tuple[Urgency, re.Pattern[str]], ...] = (
    (Urgency.Asap, re.compile(r"\b(asap|urgent|urgently|now|today|immediately)\b", re.IGNORECASE)),
    (Urgency.ThisWeek, re.compile(r"\b(this\s+week|few\s+days|week)\b", re.IGNORECASE)),
    (Urgency.ThisMonth, re.compile(r"\b(this\s+month|month)\b", re.IGNORECASE)),
    (
        Urgency.Flexible,
        re.compile(r"\b(flexible|no\s+rush|whenever|later|any\s*time)\b", re.IGNORECASE),
    ),
)


def normalize(text: str | None) -> str:
    """Lowercase, collapse whitespace and drop trailing punctuation."""
    value = re.sub(r"\s+", " ", str(text or "")).strip().lower()
    return value.rstrip("!.?, ")


def normalize_urgency(text: str | None) -> Urgency | None:
    """Map free text such as 'ASAP' or 'this week' to an ``Urgency``."""
    value = normalize(text).replace("_", " ")
    if not value:
        return None
    for urgency, pattern in _URGENCY_WORDS:
        if pattern.search(value):
            return urgency
    return None


def get_quick_reply_route(text: str | None) -> QuickReplyRoute | None:
    """Exact, then substring match against ``QUICK_REPLY_ROUTES``.

    A trigger phrase contained in the message matches on word boundaries.
    A message contained in a trigger phrase (a truncated button label)
    matches only when it is at least six characters and covers most of
    the phrase, so short answers such as 'help' or 'UK' are never hijacked.
    """
    normalized = normalize(text)
    if not normalized:
        return None

    route = QUICK_REPLY_ROUTES.get(normalized)
    if route is not None:
        return route

    padded = f" {normalized} "
    for phrase, route in QUICK_REPLY_ROUTES.items():
        if f" {phrase} " in padded:
            return route
    for phrase, route in QUICK_REPLY_ROUTES.items():
        if len(normalized) >= 6 and normalized in phrase and len(normalized) >= 0.6 * len(phrase):
            return route
    return None


def is_pure_greeting(text: str | None) -> bool:
    value = normalize(text)
    return len(value) <= 20 and bool(_GREETING.match(value))


def is_cancel_phrase(text: str | None) -> bool:
    value = normalize(text)
    return 0 < len(value) <= 40 and bool(_CANCEL.search(value))


def has_active_flow(session: DialogSession) -> bool:
    """True iff flow and step are set and the step is not a terminal marker.

    Every reset-to-menu heuristic must check this first.
    """
    return (
        session.flow is not None
        and session.step is not None
        and session.step not in TERMINAL_STEPS
    )


def flow_steps(flow: Flow | None) -> tuple[StepSpec, ...]:
    if flow is None:
        return ()
    return FLOW_STEPS.get(flow, ())


def step_spec(flow: Flow | None, step: Step | None) -> StepSpec | None:
    for spec in flow_steps(flow):
        if spec.step == step:
            return spec
    return None


def _known_fields(collected: Any) -> set[str]:
    if collected is None:
        return set()
    return {
        name for name in type(collected).model_fields if name != "flow" and collected.known(name)
    }


def first_open_step(flow: Flow, collected: Any, start: Step | None = None) -> Step:
    """First step at or after ``start`` whose field is not yet known."""
    specs = flow_steps(flow)
    known = _known_fields(collected)
    started = start is None
    for spec in specs:
        if not started and spec.step == start:
            started = True
        if started and spec.field not in known:
            return spec.step
    return Step.Complete


def advance_flow(session: DialogSession, answer: str) -> FlowAdvance:
    """Compute the next step after ``answer`` to the current step.

    Pure function of ``(flow, step, collected)`` and the answer; the
    session is not modified. An empty answer keeps the current step.
    """
    if not has_active_flow(session):
        return FlowAdvance(next_step=None, complete=False)

    specs = flow_steps(session.flow)
    index = next((i for i, spec in enumerate(specs) if spec.step == session.step), None)
    if index is None:
        return FlowAdvance(next_step=None, complete=False)

    current = specs[index]
    value = answer.strip() if isinstance(answer, str) else ""
    if current.field == "urgency" and value:
        urgency = normalize_urgency(value)
        value = urgency.value if urgency else value
    if not value:
        return FlowAdvance(next_step=session.step, complete=False, field=current.field)

    known = _known_fields(session.collected) | {current.field}
    for spec in specs[index + 1 :]:
        if spec.field not in known:
            return FlowAdvance(
                next_step=spec.step, complete=False, field=current.field, value=value
            )
    return FlowAdvance(next_step=Step.Complete, complete=True, field=current.field, value=value)


def apply_advance(session: DialogSession, advance: FlowAdvance) -> None:
    """Write the answered field and move the session to ``advance.next_step``."""
    if advance.field and advance.value is not None and session.collected is not None:
        setattr(session.collected, advance.field, advance.value)
    if advance.next_step is not None:
        session.step = advance.next_step


def start_flow(
    session: DialogSession,
    flow: Flow,
    step: Step | None = None,
    **prefill: str,
) -> None:
    """Enter ``flow``, resetting the question scope if it is a different or finished flow."""
    if session.flow != flow or not has_active_flow(session) or session.collected is None:
        session.asked_questions = set()
        session.collected = new_flow_data(flow, **prefill)
        session.flow = flow
    else:
        for name, value in prefill.items():
            setattr(session.collected, name, value)
    session.step = first_open_step(flow, session.collected, start=step)


def apply_route(session: DialogSession, route: QuickReplyRoute) -> None:
    """Apply a quick-reply route. Escalation routes clear the flow."""
    if route.escalate or route.flow is None:
        reset_flow(session)
        return
    start_flow(session, route.flow, route.step, **route.extra_fields)


def reset_flow(session: DialogSession) -> None:
    session.flow = None
    session.step = None
    session.collected = None
    session.asked_questions = set()


def _personalize(spec: StepSpec, collected: Any) -> str:
    platform = getattr(collected, "platform", None)
    service_type = getattr(collected, "service_type", None)
    if spec.step == Step.AskUrgency and platform:
        return f"Got it, {platform}. {spec.prompt}"
    if spec.step == Step.AskPlatform and service_type:
        return f"Great, for {service_type} help, which platform is this for?"
    return spec.prompt


def prompt_for_step(session: DialogSession, message: str = "") -> StepPrompt | None:
    """Choose what to say for the session's current step.

    Never returns an already-asked question verbatim. A repeat is only
    produced as the rephrased variant, and only when ``message`` matches a
    confusion pattern; otherwise an already-asked step yields a nudge.
    """
    spec = step_spec(session.flow, session.step)
    if spec is None:
        return None

    if spec.question_key not in session.asked_questions:
        return StepPrompt(
            question_key=spec.question_key,
            text=_personalize(spec, session.collected),
            quick_replies=list(spec.quick_replies),
        )
    if is_confused(message):
        return StepPrompt(
            question_key=spec.question_key,
            text=spec.rephrase,
            quick_replies=list(spec.quick_replies),
            rephrased=True,
        )
    return StepPrompt(question_key=None, text=spec.nudge, quick_replies=list(spec.quick_replies))
