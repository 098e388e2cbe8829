"""ChatService: the single entry point of the dialogue layer.

One call handles one chat turn: resolve identity, load the session, pick
a route (lead capture, quick reply, active flow, greeting, classified
intent, free chat), save the session and reply. Every failure degrades
to a short safe reply with quick replies; ``chat`` never raises.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flowcore.domain.components.dialog_router import (
    INTENT_FLOWS,
    advance_flow,
    apply_advance,
    apply_route,
    get_quick_reply_route,
    has_active_flow,
    is_cancel_phrase,
    is_pure_greeting,
    prompt_for_step,
    reset_flow,
    start_flow,
    step_spec,
)
from flowcore.domain.components.lead_capture import MAIN_MENU, LeadCaptureFlow, LeadReply
from flowcore.domain.components.session_manager import SessionManager, clamp_text
from flowcore.domain.components.transition_engine import TransitionEngine
from flowcore.domain.interfaces.collaborators import (
    IdentityResolver,
    IntentClassifier,
    LLMProvider,
    ServiceCatalog,
)
from flowcore.domain.interfaces.entity_repository import StateStoreError
from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.models.chat import ChatMode, ChatRequest, ChatResponse
from flowcore.domain.models.dialog_session import (
    ApplyToWorkData,
    BuyServiceData,
    CustomServiceData,
    DialogSession,
    Flow,
    Intent,
    InterviewHelpData,
    OrderStatusData,
    PaymentHelpData,
    Step,
)
from flowcore.domain.models.entity import EntityType
from flowcore.domain.models.errors import ProviderError

SAFE_REPLY = "Assistant is currently updating. Please try again in a moment."
NOT_SURE_REPLY = (
    "I'm not sure about that. Please contact admin in Order Support Chat, or pick an option below."
)
GREETING_REPLY = "Hi! How can I help you today?"
ADMIN_GREETING_REPLY = "Yes boss, I'm here. What should I handle?"
ESCALATE_REPLY = (
    "I've flagged this for an admin. You can also reach us any time in Order Support Chat."
)
CANCEL_REPLY = "Okay, I've cancelled that. What would you like to do next?"
ORDER_QUICK_REPLIES = ("Go to Orders", "Talk to admin")

SYSTEM_PROMPT = (
    "You are the support assistant of a service marketplace. Answer briefly and politely. "
    "Never invent prices, order details or policies. If you are unsure, tell the user to "
    "contact admin in Order Support Chat."
)

ORDER_STATUS_HINTS: dict[str, str] = {
    "pending": "We're waiting for your payment to be verified.",
    "in_progress": "Our team is working on it.",
    "waiting_user": "We need something from you. Please check the order chat.",
    "completed": "It has been delivered.",
    "cancelled": "It was cancelled. Contact support if this is unexpected.",
}

_ORDER_ID = re.compile(r"#?([A-Za-z0-9][A-Za-z0-9_-]{3,})")


class _Turn(BaseModel):
    reply: str
    quick_replies: list[str] = Field(default_factory=list)
    intent: str
    question_key: str | None = None
    escalate: bool = False
    reference_id: str | None = None

    model_config = ConfigDict(frozen=True)


def _extract_order_id(text: str | None) -> str | None:
    if not text:
        return None
    candidates = _ORDER_ID.findall(text)
    return candidates[-1] if candidates else None


class ChatService:
    """Handles chat turns for public visitors, signed-in users and admins."""

    def __init__(
        self,
        session_manager: SessionManager,
        identity_resolver: IdentityResolver,
        intent_classifier: IntentClassifier,
        lead_capture: LeadCaptureFlow,
        transition_engine: TransitionEngine,
        observability_manager: ObservabilityManager,
        llm_provider: LLMProvider | None = None,
        service_catalog: ServiceCatalog | None = None,
        max_message_chars: int = 1200,
    ) -> None:
        """Initialize ChatService with its collaborators.

        Args:
            session_manager: Loads and saves dialogue sessions.
            identity_resolver: Derives the session key for a request.
            intent_classifier: Deterministic text classifier.
            lead_capture: Lead-capture form driver.
            transition_engine: Used for read-only order lookups.
            observability_manager: ObservabilityManager for logging.
            llm_provider: Optional completion provider for free chat.
            service_catalog: Optional catalog consulted when a purchase flow completes.
            max_message_chars: Incoming messages are truncated to this length.
        """
        self._sessions = session_manager
        self._identity_resolver = identity_resolver
        self._classifier = intent_classifier
        self._lead_capture = lead_capture
        self._engine = transition_engine
        self._observability = observability_manager
        self._llm = llm_provider
        self._catalog = service_catalog
        self._max_message_chars = max_message_chars

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Handle one chat turn. Never raises."""
        try:
            identity = self._identity_resolver.resolve(request.user_id, request.anonymous_token)
            session = await self._sessions.get_or_create(identity)
        except Exception as e:
            await self._observability.try_log(
                level="ERROR",
                message=f"Chat session unavailable: {e}",
                context={"error_type": type(e).__name__},
            )
            return ChatResponse(reply=SAFE_REPLY, quick_replies=list(MAIN_MENU), intent="ERROR")

        message = clamp_text(request.message, self._max_message_chars)
        try:
            turn = await self._route(session, message, request)
        except Exception as e:
            await self._observability.try_log(
                level="ERROR",
                message=f"Chat turn failed: {e}",
                context={
                    "identity_key": session.identity_key,
                    "flow": session.flow.value if session.flow else None,
                    "step": session.step.value if session.step else None,
                    "error_type": type(e).__name__,
                },
            )
            turn = _Turn(reply=SAFE_REPLY, quick_replies=list(MAIN_MENU), intent="ERROR")

        session.turn_count += 1
        if turn.intent in {i.value for i in Intent}:
            session.last_intent = turn.intent
        if message:
            self._sessions.append_message(session, "user", message)
        self._sessions.append_message(session, "assistant", turn.reply)

        try:
            await self._sessions.save(session)
        except Exception as e:
            await self._observability.try_log(
                level="ERROR",
                message=f"Failed to save chat session: {e}",
                context={"identity_key": session.identity_key},
            )

        session_meta: dict[str, Any] = self._sessions.summary(session)
        session_meta["question_key"] = turn.question_key
        return ChatResponse(
            reply=turn.reply,
            quick_replies=turn.quick_replies,
            intent=turn.intent,
            session_meta=session_meta,
            anonymous_token=identity.anonymous_token if identity.issued else None,
            escalate=turn.escalate,
            reference_id=turn.reference_id,
        )

    async def _route(self, session: DialogSession, message: str, request: ChatRequest) -> _Turn:
        if self._lead_capture.is_active(session):
            return self._from_lead(await self._lead_capture.handle(session, message))

        route = get_quick_reply_route(message)
        if route is not None:
            if route.escalate or route.flow is None:
                reset_flow(session)
                return _Turn(
                    reply=ESCALATE_REPLY,
                    quick_replies=list(MAIN_MENU),
                    intent="ESCALATE",
                    escalate=True,
                )
            apply_route(session, route)
            return await self._step_turn(session, message, request)

        if has_active_flow(session):
            return await self._continue_flow(session, message, request)

        if not message or is_pure_greeting(message):
            reset_flow(session)
            greeting = ADMIN_GREETING_REPLY if request.mode == ChatMode.Admin else GREETING_REPLY
            return _Turn(
                reply=greeting, quick_replies=list(MAIN_MENU), intent=Intent.GeneralChat.value
            )

        intent = self._classifier.classify(message)
        flow = INTENT_FLOWS.get(intent)
        if flow is not None:
            start_flow(session, flow)
            return await self._step_turn(session, message, request)

        return await self._general_chat(session, message)

    async def _continue_flow(
        self, session: DialogSession, message: str, request: ChatRequest
    ) -> _Turn:
        if is_cancel_phrase(message):
            reset_flow(session)
            return _Turn(reply=CANCEL_REPLY, quick_replies=list(MAIN_MENU), intent="CANCELLED")

        spec = step_spec(session.flow, session.step)
        question_key = spec.question_key if spec else None
        if (
            not message
            or is_pure_greeting(message)
            or self._sessions.should_rephrase(session, question_key, message)
        ):
            # A greeting mid-flow keeps flow and step; the prompt or a nudge is repeated
            return await self._step_turn(session, message, request)

        apply_advance(session, advance_flow(session, message))
        return await self._step_turn(session, message, request)

    async def _step_turn(
        self, session: DialogSession, message: str, request: ChatRequest
    ) -> _Turn:
        flow = session.flow
        if flow is None:
            return await self._general_chat(session, message)
        if session.step == Step.Complete:
            return await self._complete_flow(session, flow, message, request)

        prompt = prompt_for_step(session, message)
        if prompt is None:
            reset_flow(session)
            return _Turn(reply=NOT_SURE_REPLY, quick_replies=list(MAIN_MENU), intent=flow.value)
        if prompt.question_key and not prompt.rephrased:
            self._sessions.mark_asked(session, prompt.question_key)

        reply = prompt.text
        if session.step == Step.ListServices and flow == Flow.BuyService and self._catalog:
            offerings = await self._catalog.list_active(limit=5)
            if offerings:
                reply = f"{reply} " + ", ".join(o.name for o in offerings) + "."
        return _Turn(
            reply=reply,
            quick_replies=prompt.quick_replies,
            intent="REPHRASE" if prompt.rephrased else flow.value,
            question_key=prompt.question_key,
        )

    async def _complete_flow(
        self, session: DialogSession, flow: Flow, message: str, request: ChatRequest
    ) -> _Turn:
        collected = session.collected

        if isinstance(collected, BuyServiceData):
            offering = None
            if self._catalog is not None and collected.service_type:
                offering = await self._catalog.find_match(
                    collected.service_type, collected.platform
                )
            if offering is not None:
                target = f" for {collected.platform}" if collected.platform else ""
                return _Turn(
                    reply=(
                        f"Good news! We offer {offering.name}{target}. "
                        "Open it from the Services page to place your order."
                    ),
                    quick_replies=["Browse services", "Talk to admin"],
                    intent=flow.value,
                )
            lead = await self._lead_capture.start(
                session,
                raw_message=message,
                prefill={
                    "requested_service": collected.service_type,
                    "platform": collected.platform,
                    "country": collected.region,
                    "urgency": collected.urgency,
                },
                user_id=request.user_id,
            )
            return self._from_lead(
                lead,
                prefix=(
                    "We don't have a listed service for that yet, "
                    "but we can take a custom request."
                ),
            )

        if isinstance(collected, CustomServiceData):
            lead = await self._lead_capture.start(
                session,
                raw_message=message,
                prefill={"requested_service": collected.service_type},
                user_id=request.user_id,
            )
            return self._from_lead(lead, prefix="Got it.")

        if isinstance(collected, InterviewHelpData):
            details = ", ".join(v for v in (collected.platform, collected.urgency) if v)
            return _Turn(
                reply=f"Got it ({details}). Please describe what you need help with.",
                quick_replies=["Practice questions", "Video test prep", "Screening answers"],
                intent=flow.value,
            )

        if isinstance(collected, (OrderStatusData, PaymentHelpData)):
            return await self._order_lookup(session, collected.order_id, flow)

        if isinstance(collected, ApplyToWorkData):
            return _Turn(
                reply=(
                    f"Thanks! Apply for {collected.position} from the Work With Us page "
                    "and an admin will review your application."
                ),
                quick_replies=list(MAIN_MENU),
                intent=flow.value,
            )

        reset_flow(session)
        return _Turn(reply=NOT_SURE_REPLY, quick_replies=list(MAIN_MENU), intent=flow.value)

    async def _order_lookup(
        self, session: DialogSession, raw_order_id: str | None, flow: Flow
    ) -> _Turn:
        order_id = _extract_order_id(raw_order_id)
        order = None
        if order_id:
            try:
                order = await self._engine.repository(EntityType.Order).find_by_id(order_id)
            except StateStoreError as e:
                await self._observability.try_log(
                    level="WARNING",
                    message=f"Order lookup failed: {e}",
                    context={"order_id": order_id},
                )
                return _Turn(
                    reply=SAFE_REPLY, quick_replies=list(ORDER_QUICK_REPLIES), intent=flow.value
                )

        # Orders are only disclosed to their owner
        if order is not None and order.user_id and session.identity_key != f"user:{order.user_id}":
            order = None

        if order is None:
            return _Turn(
                reply=(
                    f"I couldn't find an order with ID {order_id or raw_order_id}. "
                    "Please check the ID on your Orders page."
                ),
                quick_replies=list(ORDER_QUICK_REPLIES),
                intent=flow.value,
            )

        label = order.status.replace("_", " ")
        if flow == Flow.PaymentHelp:
            if order.status == "pending":
                reply = (
                    f"Payment for order {order.id} hasn't been verified yet. Upload your payment "
                    "screenshot from the order page and we'll confirm it shortly."
                )
            else:
                reply = f"Payment for order {order.id} is confirmed. The order is {label}."
        else:
            hint = ORDER_STATUS_HINTS.get(order.status, "")
            reply = f"Order {order.id} is currently {label}. {hint}".strip()
        return _Turn(reply=reply, quick_replies=list(ORDER_QUICK_REPLIES), intent=flow.value)

    async def _general_chat(self, session: DialogSession, message: str) -> _Turn:
        session.last_intent = Intent.GeneralChat.value
        if self._llm is None:
            return _Turn(
                reply=NOT_SURE_REPLY,
                quick_replies=list(MAIN_MENU),
                intent=Intent.GeneralChat.value,
            )

        messages: list[dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend({"role": m.role, "content": m.content} for m in session.message_history)
        messages.append({"role": "user", "content": message})
        try:
            text = await self._llm.complete(messages)
        except ProviderError as e:
            await self._observability.try_log(
                level="WARNING",
                message=f"LLM provider failed, using fallback reply: {e}",
                context={"provider_code": e.provider_code, "retryable": e.retryable},
            )
            text = ""
        reply = clamp_text(text, self._max_message_chars) or NOT_SURE_REPLY
        return _Turn(reply=reply, quick_replies=list(MAIN_MENU), intent=Intent.GeneralChat.value)

    @staticmethod
    def _from_lead(lead: LeadReply, prefix: str | None = None) -> _Turn:
        reply = f"{prefix} {lead.reply}" if prefix else lead.reply
        return _Turn(
            reply=reply,
            quick_replies=lead.quick_replies,
            intent=Flow.LeadCapture.value,
            question_key=lead.question_key,
            reference_id=lead.reference_id,
        )
