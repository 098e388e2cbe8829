"""Tests for ChatService."""

import pytest

from flowcore.domain.components.chat_service import (
    ADMIN_GREETING_REPLY,
    CANCEL_REPLY,
    ESCALATE_REPLY,
    GREETING_REPLY,
    NOT_SURE_REPLY,
    SAFE_REPLY,
    SYSTEM_PROMPT,
    ChatService,
)
from flowcore.domain.components.dialog_router import DEFAULT_NUDGE
from flowcore.domain.components.intent_classifier import RegexIntentClassifier
from flowcore.domain.components.lead_capture import MAIN_MENU, LeadCaptureFlow
from flowcore.domain.components.session_manager import SessionManager
from flowcore.domain.interfaces.collaborators import IntentClassifier
from flowcore.domain.interfaces.entity_repository import StateStoreError
from flowcore.domain.models.chat import ChatMode, ChatRequest, Identity
from flowcore.domain.models.dialog_session import DialogSession, Intent
from flowcore.domain.models.entity import EntityType, Order
from flowcore.domain.models.service_offering import ServiceOffering
from flowcore.infrastructure.adapters.service_catalog import InMemoryServiceCatalog
from flowcore.infrastructure.state_store.memory_store import InMemorySessionStore
from tests.fixtures.factories import (
    FailingLLMProvider,
    MockObservabilityManager,
    StubIdentityResolver,
    StubLLMProvider,
    make_engine,
)


class BrokenIdentityResolver(StubIdentityResolver):
    def resolve(self, user_id: str | None, anonymous_token: str | None) -> Identity:
        raise RuntimeError("token service down")


class BrokenClassifier(IntentClassifier):
    def classify(self, text: str) -> Intent:
        raise RuntimeError("classifier crashed")


class UnsavableSessionStore(InMemorySessionStore):
    async def save(self, session: DialogSession, ttl_seconds: int) -> None:
        raise StateStoreError("redis down")


class TestChatService:
    """Tests for chat turn routing."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.observability = MockObservabilityManager()
        self.engine, self.bus, self.repositories = make_engine(observability=self.observability)
        self.session_store = InMemorySessionStore()
        self.catalog = InMemoryServiceCatalog(
            [
                ServiceOffering(
                    id="svc-1",
                    name="Binance KYC verification",
                    keywords=["kyc", "verification"],
                    platforms=["Binance"],
                ),
                ServiceOffering(id="svc-2", name="Interview coaching", keywords=["interview"]),
            ]
        )
        self.llm = StubLLMProvider()
        self.service = self._build()

    def _build(self, **overrides) -> ChatService:
        session_manager = SessionManager(
            store=overrides.pop("session_store", self.session_store),
            observability_manager=self.observability,
        )
        options = {
            "session_manager": session_manager,
            "identity_resolver": StubIdentityResolver(),
            "intent_classifier": RegexIntentClassifier(),
            "lead_capture": LeadCaptureFlow(
                transition_engine=self.engine,
                observability_manager=self.observability,
                id_factory=lambda: "lead00000000ref1",
            ),
            "transition_engine": self.engine,
            "observability_manager": self.observability,
            "llm_provider": self.llm,
            "service_catalog": self.catalog,
        }
        options.update(overrides)
        return ChatService(**options)

    async def _say(self, message: str, user_id: str | None = "u1", **kwargs):
        return await self.service.chat(ChatRequest(message=message, user_id=user_id, **kwargs))

    @pytest.mark.asyncio
    async def test_fresh_greeting_shows_main_menu(self) -> None:
        """Test the first contact reply."""
        response = await self._say("hi")

        assert response.reply == GREETING_REPLY
        assert response.quick_replies == ["Buy service", "Order status", "Interview help"]
        assert response.intent == "GENERAL_CHAT"
        assert response.session_meta["flow"] is None
        assert response.session_meta["turns"] == 1

    @pytest.mark.asyncio
    async def test_admin_greeting(self) -> None:
        """Test the admin chat greeting."""
        response = await self._say("hello", mode=ChatMode.Admin)

        assert response.reply == ADMIN_GREETING_REPLY

    @pytest.mark.asyncio
    async def test_greeting_mid_flow_keeps_flow_and_step(self) -> None:
        """Test that a greeting never resets an active flow."""
        first = await self._say("Buy service")
        response = await self._say("hi")

        assert first.session_meta["question_key"] == "service_selection"
        assert response.session_meta["flow"] == "BUY_SERVICE"
        assert response.session_meta["step"] == "ASK_SERVICE_TYPE"
        assert response.reply == DEFAULT_NUDGE
        assert response.reply != first.reply
        assert response.reply != GREETING_REPLY

    @pytest.mark.asyncio
    async def test_no_question_is_asked_twice(self) -> None:
        """Test the anti-loop guarantee across a whole flow."""
        messages = ["Buy service", "hi", "", "KYC", "hello", "Binance", "", "USA", "hey"]
        asked: list[str] = []
        replies: list[str] = []
        for message in messages:
            response = await self._say(message)
            replies.append(response.reply)
            if response.session_meta["question_key"]:
                asked.append(response.session_meta["question_key"])

        assert asked == ["service_selection", "platform", "region", "urgency"]
        questions = [r for r in replies if r != DEFAULT_NUDGE]
        assert len(questions) == len(set(questions))

    @pytest.mark.asyncio
    async def test_confusion_gets_a_rephrase(self) -> None:
        """Test that a confused reply rephrases the open question."""
        await self._say("Buy service")

        response = await self._say("what do you mean?")

        assert response.intent == "REPHRASE"
        assert response.reply == "Which specific service are you looking for?"
        assert response.session_meta["step"] == "ASK_SERVICE_TYPE"

    @pytest.mark.asyncio
    async def test_cancel_mid_flow(self) -> None:
        """Test that a cancel phrase returns to the menu."""
        await self._say("Order status")

        response = await self._say("cancel")

        assert response.reply == CANCEL_REPLY
        assert response.intent == "CANCELLED"
        assert response.session_meta["flow"] is None

    @pytest.mark.asyncio
    async def test_escalation(self) -> None:
        """Test the talk-to-admin route."""
        await self._say("Buy service")

        response = await self._say("Talk to admin")

        assert response.escalate is True
        assert response.intent == "ESCALATE"
        assert response.reply == ESCALATE_REPLY
        assert response.session_meta["flow"] is None

    @pytest.mark.asyncio
    async def test_classified_intent_starts_flow(self) -> None:
        """Test that free text with a clear intent enters the matching flow."""
        response = await self._say("I have an assessment tomorrow")

        assert response.intent == "INTERVIEW_HELP"
        assert response.session_meta["step"] == "ASK_INTERVIEW_PLATFORM"
        assert response.session_meta["question_key"] == "platform"

    @pytest.mark.asyncio
    async def test_buy_flow_with_catalog_match(self) -> None:
        """Test a purchase flow that ends on a listed service."""
        for message in ("Buy service", "KYC", "Binance", "USA"):
            await self._say(message)

        response = await self._say("ASAP")

        assert response.reply.startswith(
            "Good news! We offer Binance KYC verification for Binance."
        )
        assert response.intent == "BUY_SERVICE"
        assert response.session_meta["step"] == "COMPLETE"

    @pytest.mark.asyncio
    async def test_buy_flow_without_match_falls_back_to_lead_capture(self) -> None:
        """Test that an unlisted service becomes a service request."""
        for message in ("Buy service", "Account setup", "Payoneer", "USA"):
            await self._say(message)

        response = await self._say("ASAP")

        assert response.intent == "LEAD_CAPTURE"
        assert response.reply.startswith("We don't have a listed service for that yet")
        assert response.session_meta["question_key"] == "lead_budget"
        draft = await self.repositories[EntityType.ServiceRequest].find_by_id("lead00000000ref1")
        assert draft.requested_service == "Account setup"
        assert draft.platform == "Payoneer"
        assert draft.country == "USA"
        assert draft.user_id == "u1"

        response = await self._say("skip")

        assert response.reference_id == "lead00000000ref1"
        assert "0000REF1" in response.reply
        submitted = await self.repositories[EntityType.ServiceRequest].find_by_id(
            "lead00000000ref1"
        )
        assert submitted.status == "new"

    @pytest.mark.asyncio
    async def test_custom_request_runs_lead_capture(self) -> None:
        """Test the custom service flow end to end."""
        await self._say("Custom request")
        response = await self._say("Shopify store setup")

        assert response.reply == "Got it. Which platform or company is this for?"
        assert response.session_meta["flow"] == "LEAD_CAPTURE"

        for message in ("Shopify", "Canada", "flexible"):
            await self._say(message)
        response = await self._say("$300")

        assert response.reference_id == "lead00000000ref1"
        submitted = await self.repositories[EntityType.ServiceRequest].find_by_id(
            "lead00000000ref1"
        )
        assert submitted.budget == 300.0
        assert submitted.status == "new"

    @pytest.mark.asyncio
    async def test_answer_starting_with_cancel_word_keeps_flow(self) -> None:
        """Test that an answer mentioning cancellation is not a cancel phrase."""
        await self._say("Custom request")

        response = await self._say("Cancel my Netflix subscription")

        assert response.intent != "CANCELLED"
        assert response.reply == "Got it. Which platform or company is this for?"
        assert response.session_meta["flow"] == "LEAD_CAPTURE"
        draft = await self.repositories[EntityType.ServiceRequest].find_by_id("lead00000000ref1")
        assert draft.requested_service == "Cancel my Netflix subscription"

    @pytest.mark.asyncio
    async def test_lead_capture_cancel_from_chat(self) -> None:
        """Test cancelling a lead from the chat entry point."""
        await self._say("Custom request")
        await self._say("Shopify store setup")

        response = await self._say("never mind")

        assert response.reply.startswith("No problem, I've cancelled that request")
        assert response.quick_replies == list(MAIN_MENU)
        draft = await self.repositories[EntityType.ServiceRequest].find_by_id("lead00000000ref1")
        assert draft.status == "cancelled"

    @pytest.mark.asyncio
    async def test_order_status_lookup_for_owner(self) -> None:
        """Test that the owner sees their order status."""
        await self.repositories[EntityType.Order].insert(
            Order(id="ord12345", user_id="u1", status="in_progress")
        )
        await self._say("Order status")

        response = await self._say("ord12345")

        assert response.reply == (
            "Order ord12345 is currently in progress. Our team is working on it."
        )
        assert response.intent == "ORDER_STATUS"

    @pytest.mark.asyncio
    async def test_order_status_is_hidden_from_other_users(self) -> None:
        """Test that orders are only disclosed to their owner."""
        await self.repositories[EntityType.Order].insert(
            Order(id="ord12345", user_id="u1", status="in_progress")
        )
        await self._say("Order status", user_id="u2")

        response = await self._say("#ord12345", user_id="u2")

        assert response.reply.startswith("I couldn't find an order with ID ord12345")

    @pytest.mark.asyncio
    async def test_payment_help_for_pending_order(self) -> None:
        """Test the payment flow on an unverified order."""
        await self.repositories[EntityType.Order].insert(Order(id="ord777", user_id="u1"))
        await self._say("Payment help")

        response = await self._say("ord777")

        assert "hasn't been verified yet" in response.reply
        assert response.intent == "PAYMENT_HELP"

    @pytest.mark.asyncio
    async def test_browse_services_lists_catalog(self) -> None:
        """Test the catalog listing step."""
        response = await self._say("Browse services")

        assert "Binance KYC verification, Interview coaching." in response.reply

    @pytest.mark.asyncio
    async def test_general_chat_uses_llm_with_history(self) -> None:
        """Test that free chat goes to the provider with the system prompt."""
        await self._say("hi")

        response = await self._say("tell me a joke")

        assert response.reply == "Sure, happy to help."
        assert response.intent == "GENERAL_CHAT"
        messages = self.llm.calls[-1]
        assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert messages[1] == {"role": "user", "content": "hi"}
        assert messages[2] == {"role": "assistant", "content": GREETING_REPLY}
        assert messages[-1] == {"role": "user", "content": "tell me a joke"}

    @pytest.mark.asyncio
    async def test_llm_failure_falls_back(self) -> None:
        """Test that provider errors produce the fallback reply."""
        self.service = self._build(llm_provider=FailingLLMProvider())

        response = await self._say("tell me a joke")

        assert response.reply == NOT_SURE_REPLY
        assert any(log["level"] == "WARNING" for log in self.observability.logs)

    @pytest.mark.asyncio
    async def test_no_llm_configured(self) -> None:
        """Test free chat without a provider."""
        self.service = self._build(llm_provider=None)

        response = await self._say("tell me a joke")

        assert response.reply == NOT_SURE_REPLY
        assert response.quick_replies == list(MAIN_MENU)

    @pytest.mark.asyncio
    async def test_identity_failure_returns_safe_reply(self) -> None:
        """Test that chat never raises when identity resolution fails."""
        self.service = self._build(identity_resolver=BrokenIdentityResolver())

        response = await self._say("hi")

        assert response.reply == SAFE_REPLY
        assert response.intent == "ERROR"

    @pytest.mark.asyncio
    async def test_routing_failure_returns_safe_reply_and_saves(self) -> None:
        """Test that an internal error degrades to the safe reply."""
        self.service = self._build(intent_classifier=BrokenClassifier())

        response = await self._say("where is everything")

        assert response.reply == SAFE_REPLY
        assert response.quick_replies == list(MAIN_MENU)
        assert response.intent == "ERROR"
        assert len(self.session_store) == 1
        assert any(log["level"] == "ERROR" for log in self.observability.logs)

    @pytest.mark.asyncio
    async def test_session_save_failure_still_replies(self) -> None:
        """Test that a storage failure at the end of the turn is logged, not raised."""
        self.service = self._build(session_store=UnsavableSessionStore())

        response = await self._say("hi")

        assert response.reply == GREETING_REPLY
        assert any("Failed to save" in log["message"] for log in self.observability.logs)

    @pytest.mark.asyncio
    async def test_anonymous_token_only_returned_when_issued(self) -> None:
        """Test the anonymous cookie round trip."""
        first = await self._say("hi", user_id=None)
        second = await self._say("hi", user_id=None, anonymous_token=first.anonymous_token)

        assert first.anonymous_token == "fresh"
        assert second.anonymous_token is None
        assert second.session_meta["turns"] == 2

    @pytest.mark.asyncio
    async def test_long_messages_are_truncated(self) -> None:
        """Test the inbound length limit."""
        self.service = self._build(max_message_chars=10)

        await self._say("tell me a joke about cats and dogs")

        assert len(self.llm.calls[-1][-1]["content"]) == 10
