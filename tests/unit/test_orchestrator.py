"""Tests for Orchestrator wiring."""

from datetime import UTC, datetime, timedelta

import pytest

from flowcore import ChatMode, ChatRequest, EntityType, Orchestrator, OrchestratorSettings
from flowcore.domain.components.chat_service import GREETING_REPLY
from flowcore.domain.models.entity import Order, Rental, ServiceRequest, Ticket
from flowcore.domain.models.errors import InvalidTransitionError
from flowcore.infrastructure.state_store.memory_store import (
    InMemoryEntityRepository,
    InMemorySessionStore,
)
from tests.fixtures.factories import (
    MockObservabilityManager,
    RecordingCommissionProcessor,
    RecordingNotifier,
    StubLLMProvider,
)

LOCAL_CONFIG = {"redis_url": None, "mongodb_url": None, "llm_api_key": None}


class TestOrchestrator:
    """Tests for Orchestrator."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.observability = MockObservabilityManager()
        self.notifier = RecordingNotifier()
        self.commissions = RecordingCommissionProcessor()
        self.orchestrator = Orchestrator(
            observability_manager=self.observability,
            notifier=self.notifier,
            commission_processor=self.commissions,
            config=LOCAL_CONFIG,
        )

    def test_defaults_to_in_memory_backends(self) -> None:
        for entity_type in EntityType:
            assert isinstance(self.orchestrator.repository(entity_type), InMemoryEntityRepository)
        assert isinstance(self.orchestrator.session_manager.store, InMemorySessionStore)
        assert self.orchestrator.transition_engine.state_graph.initial_state("order") == "pending"

    def test_accepts_settings_instance(self) -> None:
        settings = OrchestratorSettings.from_dict({**LOCAL_CONFIG, "history_size": 3})

        orchestrator = Orchestrator(observability_manager=self.observability, config=settings)

        assert orchestrator.config is settings

    def test_invalid_config_type(self) -> None:
        with pytest.raises(ValueError, match="Invalid config type"):
            Orchestrator(
                observability_manager=self.observability,
                config="config.yaml",  # type: ignore[arg-type]
            )

    @pytest.mark.asyncio
    async def test_chat_issues_anonymous_token_once(self) -> None:
        first = await self.orchestrator.chat("hi")
        second = await self.orchestrator.chat("Buy service", anonymous_token=first.anonymous_token)

        assert first.reply == GREETING_REPLY
        assert first.anonymous_token
        assert second.anonymous_token is None
        assert second.session_meta["flow"] == "BUY_SERVICE"

    @pytest.mark.asyncio
    async def test_chat_accepts_request_object(self) -> None:
        response = await self.orchestrator.chat(
            ChatRequest(message="hello", user_id="admin-1", mode=ChatMode.Admin)
        )

        assert response.anonymous_token is None
        assert response.reply != GREETING_REPLY

    @pytest.mark.asyncio
    async def test_llm_provider_is_used_for_free_chat(self) -> None:
        provider = StubLLMProvider(reply="We offer KYC help and more.")
        orchestrator = Orchestrator(
            observability_manager=self.observability,
            llm_provider=provider,
            config=LOCAL_CONFIG,
        )

        response = await orchestrator.chat("tell me a joke", user_id="u1")

        assert response.reply == "We offer KYC help and more."
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_transition_runs_hooks(self) -> None:
        orders = self.orchestrator.repository(EntityType.Order)
        await orders.insert(Order(id="ord-abc123", user_id="u1", service_name="KYC"))

        order = await self.orchestrator.transition(
            "order", "ord-abc123", "in_progress", {"actor": "admin"}
        )
        await self.orchestrator.close()

        assert order.status == "in_progress"
        assert order.payment_verified_at is not None
        assert self.notifier.titles() == ["Payment confirmed"]
        assert self.commissions.order_ids == ["ord-abc123"]

    @pytest.mark.asyncio
    async def test_can_and_batch_transition(self) -> None:
        orders = self.orchestrator.repository(EntityType.Order)
        await orders.insert(Order(id="o1"))
        await orders.insert(Order(id="o2", status="completed"))

        check = await self.orchestrator.can_transition(EntityType.Order, "o2", "cancelled")
        results = await self.orchestrator.batch_transition(
            EntityType.Order, ["o1", "o2"], "cancelled"
        )

        assert check.allowed is False
        assert [r.success for r in results] == [True, False]
        with pytest.raises(InvalidTransitionError):
            await self.orchestrator.transition(EntityType.Order, "o2", "pending")

    @pytest.mark.asyncio
    async def test_state_queries_are_exposed(self) -> None:
        await self.orchestrator.repository(EntityType.Ticket).insert(Ticket(id="t1"))
        await self.orchestrator.transition(EntityType.Ticket, "t1", "in_progress")

        assert await self.orchestrator.get_current_state("ticket", "t1") == "in_progress"
        assert await self.orchestrator.get_current_state(EntityType.Ticket, "missing") is None
        assert self.orchestrator.allowed_transitions("ticket", "in_progress") == [
            "closed",
            "waiting_user",
        ]
        assert self.orchestrator.state_graph is self.orchestrator.transition_engine.state_graph
        assert self.orchestrator.state_graph.terminal_states("ticket") == frozenset({"closed"})

    @pytest.mark.asyncio
    async def test_sweeps_are_exposed(self) -> None:
        now = datetime(2025, 3, 1, tzinfo=UTC)
        rentals = self.orchestrator.repository(EntityType.Rental)
        orders = self.orchestrator.repository(EntityType.Order)
        await rentals.insert(
            Rental(id="r1", user_id="u1", status="active", end_date=now - timedelta(days=1))
        )
        await orders.insert(Order(id="o1", user_id="u1", created_at=now - timedelta(hours=5)))

        expired = await self.orchestrator.expire_rentals(now=now)
        reminded = await self.orchestrator.payment_reminders(now=now)
        await self.orchestrator.close()

        assert expired.processed_ids == ["r1"]
        assert reminded.processed_ids == ["o1"]
        assert sorted(self.notifier.titles()) == ["Payment pending", "Rental expired"]

    @pytest.mark.asyncio
    async def test_lead_capture_is_wired_to_repositories(self) -> None:
        first = await self.orchestrator.chat("Custom request", user_id="u7")
        second = await self.orchestrator.chat("TikTok shop setup", user_id="u7")

        drafts = await self.orchestrator.repository(EntityType.ServiceRequest).list_by_status(
            "draft"
        )

        assert first.session_meta["flow"] == "CUSTOM_SERVICE"
        assert second.session_meta["flow"] == "LEAD_CAPTURE"
        assert len(drafts) == 1
        assert isinstance(drafts[0], ServiceRequest)
        assert drafts[0].requested_service == "TikTok shop setup"

    @pytest.mark.asyncio
    async def test_async_context_manager(self) -> None:
        async with Orchestrator(
            observability_manager=self.observability, config=LOCAL_CONFIG
        ) as orchestrator:
            response = await orchestrator.chat("hi", user_id="u1")

        assert response.reply == GREETING_REPLY
