"""Tests for TransitionEngine component."""

from datetime import timedelta

import pytest

from flowcore.domain.components.event_bus import TRANSITION_EVENT
from flowcore.domain.components.state_graph import DEFAULT_STATE_GRAPH
from flowcore.domain.interfaces.entity_repository import StateStoreError
from flowcore.domain.models.entity import (
    ENTITY_MODELS,
    AffiliateWithdrawal,
    EntityType,
    Order,
    Rental,
    ServiceRequest,
    Ticket,
    WalletTransaction,
)
from flowcore.domain.models.errors import (
    ConcurrentModificationError,
    ConfigError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from flowcore.domain.models.state_transition import TransitionMeta
from flowcore.domain.models.transition_event import TransitionEvent
from tests.fixtures.factories import FixedClock, MockObservabilityManager, make_engine

DISALLOWED_EDGES = [
    (entity_type, state, target)
    for entity_type in EntityType
    for state in sorted(DEFAULT_STATE_GRAPH.states(entity_type))
    for target in sorted(
        DEFAULT_STATE_GRAPH.states(entity_type) - DEFAULT_STATE_GRAPH.allowed(entity_type, state)
    )
]


class TestTransitionEngine:
    """Tests for TransitionEngine.transition."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.observability = MockObservabilityManager()
        self.clock = FixedClock()
        self.engine, self.bus, self.repositories = make_engine(
            observability=self.observability,
            clock=self.clock,
        )
        self.received: list[tuple[str, TransitionEvent]] = []

    def _record(self, name: str):
        async def handler(event: TransitionEvent) -> None:
            self.received.append((name, event))

        return handler

    async def _insert(self, entity) -> None:
        await self.repositories[type(entity).entity_type].insert(entity)

    @pytest.mark.asyncio
    async def test_transition_updates_status_and_logs(self) -> None:
        """Test that a valid transition writes status, one log line and one timeline entry."""
        await self._insert(Ticket(id="t1", subject="Cannot log in", user_id="u1"))

        ticket = await self.engine.transition(
            EntityType.Ticket,
            "t1",
            "in_progress",
            {"actor": "admin-1", "reason": "Picked up"},
        )

        assert ticket.status == "in_progress"
        assert ticket.version == 1
        assert len(ticket.status_log) == 1
        assert ticket.status_log[0].text == "Status changed from open to in_progress: Picked up"
        assert ticket.status_log[0].by == "admin-1"
        assert len(ticket.timeline) == 1
        entry = ticket.timeline[0]
        assert entry.event == "in_progress"
        assert entry.from_state == "open"
        assert entry.to_state == "in_progress"
        assert entry.actor == "admin-1"
        assert entry.at == self.clock.now

        stored = await self.repositories[EntityType.Ticket].find_by_id("t1")
        assert stored.status == "in_progress"
        assert stored.first_response_at == self.clock.now
        assert len(stored.timeline) == 1

    @pytest.mark.asyncio
    async def test_transition_publishes_specific_and_generic_events_once(self) -> None:
        """Test that exactly one specific and one generic event are published."""
        self.bus.on("ticket.closed", self._record("specific"))
        self.bus.on(TRANSITION_EVENT, self._record("generic"))
        await self._insert(Ticket(id="t1"))

        await self.engine.transition(EntityType.Ticket, "t1", "closed")
        await self.bus.drain()

        names = [name for name, _ in self.received]
        assert names.count("specific") == 1
        assert names.count("generic") == 1
        event = self.received[0][1]
        assert event.previous_state == "open"
        assert event.next_state == "closed"
        assert event.item.status == "closed"
        assert event.event_name == "ticket.closed"

    @pytest.mark.asyncio
    async def test_transition_emits_observability_event(self) -> None:
        """Test that entity_transitioned is emitted with a flat summary."""
        await self._insert(Ticket(id="t1"))

        await self.engine.transition("ticket", "t1", "waiting_user", {"actor": "admin-2"})

        events = self.observability.events_of("entity_transitioned")
        assert len(events) == 1
        assert events[0]["payload"]["from"] == "open"
        assert events[0]["payload"]["to"] == "waiting_user"
        assert events[0]["payload"]["actor"] == "admin-2"

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_entity_unchanged(self) -> None:
        """Test that a disallowed edge raises and writes nothing."""
        await self._insert(Ticket(id="t1"))
        await self.engine.transition(EntityType.Ticket, "t1", "closed")
        self.bus.on(TRANSITION_EVENT, self._record("generic"))

        with pytest.raises(InvalidTransitionError) as exc_info:
            await self.engine.transition(EntityType.Ticket, "t1", "in_progress")
        await self.bus.drain()

        assert exc_info.value.current_state == "closed"
        assert exc_info.value.allowed == []
        assert "terminal state" in str(exc_info.value)
        stored = await self.repositories[EntityType.Ticket].find_by_id("t1")
        assert stored.status == "closed"
        assert stored.version == 1
        assert len(stored.status_log) == 1
        assert len(stored.timeline) == 1
        assert self.received == []

    @pytest.mark.asyncio
    async def test_invalid_transition_reports_allowed_states(self) -> None:
        """Test that the error carries the legal next states."""
        await self._insert(Order(id="o1"))

        with pytest.raises(InvalidTransitionError) as exc_info:
            await self.engine.transition(EntityType.Order, "o1", "completed")

        assert exc_info.value.allowed == ["cancelled", "in_progress"]
        assert exc_info.value.to_dict()["category"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_rental_expired_renews_but_cannot_reactivate(self) -> None:
        """Test the rental renewal path."""
        await self._insert(Rental(id="r1", status="expired"))

        with pytest.raises(InvalidTransitionError):
            await self.engine.transition(EntityType.Rental, "r1", "active")

        rental = await self.engine.transition(EntityType.Rental, "r1", "renewed")
        assert rental.status == "renewed"
        assert rental.renewed_at == self.clock.now

        rental = await self.engine.transition(EntityType.Rental, "r1", "active")
        assert rental.status == "active"

    @pytest.mark.asyncio
    async def test_order_payment_timestamps_are_set_once(self) -> None:
        """Test that paid_at survives a later return to in_progress."""
        await self._insert(Order(id="o1", user_id="u1"))
        paid_at = self.clock.now

        await self.engine.transition(EntityType.Order, "o1", "in_progress")
        self.clock.advance(hours=1)
        await self.engine.transition(EntityType.Order, "o1", "waiting_user")
        self.clock.advance(hours=1)
        order = await self.engine.transition(EntityType.Order, "o1", "in_progress")

        assert order.paid_at == paid_at
        assert order.payment_verified_at == paid_at
        assert order.updated_at == paid_at + timedelta(hours=2)
        assert [e.event for e in order.timeline] == ["in_progress", "waiting_user", "in_progress"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entity_type, state, target", DISALLOWED_EDGES)
    async def test_every_disallowed_edge_is_rejected(
        self, entity_type: EntityType, state: str, target: str
    ) -> None:
        """Test that no edge outside the graph can be taken from any state."""
        await self._insert(ENTITY_MODELS[entity_type](id="e1", status=state))
        before = (await self.repositories[entity_type].find_by_id("e1")).model_dump()
        self.bus.on(TRANSITION_EVENT, self._record("generic"))

        with pytest.raises(InvalidTransitionError) as exc_info:
            await self.engine.transition(entity_type, "e1", target)
        await self.bus.drain()

        assert exc_info.value.current_state == state
        assert exc_info.value.next_state == target
        assert exc_info.value.allowed == sorted(DEFAULT_STATE_GRAPH.allowed(entity_type, state))
        after = await self.repositories[entity_type].find_by_id("e1")
        assert after.model_dump() == before
        assert self.received == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "entity, path, timestamp_field",
        [
            (Order(id="e1"), ["in_progress"], "paid_at"),
            (WalletTransaction(id="e1"), ["completed"], "completed_at"),
            (AffiliateWithdrawal(id="e1"), ["approved", "paid"], "paid_at"),
        ],
    )
    async def test_repeated_transition_fails_without_rewriting_timestamp(
        self, entity, path: list[str], timestamp_field: str
    ) -> None:
        """Test that repeating the last transition fails and keeps its timestamp."""
        entity_type = type(entity).entity_type
        await self._insert(entity)
        for state in path:
            await self.engine.transition(entity_type, "e1", state)
        stamped_at = self.clock.now
        self.clock.advance(hours=1)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await self.engine.transition(entity_type, "e1", path[-1])

        assert exc_info.value.current_state == path[-1]
        stored = await self.repositories[entity_type].find_by_id("e1")
        assert getattr(stored, timestamp_field) == stamped_at
        assert stored.version == len(path)
        assert [e.event for e in stored.timeline] == path

    @pytest.mark.asyncio
    async def test_service_request_submission_sets_capture_step(self) -> None:
        """Test derived fields on the draft -> new edge."""
        await self._insert(ServiceRequest(id="sr1", requested_service="Upwork profile"))

        request = await self.engine.transition(EntityType.ServiceRequest, "sr1", "new")

        assert request.capture_step == "created"
        assert request.submitted_at == self.clock.now

    @pytest.mark.asyncio
    async def test_missing_entity_raises_not_found(self) -> None:
        """Test that unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError, match="ticket not found: missing"):
            await self.engine.transition(EntityType.Ticket, "missing", "closed")

    @pytest.mark.asyncio
    async def test_unknown_entity_type_raises_config_error(self) -> None:
        """Test that unknown entity types are configuration errors."""
        with pytest.raises(ConfigError):
            await self.engine.transition("invoice", "i1", "paid")

    @pytest.mark.asyncio
    async def test_unmapped_current_state_raises_config_error(self) -> None:
        """Test that a stored status missing from the graph is a configuration error."""
        await self._insert(Ticket(id="t1", status="archived"))

        with pytest.raises(ConfigError):
            await self.engine.transition(EntityType.Ticket, "t1", "closed")

    @pytest.mark.asyncio
    async def test_malformed_meta_raises_validation_error(self) -> None:
        """Test that bad metadata is rejected before any read."""
        await self._insert(Ticket(id="t1"))

        with pytest.raises(ValidationError) as exc_info:
            await self.engine.transition(EntityType.Ticket, "t1", "closed", {"actor": "   "})
        assert exc_info.value.field == "actor"

        with pytest.raises(ValidationError):
            await self.engine.transition(EntityType.Ticket, "t1", "closed", {"unknown": 1})

        with pytest.raises(ValidationError):
            await self.engine.transition(
                EntityType.Ticket, "t1", "closed", ["admin"]  # type: ignore[arg-type]
            )

        stored = await self.repositories[EntityType.Ticket].find_by_id("t1")
        assert stored.status == "open"

    @pytest.mark.asyncio
    async def test_transition_meta_instance_is_accepted(self) -> None:
        """Test that a TransitionMeta can be passed directly."""
        await self._insert(Ticket(id="t1"))

        ticket = await self.engine.transition(
            EntityType.Ticket, "t1", "closed", TransitionMeta(actor="cron", data={"job": "x"})
        )

        assert ticket.timeline[0].actor == "cron"
        assert ticket.timeline[0].meta == {"job": "x"}

    @pytest.mark.asyncio
    async def test_missing_repository_raises_config_error(self) -> None:
        """Test that a type without a repository is a configuration error."""
        engine, _, _ = make_engine(repositories={})

        with pytest.raises(ConfigError, match="No repository"):
            await engine.transition(EntityType.Ticket, "t1", "closed")

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_transition(self) -> None:
        """Test that a handler failure is contained and logged."""

        async def broken(event: TransitionEvent) -> None:
            raise RuntimeError("mail server down")

        self.bus.on("ticket.closed", broken)
        await self._insert(Ticket(id="t1"))

        ticket = await self.engine.transition(EntityType.Ticket, "t1", "closed")
        await self.bus.drain()

        assert ticket.status == "closed"
        assert self.bus.failure_count == 1
        errors = [log for log in self.observability.logs if log["level"] == "ERROR"]
        assert len(errors) == 1
        assert "mail server down" in errors[0]["message"]

    @pytest.mark.asyncio
    async def test_observability_failure_does_not_fail_transition(self) -> None:
        """Test that a broken event sink never fails a committed transition."""
        self.observability.emit_error = RuntimeError("sink down")
        await self._insert(Ticket(id="t1"))

        ticket = await self.engine.transition(EntityType.Ticket, "t1", "closed")

        assert ticket.status == "closed"
        assert any(log["level"] == "WARNING" for log in self.observability.logs)


class TestCanTransition:
    """Tests for TransitionEngine.can_transition."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.engine, self.bus, self.repositories = make_engine()

    @pytest.mark.asyncio
    async def test_can_transition_allowed(self) -> None:
        """Test a legal edge."""
        await self.repositories[EntityType.Order].insert(Order(id="o1"))

        result = await self.engine.can_transition(EntityType.Order, "o1", "in_progress")

        assert result.allowed is True
        assert result.current_state == "pending"
        assert result.allowed_states == ["cancelled", "in_progress"]

    @pytest.mark.asyncio
    async def test_can_transition_terminal(self) -> None:
        """Test that terminal states report a reason."""
        await self.repositories[EntityType.Order].insert(Order(id="o1", status="completed"))

        result = await self.engine.can_transition(EntityType.Order, "o1", "cancelled")

        assert result.allowed is False
        assert result.reason == "completed is a terminal state"

    @pytest.mark.asyncio
    async def test_can_transition_missing_entity(self) -> None:
        """Test that a missing entity is reported, not raised."""
        result = await self.engine.can_transition(EntityType.Order, "nope", "cancelled")

        assert result.allowed is False
        assert result.current_state is None

    @pytest.mark.asyncio
    async def test_can_transition_performs_no_writes(self) -> None:
        """Test that the pre-flight check leaves the entity untouched."""
        await self.repositories[EntityType.Ticket].insert(Ticket(id="t1"))
        before = await self.repositories[EntityType.Ticket].find_by_id("t1")

        for state in ("closed", "in_progress", "open", "bogus"):
            await self.engine.can_transition(EntityType.Ticket, "t1", state)

        after = await self.repositories[EntityType.Ticket].find_by_id("t1")
        assert after == before
        assert self.bus.pending_count == 0

    @pytest.mark.asyncio
    async def test_query_helpers(self) -> None:
        """Test get_current_state and allowed_transitions."""
        await self.repositories[EntityType.Ticket].insert(Ticket(id="t1"))

        assert await self.engine.get_current_state(EntityType.Ticket, "t1") == "open"
        assert await self.engine.get_current_state(EntityType.Ticket, "nope") is None
        assert self.engine.allowed_transitions("ticket", "waiting_user") == [
            "closed",
            "in_progress",
        ]


class TestBatchTransition:
    """Tests for TransitionEngine.batch_transition."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.engine, self.bus, self.repositories = make_engine()

    @pytest.mark.asyncio
    async def test_batch_reports_each_id_independently(self) -> None:
        """Test that one failure does not abort the rest."""
        tickets = self.repositories[EntityType.Ticket]
        await tickets.insert(Ticket(id="t1"))
        await tickets.insert(Ticket(id="t2", status="closed"))
        await tickets.insert(Ticket(id="t3"))

        results = await self.engine.batch_transition(
            EntityType.Ticket, ["t1", "t2", "missing", "t3"], "closed", {"actor": "admin"}
        )

        assert [r.success for r in results] == [True, False, False, True]
        assert results[1].error_category == "invalid_transition"
        assert results[2].error_category == "not_found"
        assert results[0].item.status == "closed"
        assert (await tickets.find_by_id("t3")).status == "closed"

    @pytest.mark.asyncio
    async def test_batch_with_unknown_type_raises(self) -> None:
        """Test that the entity type is validated once, up front."""
        with pytest.raises(ConfigError):
            await self.engine.batch_transition("invoice", ["a"], "paid")


class TestOptimisticConcurrency:
    """Tests for conditional saves."""

    @pytest.mark.asyncio
    async def test_stale_save_raises_concurrent_modification(self) -> None:
        """Test that a save against a newer stored version is rejected."""
        engine, _, repositories = make_engine(optimistic_concurrency=True)
        tickets = repositories[EntityType.Ticket]
        await tickets.insert(Ticket(id="t1"))
        stale = await tickets.find_by_id("t1")

        await engine.transition(EntityType.Ticket, "t1", "in_progress")

        stale.status = "closed"
        stale.version = 1
        with pytest.raises(ConcurrentModificationError):
            await tickets.save(stale, expected_version=0)

        stored = await tickets.find_by_id("t1")
        assert stored.status == "in_progress"

    @pytest.mark.asyncio
    async def test_last_write_wins_by_default(self) -> None:
        """Test that unconditional saves overwrite."""
        engine, _, repositories = make_engine()
        tickets = repositories[EntityType.Ticket]
        await tickets.insert(Ticket(id="t1"))
        stale = await tickets.find_by_id("t1")
        await engine.transition(EntityType.Ticket, "t1", "in_progress")

        stale.subject = "overwritten"
        await tickets.save(stale)

        stored = await tickets.find_by_id("t1")
        assert stored.subject == "overwritten"
        assert stored.status == "open"

    @pytest.mark.asyncio
    async def test_type_mismatch_is_rejected_by_repository(self) -> None:
        """Test that a repository refuses entities of another type."""
        _, _, repositories = make_engine()

        with pytest.raises(StateStoreError):
            await repositories[EntityType.Ticket].insert(Order(id="o1"))
