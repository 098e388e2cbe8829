"""Tests for the lifecycle notification hooks."""

import pytest

from flowcore.domain.components.flow_hooks import register_flow_hooks
from flowcore.domain.models.entity import (
    AffiliateWithdrawal,
    EntityType,
    Order,
    Rental,
    ServiceRequest,
    Ticket,
    WalletTransaction,
)
from tests.fixtures.factories import (
    MockObservabilityManager,
    RecordingCommissionProcessor,
    RecordingNotifier,
    make_engine,
)


class TestFlowHooks:
    """Tests for FlowHooks wired to a real TransitionEngine."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.observability = MockObservabilityManager()
        self.notifier = RecordingNotifier()
        self.commissions = RecordingCommissionProcessor()
        self.engine, self.bus, self.repositories = make_engine(observability=self.observability)
        self.hooks = register_flow_hooks(
            self.bus,
            notifier=self.notifier,
            observability_manager=self.observability,
            commission_processor=self.commissions,
        )

    async def _insert(self, entity) -> None:
        await self.repositories[type(entity).entity_type].insert(entity)

    async def _transition(self, entity_type: EntityType, entity_id: str, state: str, **meta):
        result = await self.engine.transition(entity_type, entity_id, state, meta or None)
        await self.bus.drain()
        return result

    @pytest.mark.asyncio
    async def test_payment_confirmation_processes_commission_and_notifies(self) -> None:
        """Test the pending -> in_progress order hook."""
        await self._insert(Order(id="order-abc123", user_id="u1"))

        await self._transition(EntityType.Order, "order-abc123", "in_progress")

        assert self.commissions.order_ids == ["order-abc123"]
        assert len(self.notifier.notifications) == 1
        notification = self.notifier.notifications[0]
        assert notification.title == "Payment confirmed"
        assert "#ABC123" in notification.message
        assert notification.send_email_copy is True
        assert notification.resource_type == "order"

    @pytest.mark.asyncio
    async def test_commission_is_not_repeated_on_resume(self) -> None:
        """Test that waiting_user -> in_progress is not a payment confirmation."""
        await self._insert(Order(id="o1", user_id="u1", status="waiting_user"))

        await self._transition(EntityType.Order, "o1", "in_progress")

        assert self.commissions.order_ids == []
        assert self.notifier.notifications == []

    @pytest.mark.asyncio
    async def test_order_cancelled_includes_reason(self) -> None:
        """Test the cancellation message."""
        await self._insert(Order(id="o1", user_id="u1"))

        await self._transition(EntityType.Order, "o1", "cancelled", reason="Duplicate order")

        assert self.notifier.notifications[0].message.endswith("Reason: Duplicate order")
        assert self.notifier.notifications[0].type == "warning"

    @pytest.mark.asyncio
    async def test_entities_without_user_are_not_notified(self) -> None:
        """Test that anonymous records produce no notification."""
        await self._insert(Ticket(id="t1"))

        await self._transition(EntityType.Ticket, "t1", "closed")

        assert self.notifier.notifications == []

    @pytest.mark.asyncio
    async def test_ticket_notifications(self) -> None:
        """Test ticket hooks along a full lifecycle."""
        await self._insert(Ticket(id="t1", user_id="u1", subject="Refund"))

        await self._transition(EntityType.Ticket, "t1", "in_progress")
        await self._transition(EntityType.Ticket, "t1", "waiting_user")
        await self._transition(EntityType.Ticket, "t1", "closed")

        assert self.notifier.titles() == ["Ticket in progress", "Support replied", "Ticket closed"]
        assert '"Refund"' in self.notifier.notifications[0].message

    @pytest.mark.asyncio
    async def test_rental_reactivation_after_renewal(self) -> None:
        """Test that activation after renewal says renewed."""
        await self._insert(Rental(id="r1", user_id="u1", status="renewed", service_name="Seat"))

        await self._transition(EntityType.Rental, "r1", "active")

        assert self.notifier.titles() == ["Rental renewed"]
        assert self.notifier.notifications[0].message.startswith("Seat")

    @pytest.mark.asyncio
    async def test_wallet_completed_message(self) -> None:
        """Test the wallet settlement message."""
        await self._insert(
            WalletTransaction(id="w1", user_id="u1", kind="debit", amount=12.5, balance_after=7.5)
        )

        await self._transition(EntityType.Wallet, "w1", "completed")

        message = self.notifier.notifications[0].message
        assert message == "$12.50 was debited from your wallet. New balance: $7.50."

    @pytest.mark.asyncio
    async def test_withdrawal_paid(self) -> None:
        """Test the payout hook."""
        await self._insert(AffiliateWithdrawal(id="a1", user_id="u1", status="approved"))

        await self._transition(EntityType.AffiliateWithdrawal, "a1", "paid")

        assert self.notifier.titles() == ["Withdrawal paid"]

    @pytest.mark.asyncio
    async def test_service_request_created_emits_event(self) -> None:
        """Test that submitting a lead emits an analytics event."""
        await self._insert(ServiceRequest(id="sr1", requested_service="Upwork account"))

        await self._transition(EntityType.ServiceRequest, "sr1", "new")

        events = self.observability.events_of("service_request_created")
        assert len(events) == 1
        assert events[0]["payload"]["requested_service"] == "Upwork account"

    @pytest.mark.asyncio
    async def test_every_transition_is_logged(self) -> None:
        """Test the generic transition hook."""
        await self._insert(Ticket(id="t1"))

        await self._transition(EntityType.Ticket, "t1", "closed")

        lines = [log for log in self.observability.logs if log["message"] == "transition"]
        assert len(lines) == 1
        assert lines[0]["context"]["to"] == "closed"

    @pytest.mark.asyncio
    async def test_notifier_failure_never_rolls_back(self) -> None:
        """Test that a failed notification leaves the transition committed."""
        self.notifier.error = RuntimeError("smtp down")
        await self._insert(Order(id="o1", user_id="u1"))

        order = await self._transition(EntityType.Order, "o1", "cancelled")

        assert order.status == "cancelled"
        stored = await self.repositories[EntityType.Order].find_by_id("o1")
        assert stored.status == "cancelled"
        assert self.bus.failure_count == 1

    def test_register_subscribes_every_handler(self) -> None:
        """Test that registration covers the per-state and generic events."""
        events = set(self.hooks.handlers())

        assert {"order.in_progress", "ticket.closed", "rental.expired", "transition"} <= events
        for event in events:
            assert self.bus.listener_count(event) == 1
