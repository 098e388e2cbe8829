"""Side-effect hooks subscribed to lifecycle transition events.

Hooks run after the transition has been persisted. Anything they raise is
contained by the EventBus, so a failed notification can never roll back
or delay a committed status change.
"""

from collections.abc import Awaitable, Callable

from flowcore.domain.components.event_bus import TRANSITION_EVENT, EventBus
from flowcore.domain.interfaces.collaborators import CommissionProcessor, Notifier
from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.models.entity import Order, Rental, Ticket, WalletTransaction
from flowcore.domain.models.notification import Notification
from flowcore.domain.models.transition_event import TransitionEvent

HookHandler = Callable[[TransitionEvent], Awaitable[None]]


def _short_id(entity_id: str) -> str:
    return entity_id[-6:].upper()


class FlowHooks:
    """Notification, commission and analytics handlers for lifecycle events."""

    def __init__(
        self,
        notifier: Notifier,
        observability_manager: ObservabilityManager,
        commission_processor: CommissionProcessor | None = None,
    ) -> None:
        self._notifier = notifier
        self._observability = observability_manager
        self._commission_processor = commission_processor

    def handlers(self) -> dict[str, HookHandler]:
        """Event name to handler mapping registered by ``register``."""
        return {
            "order.in_progress": self.on_order_in_progress,
            "order.completed": self.on_order_completed,
            "order.cancelled": self.on_order_cancelled,
            "ticket.in_progress": self.on_ticket_in_progress,
            "ticket.waiting_user": self.on_ticket_waiting_user,
            "ticket.closed": self.on_ticket_closed,
            "rental.active": self.on_rental_active,
            "rental.expired": self.on_rental_expired,
            "rental.cancelled": self.on_rental_cancelled,
            "wallet.completed": self.on_wallet_completed,
            "affiliate_withdrawal.paid": self.on_withdrawal_paid,
            "service_request.new": self.on_service_request_created,
            TRANSITION_EVENT: self.on_any_transition,
        }

    def register(self, bus: EventBus) -> list[str]:
        """Subscribe every handler on ``bus``. Returns the event names."""
        handlers = self.handlers()
        for event, handler in handlers.items():
            bus.on(event, handler)
        return list(handlers)

    async def _notify(
        self,
        event: TransitionEvent,
        title: str,
        message: str,
        type: str = "info",
        send_email_copy: bool = False,
    ) -> None:
        if not event.item.user_id:
            return
        await self._notifier.notify(
            Notification(
                user_id=event.item.user_id,
                title=title,
                message=message,
                type=type,
                resource_type=event.entity_type.value,
                resource_id=event.entity_id,
                send_email_copy=send_email_copy,
            )
        )

    async def on_order_in_progress(self, event: TransitionEvent) -> None:
        # Payment is confirmed only on the pending -> in_progress edge
        if event.previous_state != "pending":
            return
        if self._commission_processor is not None and isinstance(event.item, Order):
            await self._commission_processor.process_order_commission(event.item)
        await self._notify(
            event,
            title="Payment confirmed",
            message=(
                f"Your payment for order #{_short_id(event.entity_id)} was verified. "
                "Work has started."
            ),
            type="success",
            send_email_copy=True,
        )

    async def on_order_completed(self, event: TransitionEvent) -> None:
        await self._notify(
            event,
            title="Order completed",
            message=f"Order #{_short_id(event.entity_id)} has been completed.",
            type="success",
            send_email_copy=True,
        )

    async def on_order_cancelled(self, event: TransitionEvent) -> None:
        message = f"Order #{_short_id(event.entity_id)} was cancelled."
        if event.meta.reason:
            message = f"{message} Reason: {event.meta.reason}"
        await self._notify(event, title="Order cancelled", message=message, type="warning")

    async def on_ticket_in_progress(self, event: TransitionEvent) -> None:
        subject = "your ticket"
        if isinstance(event.item, Ticket) and event.item.subject:
            subject = f"\"{event.item.subject}\""
        await self._notify(
            event,
            title="Ticket in progress",
            message=f"Support is now working on {subject}.",
        )

    async def on_ticket_waiting_user(self, event: TransitionEvent) -> None:
        await self._notify(
            event,
            title="Support replied",
            message=f"Ticket #{_short_id(event.entity_id)} is waiting for your response.",
            type="warning",
            send_email_copy=True,
        )

    async def on_ticket_closed(self, event: TransitionEvent) -> None:
        await self._notify(
            event,
            title="Ticket closed",
            message=f"Ticket #{_short_id(event.entity_id)} has been resolved and closed.",
            type="success",
        )

    async def on_rental_active(self, event: TransitionEvent) -> None:
        name = "Your rental"
        if isinstance(event.item, Rental) and event.item.service_name:
            name = event.item.service_name
        if event.previous_state == "renewed":
            title, message = "Rental renewed", f"{name} has been renewed and is active again."
        else:
            title, message = "Rental activated", f"{name} is now active."
        await self._notify(event, title=title, message=message, type="success")

    async def on_rental_expired(self, event: TransitionEvent) -> None:
        await self._notify(
            event,
            title="Rental expired",
            message="Your rental has expired. Renew it to keep access.",
            type="warning",
            send_email_copy=True,
        )

    async def on_rental_cancelled(self, event: TransitionEvent) -> None:
        message = "Your rental was cancelled."
        if event.meta.reason:
            message = f"{message} Reason: {event.meta.reason}"
        await self._notify(event, title="Rental cancelled", message=message, type="warning")

    async def on_wallet_completed(self, event: TransitionEvent) -> None:
        if not isinstance(event.item, WalletTransaction):
            return
        transaction = event.item
        verb = "credited to" if transaction.kind == "credit" else "debited from"
        message = f"${transaction.amount:.2f} was {verb} your wallet."
        if transaction.balance_after is not None:
            message = f"{message} New balance: ${transaction.balance_after:.2f}."
        await self._notify(event, title="Wallet updated", message=message, type="success")

    async def on_withdrawal_paid(self, event: TransitionEvent) -> None:
        await self._notify(
            event,
            title="Withdrawal paid",
            message="Your affiliate withdrawal has been paid out.",
            type="success",
            send_email_copy=True,
        )

    async def on_service_request_created(self, event: TransitionEvent) -> None:
        await self._observability.emit_event(
            event_type="service_request_created",
            payload={
                "service_request_id": event.entity_id,
                "requested_service": getattr(event.item, "requested_service", None),
            },
        )
        await self._notify(
            event,
            title="Request received",
            message="We received your service request. An admin will contact you shortly.",
        )

    async def on_any_transition(self, event: TransitionEvent) -> None:
        await self._observability.log(
            level="INFO",
            message="transition",
            context=event.summary(),
        )


def register_flow_hooks(
    bus: EventBus,
    notifier: Notifier,
    observability_manager: ObservabilityManager,
    commission_processor: CommissionProcessor | None = None,
) -> FlowHooks:
    """Create the default hooks and subscribe them on ``bus``."""
    hooks = FlowHooks(
        notifier=notifier,
        observability_manager=observability_manager,
        commission_processor=commission_processor,
    )
    hooks.register(bus)
    return hooks
