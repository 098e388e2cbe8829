"""SweepJobs: periodic rental-expiry and payment-reminder runs.

Both jobs are safe to run concurrently or repeatedly. Each candidate is
guarded by a marker claimed atomically in the repository before any side
effect, and the marker is released again when the side effect fails so
the next run retries it.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from flowcore.domain.components.transition_engine import TransitionEngine
from flowcore.domain.interfaces.collaborators import Notifier
from flowcore.domain.interfaces.entity_repository import StateStoreError
from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.models.entity import EntityType, Order, Rental
from flowcore.domain.models.errors import OrchestrationError
from flowcore.domain.models.notification import Notification
from flowcore.domain.models.service_offering import SweepReport
from flowcore.domain.models.state_transition import utc_now

PAYMENT_REMINDER_MARKER = "payment_reminder_sent"


def expiry_marker(rental: Rental) -> str:
    """Marker for one expiry of one rental; a renewed end date gets a new marker."""
    end_date = rental.end_date.isoformat() if rental.end_date else "none"
    return f"expiry_processed:{end_date}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SweepJobs:
    """Runs the periodic sweeps through the transition engine and notifier."""

    def __init__(
        self,
        transition_engine: TransitionEngine,
        notifier: Notifier,
        observability_manager: ObservabilityManager,
        reminder_after_hours: float = 2,
        batch_limit: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize SweepJobs.

        Args:
            transition_engine: Engine used for every status change.
            notifier: Delivers payment reminders.
            observability_manager: ObservabilityManager for events and logging.
            reminder_after_hours: Pending orders older than this get a reminder.
            batch_limit: Maximum candidates loaded per run.
            clock: Source of timestamps; defaults to timezone-aware UTC now.
        """
        self._engine = transition_engine
        self._notifier = notifier
        self._observability = observability_manager
        self._reminder_after = timedelta(hours=reminder_after_hours)
        self._batch_limit = batch_limit
        self._clock = clock or utc_now

    async def expire_rentals(self, now: datetime | None = None) -> SweepReport:
        """Move active rentals whose end date has passed to ``expired``."""
        now = _as_utc(now or self._clock())
        repository = self._engine.repository(EntityType.Rental)
        candidates = await repository.list_by_status("active", limit=self._batch_limit)
        due = [
            rental
            for rental in candidates
            if isinstance(rental, Rental)
            and rental.end_date is not None
            and _as_utc(rental.end_date) <= now
        ]

        report = SweepReport(job="expire_rentals", found=len(due))
        for rental in due:
            marker = expiry_marker(rental)
            if rental.has_marker(marker) or not await repository.claim_marker(rental.id, marker):
                report.skipped += 1
                continue
            try:
                await self._engine.transition(
                    EntityType.Rental,
                    rental.id,
                    "expired",
                    {"actor": "system", "reason": "Rental period ended"},
                )
            except (OrchestrationError, StateStoreError) as e:
                report.failed += 1
                await repository.release_marker(rental.id, marker)
                await self._observability.try_log(
                    level="WARNING",
                    message=f"Failed to expire rental: {e}",
                    context={"rental_id": rental.id, "error_type": type(e).__name__},
                )
                continue
            report.processed += 1
            report.processed_ids.append(rental.id)

        await self._finish(report)
        return report

    async def payment_reminders(self, now: datetime | None = None) -> SweepReport:
        """Remind owners of orders that have been pending past the threshold."""
        now = _as_utc(now or self._clock())
        cutoff = now - self._reminder_after
        repository = self._engine.repository(EntityType.Order)
        candidates = await repository.list_by_status("pending", limit=self._batch_limit)
        due = [
            order
            for order in candidates
            if isinstance(order, Order)
            and not order.has_marker(PAYMENT_REMINDER_MARKER)
            and _as_utc(order.created_at) <= cutoff
        ]

        report = SweepReport(job="payment_reminders", found=len(due))
        for order in due:
            if not order.user_id:
                report.skipped += 1
                continue
            if not await repository.claim_marker(order.id, PAYMENT_REMINDER_MARKER):
                report.skipped += 1
                continue
            try:
                await self._notifier.notify(
                    Notification(
                        user_id=order.user_id,
                        title="Payment pending",
                        message=(
                            f"Your order for {order.service_name or 'your service'} is still "
                            "waiting for payment. Complete payment to get started."
                        ),
                        type="warning",
                        resource_type="order",
                        resource_id=order.id,
                        send_email_copy=True,
                    )
                )
            except Exception as e:
                report.failed += 1
                await repository.release_marker(order.id, PAYMENT_REMINDER_MARKER)
                await self._observability.try_log(
                    level="WARNING",
                    message=f"Payment reminder failed: {e}",
                    context={"order_id": order.id, "error_type": type(e).__name__},
                )
                continue
            report.processed += 1
            report.processed_ids.append(order.id)

        await self._finish(report)
        return report

    async def _finish(self, report: SweepReport) -> None:
        await self._observability.try_emit(
            event_type="sweep_completed",
            payload=report.model_dump(exclude={"processed_ids"}),
        )
        await self._observability.try_log(
            level="INFO",
            message=f"Sweep {report.job} finished",
            context=report.model_dump(exclude={"processed_ids"}),
        )
