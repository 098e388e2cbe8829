"""EventBus: named pub/sub between the transition engine and side-effect hooks."""

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.models.errors import HookError

logger = structlog.get_logger(__name__)

TRANSITION_EVENT = "transition"
"""Generic event published for every successful transition."""

Handler = Callable[[Any], Awaitable[None] | None]


@dataclass(frozen=True)
class _Subscription:
    handler: Handler
    once: bool = False


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """In-process event bus owned by the orchestrator.

    Handlers run as independently scheduled tasks after ``publish``
    returns. A failing handler is wrapped in ``HookError`` and logged; it
    never reaches the publisher and never affects sibling handlers.
    Delivery is at most once per publish, with no ordering guarantee and
    no retry.

    Example:
        ```python
        bus = EventBus(observability_manager)

        async def on_closed(event: TransitionEvent) -> None:
            ...

        bus.on("ticket.closed", on_closed)
        bus.publish("ticket.closed", event)  # returns immediately
        await bus.drain()                    # wait for in-flight handlers
        ```
    """

    def __init__(self, observability_manager: ObservabilityManager) -> None:
        self._observability = observability_manager
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()
        self._failures = 0

    def on(self, event: str, handler: Handler) -> None:
        """Register ``handler`` for every publish of ``event``."""
        self._subscriptions[event].append(_Subscription(handler=handler))

    def once(self, event: str, handler: Handler) -> None:
        """Register ``handler`` for the next publish of ``event`` only."""
        self._subscriptions[event].append(_Subscription(handler=handler, once=True))

    def off(self, event: str, handler: Handler) -> bool:
        """Remove every registration of ``handler`` for ``event``.

        Returns:
            True if at least one registration was removed.
        """
        subscriptions = self._subscriptions.get(event, [])
        remaining = [s for s in subscriptions if s.handler != handler]
        removed = len(remaining) != len(subscriptions)
        if remaining:
            self._subscriptions[event] = remaining
        else:
            self._subscriptions.pop(event, None)
        return removed

    def listener_count(self, event: str) -> int:
        return len(self._subscriptions.get(event, []))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def failure_count(self) -> int:
        """Number of handler failures contained since construction."""
        return self._failures

    def publish(self, event: str, payload: Any) -> list[asyncio.Task[None]]:
        """Schedule every handler of ``event`` and return without awaiting them.

        Must be called from a running event loop.

        Returns:
            The scheduled tasks (mainly useful in tests).
        """
        subscriptions = self._subscriptions.get(event)
        if not subscriptions:
            return []

        # once-handlers are removed before scheduling so a re-entrant publish cannot run them twice
        if any(s.once for s in subscriptions):
            remaining = [s for s in subscriptions if not s.once]
            if remaining:
                self._subscriptions[event] = remaining
            else:
                self._subscriptions.pop(event, None)

        loop = asyncio.get_running_loop()
        tasks = []
        for subscription in list(subscriptions):
            task = loop.create_task(self._invoke(event, subscription.handler, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def _invoke(self, event: str, handler: Handler, payload: Any) -> None:
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._failures += 1
            error = HookError(event=event, handler_name=_handler_name(handler), cause=e)
            logged = await self._observability.try_log(
                level="ERROR",
                message=str(error),
                context=error.details,
            )
            if not logged:
                logger.error("hook_failed", **error.details, error=str(e))

    async def drain(self) -> None:
        """Wait until every scheduled handler, including ones they schedule, has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
