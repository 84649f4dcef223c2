"""
Typed publish/subscribe fan-out to callers (UI, diagnostics).

Guarantees:
- Handlers for a kind run in registration order
- A handler that raises is logged (EVENT_HANDLER_ERROR) and skipped;
  remaining handlers still run and emit() never raises
- Coroutine handlers are scheduled as tasks with the same isolation
- off() / on() during an emission affect the next emission only
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

from events.kinds import EventKind
from events.stream import EventSubscription
from observability.logger import log_event
from spec import EVENT_STREAM_DEFAULT_MAXSIZE

Handler = Callable[[Any], Any]


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Per-client event fan-out. Owned by ConnectionManager."""

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[Handler]] = {}
        self._subscriptions: list[EventSubscription] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on(self, kind: EventKind, handler: Handler) -> None:
        """Register a handler. The same handler may be registered twice."""
        self._handlers.setdefault(EventKind(kind), []).append(handler)

    def off(self, kind: EventKind, handler: Handler) -> None:
        """Remove the first registration of handler for kind (no-op if absent)."""
        handlers = self._handlers.get(EventKind(kind))
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return

    def remove_all_listeners(self, kind: EventKind | None = None) -> None:
        """Drop handlers for one kind, or every handler and stream."""
        if kind is not None:
            self._handlers.pop(EventKind(kind), None)
            return

        self._handlers.clear()
        for sub in list(self._subscriptions):
            sub.close()

    def listener_count(self, kind: EventKind) -> int:
        return len(self._handlers.get(EventKind(kind), ()))

    def stream(
        self,
        *kinds: EventKind,
        maxsize: int = EVENT_STREAM_DEFAULT_MAXSIZE,
    ) -> EventSubscription:
        """
        Open a bounded pull subscription.

        No kinds means every kind.
        """
        sub = EventSubscription(
            kinds=frozenset(EventKind(k) for k in kinds),
            maxsize=maxsize,
            on_close=self._detach,
        )
        self._subscriptions.append(sub)
        return sub

    def _detach(self, sub: EventSubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def emit(self, kind: EventKind, payload: Any = None) -> None:
        """Deliver payload to every handler and stream for kind. Never raises."""
        kind = EventKind(kind)

        for handler in tuple(self._handlers.get(kind, ())):
            try:
                result = handler(payload)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._report_failure(kind, handler, exc)
                continue

            if inspect.isawaitable(result):
                self._schedule(kind, handler, result)

        for sub in tuple(self._subscriptions):
            if sub.wants(kind):
                sub.push(kind, payload)

    def _schedule(self, kind: EventKind, handler: Handler, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            # No running loop: the coroutine can never run
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self._report_failure(kind, handler, exc)
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._report_failure(kind, handler, exc)

        task.add_done_callback(_done)

    def _report_failure(self, kind: EventKind, handler: Handler, exc: BaseException) -> None:
        log_event({
            "level": "ERROR",
            "event_type": "EVENT_HANDLER_ERROR",
            "event_kind": kind.value,
            "handler": _handler_name(handler),
            "exception": type(exc).__name__,
            "message": str(exc),
        })

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)
