"""
Bounded event subscriptions.

An alternative to callbacks for consumers that prefer to pull:

    async with bus.stream(EventKind.AUDIO_RECEIVED, maxsize=8) as events:
        async for kind, payload in events:
            ...

Drop rules:
- A full subscription drops its OLDEST event to keep consumers current
- Drops are counted, never raised
- Per-kind order is the emission order
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Callable, Deque, Optional

from events.kinds import EventKind


class EventSubscription:
    """Bounded FIFO of (kind, payload) pairs fed by an EventBus."""

    def __init__(
        self,
        *,
        kinds: frozenset[EventKind],
        maxsize: int,
        on_close: Callable[[EventSubscription], None],
    ) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be > 0")

        self.kinds = kinds
        self._maxsize = maxsize
        self._items: Deque[tuple[EventKind, Any]] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self._on_close = on_close
        self.dropped: int = 0

    # -------------------------
    # Producer side (EventBus)
    # -------------------------

    def wants(self, kind: EventKind) -> bool:
        return not self._closed and (not self.kinds or kind in self.kinds)

    def push(self, kind: EventKind, payload: Any) -> None:
        if self._closed:
            return
        if len(self._items) >= self._maxsize:
            self._items.popleft()
            self.dropped += 1
        self._items.append((kind, payload))
        self._wakeup.set()

    # -------------------------
    # Consumer side
    # -------------------------

    def get_nowait(self) -> Optional[tuple[EventKind, Any]]:
        """Oldest pending event, or None if empty."""
        if not self._items:
            return None
        return self._items.popleft()

    async def get(self) -> tuple[EventKind, Any]:
        """
        Wait for the next event.

        Raises:
            StopAsyncIteration once the subscription is closed and drained.
        """
        while True:
            item = self.get_nowait()
            if item is not None:
                return item
            if self._closed:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()

    def close(self) -> None:
        """Stop receiving; pending events can still be drained."""
        if self._closed:
            return
        self._closed = True
        self._wakeup.set()
        self._on_close(self)

    def __len__(self) -> int:
        return len(self._items)

    def __aiter__(self) -> EventSubscription:
        return self

    async def __anext__(self) -> tuple[EventKind, Any]:
        return await self.get()

    async def __aenter__(self) -> EventSubscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
