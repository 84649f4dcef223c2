# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

import events.bus as bus_mod
from events.bus import EventBus
from events.kinds import EventKind


@pytest.fixture(name="logged")
def fixture_logged(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []

    def fake_log_event(payload: dict[str, Any]) -> None:
        emitted.append(payload)

    monkeypatch.setattr(bus_mod, "log_event", fake_log_event)
    return emitted


# ---------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------

def test_handlers_run_in_registration_order() -> None:
    bus = EventBus()
    calls: list[str] = []

    bus.on(EventKind.NO_MATCHES, lambda _: calls.append("a"))
    bus.on(EventKind.NO_MATCHES, lambda _: calls.append("b"))
    bus.emit(EventKind.NO_MATCHES)

    assert calls == ["a", "b"]


def test_payload_is_passed_positionally() -> None:
    bus = EventBus()
    seen: list[Any] = []

    bus.on(EventKind.MATCH_ENDED, seen.append)
    bus.emit(EventKind.MATCH_ENDED, "bye")

    assert seen == ["bye"]


def test_raising_handler_is_isolated(logged: list[dict[str, Any]]) -> None:
    bus = EventBus()
    calls: list[str] = []

    def bad(_: Any) -> None:
        raise RuntimeError("boom")

    bus.on(EventKind.ERROR, bad)
    bus.on(EventKind.ERROR, lambda _: calls.append("after"))

    bus.emit(EventKind.ERROR, None)

    assert calls == ["after"]
    assert logged[0]["event_type"] == "EVENT_HANDLER_ERROR"
    assert logged[0]["exception"] == "RuntimeError"


def test_off_removes_one_registration() -> None:
    bus = EventBus()
    calls: list[int] = []

    def handler(_: Any) -> None:
        calls.append(1)

    bus.on(EventKind.CONNECT, handler)
    bus.on(EventKind.CONNECT, handler)
    bus.off(EventKind.CONNECT, handler)
    bus.emit(EventKind.CONNECT)

    assert calls == [1]
    # Removing an unknown handler is a no-op
    bus.off(EventKind.DISCONNECT, handler)


def test_off_during_emit_affects_next_emit_only() -> None:
    bus = EventBus()
    calls: list[str] = []

    def second(_: Any) -> None:
        calls.append("second")

    def first(_: Any) -> None:
        calls.append("first")
        bus.off(EventKind.NO_MATCHES, second)

    bus.on(EventKind.NO_MATCHES, first)
    bus.on(EventKind.NO_MATCHES, second)

    bus.emit(EventKind.NO_MATCHES)
    bus.emit(EventKind.NO_MATCHES)

    assert calls == ["first", "second", "first"]


def test_remove_all_listeners() -> None:
    bus = EventBus()
    bus.on(EventKind.CONNECT, print)
    bus.on(EventKind.DISCONNECT, print)

    bus.remove_all_listeners(EventKind.CONNECT)
    assert bus.listener_count(EventKind.CONNECT) == 0
    assert bus.listener_count(EventKind.DISCONNECT) == 1

    bus.remove_all_listeners()
    assert bus.listener_count(EventKind.DISCONNECT) == 0


def test_kind_accepts_wire_string() -> None:
    bus = EventBus()
    seen: list[Any] = []

    bus.on("matchFound", seen.append)  # type: ignore[arg-type]
    bus.emit(EventKind.MATCH_FOUND, "p")

    assert seen == ["p"]


@pytest.mark.asyncio
async def test_coroutine_handlers_are_scheduled_and_isolated(
    logged: list[dict[str, Any]],
) -> None:
    bus = EventBus()
    seen: list[Any] = []

    async def good(payload: Any) -> None:
        await asyncio.sleep(0)
        seen.append(payload)

    async def bad(_: Any) -> None:
        raise ValueError("async boom")

    bus.on(EventKind.STATS_UPDATE, bad)
    bus.on(EventKind.STATS_UPDATE, good)

    bus.emit(EventKind.STATS_UPDATE, 3)
    await bus.drain()

    assert seen == [3]
    assert any(e["exception"] == "ValueError" for e in logged)


def test_coroutine_handler_without_loop_is_reported(
    logged: list[dict[str, Any]],
) -> None:
    bus = EventBus()

    async def handler(_: Any) -> None:
        return None

    bus.on(EventKind.CONNECT, handler)
    bus.emit(EventKind.CONNECT)

    assert logged[0]["event_type"] == "EVENT_HANDLER_ERROR"


# ---------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_receives_selected_kinds_in_order() -> None:
    bus = EventBus()
    sub = bus.stream(EventKind.MATCH_FOUND, EventKind.MATCH_ENDED)

    bus.emit(EventKind.MATCH_FOUND, "p1")
    bus.emit(EventKind.NO_MATCHES)
    bus.emit(EventKind.MATCH_ENDED, "done")

    assert await sub.get() == (EventKind.MATCH_FOUND, "p1")
    assert await sub.get() == (EventKind.MATCH_ENDED, "done")
    assert sub.get_nowait() is None


def test_stream_drops_oldest_when_full() -> None:
    bus = EventBus()
    sub = bus.stream(maxsize=2)

    for n in range(5):
        bus.emit(EventKind.STATS_UPDATE, n)

    assert sub.dropped == 3
    assert len(sub) == 2
    assert sub.get_nowait() == (EventKind.STATS_UPDATE, 3)
    assert sub.get_nowait() == (EventKind.STATS_UPDATE, 4)


@pytest.mark.asyncio
async def test_stream_iteration_ends_after_close() -> None:
    bus = EventBus()
    received: list[Any] = []

    async with bus.stream(EventKind.AUDIO_RECEIVED) as sub:
        bus.emit(EventKind.AUDIO_RECEIVED, b"1")
        bus.emit(EventKind.AUDIO_RECEIVED, b"2")
        sub.close()
        async for _, payload in sub:
            received.append(payload)

    assert received == [b"1", b"2"]
    # Closed streams are detached from the bus
    bus.emit(EventKind.AUDIO_RECEIVED, b"3")
    assert len(sub) == 0


@pytest.mark.asyncio
async def test_stream_get_waits_for_emit() -> None:
    bus = EventBus()
    sub = bus.stream(EventKind.CONNECT)

    async def later() -> None:
        await asyncio.sleep(0.01)
        bus.emit(EventKind.CONNECT, "up")

    task = asyncio.create_task(later())
    assert await asyncio.wait_for(sub.get(), 1.0) == (EventKind.CONNECT, "up")
    await task


@pytest.mark.asyncio
async def test_remove_all_listeners_closes_streams() -> None:
    bus = EventBus()
    sub = bus.stream()

    bus.remove_all_listeners()

    with pytest.raises(StopAsyncIteration):
        await sub.get()


def test_stream_rejects_nonpositive_maxsize() -> None:
    with pytest.raises(ValueError):
        EventBus().stream(maxsize=0)
