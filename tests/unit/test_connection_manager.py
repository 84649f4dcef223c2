# pylint: disable=missing-module-docstring,missing-function-docstring
# pylint: disable=redefined-outer-name

import asyncio
import json
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import pytest
import pytest_asyncio

from config import ClientConfig
from connection.enums.state import ConnectionState
from connection.manager import ConnectionManager
from events.kinds import EventKind
from protocol.errors import ErrorKind, MaxRetryExceededError, NotConnectedError
from session.address_store import JsonAddressStore
from session.models import Gender, LookingFor, Profile
from transport.base import Transport, TransportClosedError

ADDRESS = "ws://relay.test/ws"
OGG_CLIP = b"OggS\x00\x02" + b"\x01" * 64

PROFILE = Profile(
    display_name="Ana",
    age=27,
    gender=Gender.FEMALE,
    looking_for=LookingFor.BOTH,
)


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeTransport(Transport):
    """In-memory transport driven by the test."""

    def __init__(self, address: str, *, auto_open: bool, fail_open: Exception | None) -> None:
        self.address = address
        self.sent: list[str | bytes] = []
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.open_gate = asyncio.Event()
        self.fail_open = fail_open
        self.closed_with: tuple[int, str] | None = None
        if auto_open:
            self.open_gate.set()

    async def open(self) -> None:
        await self.open_gate.wait()
        if self.fail_open is not None:
            raise self.fail_open

    async def recv(self) -> str | bytes:
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, payload: str | bytes) -> None:
        if self.closed_with is not None:
            raise TransportClosedError(*self.closed_with)
        self.sent.append(payload)

    async def close(self, code: int, reason: str) -> None:
        if self.closed_with is not None:
            return
        self.closed_with = (code, reason)
        self.inbox.put_nowait(TransportClosedError(code, reason))

    # Test controls
    def deliver(self, payload: str | bytes) -> None:
        self.inbox.put_nowait(payload)

    def drop(self, code: int = 1006) -> None:
        self.inbox.put_nowait(TransportClosedError(code, None))

    def fail(self, exc: Exception) -> None:
        self.inbox.put_nowait(exc)


class FakeTransportFactory:
    def __init__(self, *, auto_open: bool = True, fail_open: Exception | None = None) -> None:
        self.auto_open = auto_open
        self.fail_open = fail_open
        self.created: list[FakeTransport] = []

    def __call__(self, address: str) -> FakeTransport:
        transport = FakeTransport(address, auto_open=self.auto_open, fail_open=self.fail_open)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class FakeProfileStore:
    def __init__(self, profile: Profile | None) -> None:
        self.profile = profile

    def get_stored_profile(self) -> Profile | None:
        return self.profile


def fast_config(**overrides: Any) -> ClientConfig:
    values: dict[str, Any] = {
        "connect_timeout_ms": 50,
        "reconnect_base_delay_ms": 10,
        "reconnect_max_delay_ms": 40,
        "max_reconnect_attempts": 2,
    }
    values.update(overrides)
    return ClientConfig(**values)


async def eventually(predicate: Callable[[], bool], timeout_s: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout_s)


async def next_event(sub: Any, timeout_s: float = 1.0) -> tuple[EventKind, Any]:
    return await asyncio.wait_for(sub.get(), timeout_s)


@pytest_asyncio.fixture
async def make_manager() -> AsyncIterator[Callable[..., ConnectionManager]]:
    managers: list[ConnectionManager] = []

    def _make(factory: FakeTransportFactory, **kwargs: Any) -> ConnectionManager:
        kwargs.setdefault("config", fast_config())
        manager = ConnectionManager(transport_factory=factory, **kwargs)
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        await manager.destroy()


async def open_manager(
    make_manager: Callable[..., ConnectionManager],
    factory: FakeTransportFactory | None = None,
    **kwargs: Any,
) -> tuple[ConnectionManager, FakeTransportFactory]:
    factory = factory or FakeTransportFactory()
    manager = make_manager(factory, **kwargs)
    await manager.connect(ADDRESS)
    await manager.wait_until_open(timeout_s=1.0)
    return manager, factory


# ---------------------------------------------------------------------
# Send gating
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_send_while_idle_raises_and_emits_error(make_manager) -> None:
    factory = FakeTransportFactory()
    manager = make_manager(factory)
    errors: list[Any] = []
    manager.bus.on(EventKind.ERROR, errors.append)

    with pytest.raises(NotConnectedError):
        await manager.send_audio(OGG_CLIP)

    assert errors[0].kind is ErrorKind.NOT_CONNECTED
    assert factory.created == []


@pytest.mark.asyncio
async def test_send_recording_file_keeps_file_when_not_connected(
    make_manager, tmp_path: Path
) -> None:
    clip = tmp_path / "clip.ogg"
    clip.write_bytes(OGG_CLIP)
    manager = make_manager(FakeTransportFactory())

    with pytest.raises(NotConnectedError):
        await manager.send_recording_file(clip)

    assert clip.exists()


@pytest.mark.asyncio
async def test_connect_without_any_address_raises(make_manager) -> None:
    manager = make_manager(FakeTransportFactory())

    with pytest.raises(ValueError):
        await manager.connect()


# ---------------------------------------------------------------------
# Open / inbound dispatch
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_opens_and_emits_connect(make_manager) -> None:
    factory = FakeTransportFactory()
    manager = make_manager(factory)
    sub = manager.bus.stream(EventKind.CONNECT)

    await manager.connect(ADDRESS)
    await manager.connect(ADDRESS)
    await manager.wait_until_open(timeout_s=1.0)

    _, info = await next_event(sub)
    assert info.address == ADDRESS
    assert not info.reconnected
    assert len(factory.created) == 1
    assert manager.connection_info()["connected"]
    assert tuple(manager.active_timers) == ()


@pytest.mark.asyncio
async def test_address_provider_is_used_as_fallback(make_manager) -> None:
    class Provider:
        def get_server_address(self) -> str:
            return ADDRESS

    factory = FakeTransportFactory()
    manager = make_manager(factory, address_provider=Provider())

    await manager.connect()
    await manager.wait_until_open(timeout_s=1.0)

    assert factory.last.address == ADDRESS


@pytest.mark.asyncio
async def test_remembered_address_is_used(make_manager, tmp_path: Path) -> None:
    store = JsonAddressStore(tmp_path / "relay.json")
    store.save_server_address(ADDRESS)
    factory = FakeTransportFactory()
    manager = make_manager(factory, address_provider=store)

    await manager.connect()
    await manager.wait_until_open(timeout_s=1.0)

    assert factory.last.address == ADDRESS


@pytest.mark.asyncio
async def test_inbound_control_messages_are_dispatched(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    sub = manager.bus.stream(
        EventKind.MATCH_FOUND,
        EventKind.PARTNER_DISCONNECTED,
        EventKind.MATCH_ENDED,
        EventKind.STATS_UPDATE,
    )

    factory.last.deliver(json.dumps({"type": "match_found", "partner": {"name": "Bo", "age": 30}}))
    kind, partner = await next_event(sub)
    assert kind is EventKind.MATCH_FOUND
    assert partner.display_name == "Bo"
    assert manager.session.in_match

    factory.last.deliver('{"type":"partner_disconnected"}')
    assert await next_event(sub) == (EventKind.PARTNER_DISCONNECTED, None)
    assert await next_event(sub) == (EventKind.MATCH_ENDED, "Partner disconnected")
    assert not manager.session.in_match

    factory.last.deliver('{"type":"stats_update","stats":{"usersOnline":12}}')
    kind, stats = await next_event(sub)
    assert stats.users_online == 12


@pytest.mark.asyncio
async def test_inbound_audio_is_emitted(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    sub = manager.bus.stream(EventKind.AUDIO_RECEIVED)

    factory.last.deliver(OGG_CLIP)

    _, frame = await next_event(sub)
    assert frame.payload == OGG_CLIP


@pytest.mark.asyncio
async def test_protocol_error_keeps_connection(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    sub = manager.bus.stream(EventKind.ERROR, EventKind.NO_MATCHES)

    factory.last.deliver("definitely not a relay message")
    factory.last.deliver('{"type":"no_matches"}')

    kind, info = await next_event(sub)
    assert kind is EventKind.ERROR
    assert info.kind is ErrorKind.PROTOCOL_ERROR
    assert await next_event(sub) == (EventKind.NO_MATCHES, None)
    assert manager.state is ConnectionState.OPEN


@pytest.mark.asyncio
async def test_unparseable_text_is_dropped_without_closing(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    sub = manager.bus.stream(EventKind.ERROR, EventKind.AUDIO_RECEIVED, EventKind.NO_MATCHES)

    factory.last.deliver("[" * 200_000)
    factory.last.deliver("9" * 5_000)
    factory.last.deliver('{"type":"no_matches"}')

    kind, info = await next_event(sub)
    assert kind is EventKind.ERROR
    assert info.kind is ErrorKind.PROTOCOL_ERROR
    assert (await next_event(sub))[0] is EventKind.AUDIO_RECEIVED
    assert await next_event(sub) == (EventKind.NO_MATCHES, None)

    assert manager.state is ConnectionState.OPEN
    assert len(factory.created) == 1
    assert factory.last.closed_with is None


@pytest.mark.asyncio
async def test_failing_dispatch_keeps_connection(
    make_manager, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager, factory = await open_manager(make_manager)
    sub = manager.bus.stream(EventKind.NO_MATCHES)

    def broken_set_partner(partner: Any) -> None:
        raise RuntimeError("session unavailable")

    monkeypatch.setattr(manager.session, "set_partner", broken_set_partner)

    factory.last.deliver('{"type":"match_found","partner":{"name":"Bo"}}')
    factory.last.deliver('{"type":"no_matches"}')

    assert await next_event(sub) == (EventKind.NO_MATCHES, None)
    assert manager.state is ConnectionState.OPEN
    assert factory.last.closed_with is None


@pytest.mark.asyncio
async def test_receive_failure_closes_socket_before_reconnecting(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    errors: list[Any] = []
    manager.bus.on(EventKind.ERROR, errors.append)
    first = factory.last

    first.fail(RuntimeError("socket reset"))

    await eventually(lambda: len(factory.created) == 2 and manager.is_connected)
    assert first.closed_with == (1000, "socket reset")
    assert errors[0].kind is ErrorKind.TRANSPORT_ERROR


@pytest.mark.asyncio
async def test_server_error_is_surfaced(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    sub = manager.bus.stream(EventKind.ERROR)

    factory.last.deliver('{"type":"error","message":"queue full"}')

    _, info = await next_event(sub)
    assert info.kind is ErrorKind.SERVER_ERROR
    assert info.message == "queue full"


# ---------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_audio_is_sent_binary_by_default(make_manager) -> None:
    manager, factory = await open_manager(make_manager)

    await manager.send_audio(OGG_CLIP)

    assert factory.last.sent == [OGG_CLIP]


@pytest.mark.asyncio
async def test_audio_is_sent_as_tagged_base64_when_configured(make_manager) -> None:
    manager, factory = await open_manager(
        make_manager, config=fast_config(audio_wire_format="base64")
    )

    await manager.send_audio(OGG_CLIP)

    (text,) = factory.last.sent
    assert isinstance(text, str)
    assert text.startswith("data:audio/ogg;base64,")


@pytest.mark.asyncio
async def test_find_match_uses_stored_profile(make_manager) -> None:
    manager, factory = await open_manager(
        make_manager, profile_store=FakeProfileStore(PROFILE)
    )

    await manager.find_match()

    sent = json.loads(factory.last.sent[-1])
    assert sent["type"] == "find_match"
    assert sent["profile"]["name"] == "Ana"
    assert manager.session.profile == PROFILE


@pytest.mark.asyncio
async def test_find_match_without_profile_raises(make_manager) -> None:
    manager, _ = await open_manager(make_manager, profile_store=FakeProfileStore(None))

    with pytest.raises(ValueError):
        await manager.find_match()


@pytest.mark.asyncio
async def test_send_recording_reads_microphone(make_manager) -> None:
    class Mic:
        async def capture_microphone_buffer(self) -> bytes:
            return OGG_CLIP

    manager, factory = await open_manager(make_manager)

    await manager.send_recording(Mic())

    assert factory.last.sent == [OGG_CLIP]


# ---------------------------------------------------------------------
# Timeouts and reconnects
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_timeout_reports_error_and_reconnects(make_manager) -> None:
    factory = FakeTransportFactory(auto_open=False)
    manager = make_manager(factory)
    sub = manager.bus.stream(EventKind.ERROR, EventKind.RECONNECTING, EventKind.CONNECT)

    await manager.connect(ADDRESS)

    kind, info = await next_event(sub)
    assert kind is EventKind.ERROR
    assert info.kind is ErrorKind.CONNECTION_TIMEOUT

    kind, reconnect = await next_event(sub)
    assert kind is EventKind.RECONNECTING
    assert reconnect.attempt == 1
    assert factory.created[0].closed_with == (1006, "connect_timeout")

    # The second attempt opens in time
    await eventually(lambda: len(factory.created) == 2)
    factory.last.open_gate.set()
    kind, connect_info = await next_event(sub)
    assert kind is EventKind.CONNECT
    assert connect_info.reconnected


@pytest.mark.asyncio
async def test_abnormal_close_reconnects_and_resumes_matching(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    disconnects: list[Any] = []
    manager.bus.on(EventKind.DISCONNECT, disconnects.append)

    await manager.find_match(PROFILE)
    first = factory.last
    first.drop(1006)

    await eventually(lambda: len(factory.created) == 2 and manager.is_connected)
    second = factory.last
    await eventually(lambda: bool(second.sent))

    assert json.loads(second.sent[0])["type"] == "find_match"
    assert [d.code for d in disconnects] == [1006]
    assert manager.snapshot.retry.attempt == 0


@pytest.mark.asyncio
async def test_normal_close_from_relay_does_not_reconnect(make_manager) -> None:
    manager, factory = await open_manager(make_manager)

    factory.last.drop(1000)
    await manager.wait_for_state(ConnectionState.CLOSED, timeout_s=1.0)
    await asyncio.sleep(0.05)

    assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_retry_budget_exhaustion_fails(make_manager) -> None:
    factory = FakeTransportFactory(fail_open=OSError("connection refused"))
    manager = make_manager(factory)
    exceeded: list[Any] = []
    manager.bus.on(EventKind.MAX_RETRY_EXCEEDED, exceeded.append)

    await manager.connect(ADDRESS)

    with pytest.raises(MaxRetryExceededError):
        await manager.wait_until_open(timeout_s=2.0)

    assert manager.state is ConnectionState.FAILED
    assert exceeded == [2]
    assert len(factory.created) == 3


# ---------------------------------------------------------------------
# disconnect / destroy
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_disconnect_ends_session_and_emits_once(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    disconnects: list[Any] = []
    manager.bus.on(EventKind.DISCONNECT, disconnects.append)

    await manager.disconnect()
    await manager.disconnect()

    assert manager.state is ConnectionState.CLOSED
    assert factory.last.sent[-1] == '{"type":"end_session"}'
    assert factory.last.closed_with == (1000, "User disconnected")
    assert len(disconnects) == 1
    assert disconnects[0].user_initiated
    assert tuple(manager.active_timers) == ()

    with pytest.raises(NotConnectedError):
        await manager.send_audio(OGG_CLIP)


@pytest.mark.asyncio
async def test_reconnect_after_disconnect(make_manager) -> None:
    manager, factory = await open_manager(make_manager)

    await manager.disconnect()
    await manager.connect()
    await manager.wait_until_open(timeout_s=1.0)

    assert len(factory.created) == 2
    assert factory.last.address == ADDRESS


@pytest.mark.asyncio
async def test_destroy_then_connect_is_ignored(make_manager) -> None:
    manager, factory = await open_manager(make_manager)
    manager.bus.on(EventKind.ERROR, print)

    await manager.destroy()
    await manager.connect(ADDRESS)

    assert manager.state is ConnectionState.CLOSED
    assert manager.snapshot.is_destroyed
    assert len(factory.created) == 1
    assert factory.last.closed_with == (1000, "released")
    assert manager.bus.listener_count(EventKind.ERROR) == 0


@pytest.mark.asyncio
async def test_reset_allows_reuse(make_manager) -> None:
    manager, factory = await open_manager(make_manager)

    await manager.reset()
    assert manager.state is ConnectionState.IDLE

    await manager.connect()
    await manager.wait_until_open(timeout_s=1.0)
    assert len(factory.created) == 2


@pytest.mark.asyncio
async def test_stop_reconnecting_cancels_pending_reconnect(make_manager) -> None:
    factory = FakeTransportFactory()
    manager = make_manager(
        factory, config=fast_config(reconnect_base_delay_ms=100, reconnect_max_delay_ms=400),
    )
    await manager.connect(ADDRESS)
    await manager.wait_until_open(timeout_s=1.0)

    factory.last.drop(1006)
    await manager.wait_for_state(ConnectionState.RECONNECTING, timeout_s=1.0)
    await manager.stop_reconnecting()

    assert manager.state is ConnectionState.FAILED
    await asyncio.sleep(0.25)

    assert len(factory.created) == 1
    assert manager.active_timers == ()
    assert manager.state is ConnectionState.FAILED
