"""
Connection execution shell for a single relay client.

Responsibilities:
- Own the authoritative ConnectionSnapshot
- Call the pure reducer
- Execute commands with side effects (transport, timers, bus, session)
- Run one transport task per attempt and classify its inbound payloads
- Gate outbound sends on OPEN

Non-responsibilities:
- No lifecycle decisions (reducer.py owns them)
- No wire format details (protocol/ and audio/ own them)
- No playback (audio/playback.py subscribes to the bus)
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import Any, Iterable

from audio.frames import AudioFrame
from audio.transcoder import OutboundAudio, coerce_outbound, read_recording, to_wire_text
from config import ClientConfig
from connection.commands import (
    AbortTransport,
    CancelTimer,
    ClearSession,
    Command,
    EmitEvent,
    LogEvent,
    OpenTransport,
    ReleaseResources,
    RemoveAllListeners,
    ResumeMatching,
    SendControl,
    StartTimer,
)
from connection.enums.state import ConnectionState
from connection.events import (
    CloseCompleted,
    ConnectRequested,
    ConnectTimeout,
    DestroyRequested,
    DisconnectRequested,
    Event,
    EventType,
    ReconnectReady,
    ResetRequested,
    StopReconnecting,
    TransportClosed,
    TransportFailed,
    TransportOpened,
)
from connection.reducer import reduce
from connection.retry import ReconnectPolicy
from connection.state import ConnectionSnapshot
from events.bus import EventBus
from events.kinds import EventKind
from observability.logger import log_event
from protocol.control import (
    Connected,
    EndMatch,
    FindMatch,
    InboundControl,
    MatchEnded,
    MatchFound,
    NoMatches,
    OutboundControl,
    PartnerDisconnected,
    ServerError,
    StatsUpdate,
    UnknownControl,
    encode_control,
)
from protocol.errors import (
    ConnectionTimeoutError,
    ErrorInfo,
    ErrorKind,
    MaxRetryExceededError,
    NotConnectedError,
    ProtocolError,
    TransportError,
)
from protocol.inbound import classify_inbound
from session.collaborators import AddressProvider, MicrophoneSource, ProfileStore
from session.models import Profile
from session.voice_session import VoiceSession
from spec import (
    ABNORMAL_CLOSURE_CODE,
    CLOSE_HANDSHAKE_TIMEOUT_S,
    LOG_PAYLOAD_PREVIEW_CHARS,
    NORMAL_CLOSURE_CODE,
    USER_DISCONNECT_REASON,
)
from transport.base import Transport, TransportClosedError, TransportFactory
from transport.websocket import websocket_transport_factory

PARTNER_DISCONNECTED_REASON = "Partner disconnected"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _preview(payload: str | bytes) -> str:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return f"<{len(payload)} bytes>"
    return payload[:LOG_PAYLOAD_PREVIEW_CHARS]


class ConnectionManager:
    """
    Execution boundary for one relay connection.

    Architectural role:
    ConnectionManager is the bridge between the pure connection layer
    (reducer + immutable snapshot) and the imperative world
    (sockets, timers, callers).

    Guarantees:
    - Reducer is called exactly once per incoming event
    - All side effects occur *after* the snapshot has been swapped
    - Commands are executed in reducer-emitted order
    - Timers and transport tasks re-enter through handle_event()
    - Each transport attempt reports exactly one TransportClosed

    Usage:

        manager = ConnectionManager(config=ClientConfig.load_from_env())
        manager.bus.on(EventKind.MATCH_FOUND, show_partner)
        await manager.connect("wss://relay.example:8080")
        await manager.wait_until_open()
        await manager.find_match(profile)
    """

    def __init__(
        self,
        *,
        config: ClientConfig | None = None,
        transport_factory: TransportFactory | None = None,
        bus: EventBus | None = None,
        session: VoiceSession | None = None,
        address_provider: AddressProvider | None = None,
        profile_store: ProfileStore | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.bus = bus or EventBus()
        self.session = session or VoiceSession()

        self._transport_factory = transport_factory or websocket_transport_factory(
            max_message_bytes=self.config.max_message_bytes,
        )
        self._address_provider = address_provider
        self._profile_store = profile_store

        self._snapshot = ConnectionSnapshot(
            policy=ReconnectPolicy(
                base_delay_ms=self.config.reconnect_base_delay_ms,
                max_delay_ms=self.config.reconnect_max_delay_ms,
                max_attempts=self.config.max_reconnect_attempts,
            ),
            connect_timeout_ms=self.config.connect_timeout_ms,
        )
        self._state_changed = asyncio.Condition()

        self._timers: dict[str, asyncio.Task[None]] = {}

        # Live transport attempt (at most one)
        self._transport: Transport | None = None
        self._transport_task: asyncio.Task[None] | None = None
        self._transport_attempt: int = 0

        # Attempt whose transport task may currently be cancelled by an abort.
        # Cleared while the task dispatches events so an abort never
        # interrupts reducer command execution.
        self._cancellable_attempt: int | None = None

        # attempt_id -> (code, reason) requested by AbortTransport
        self._abort_reasons: dict[int, tuple[int, str]] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> ConnectionSnapshot:
        """
        Current immutable connection snapshot.

        Only mutated internally through the reducer.
        """
        return self._snapshot

    @property
    def state(self) -> ConnectionState:
        return self._snapshot.state

    @property
    def is_connected(self) -> bool:
        return self._snapshot.state is ConnectionState.OPEN

    def connection_info(self) -> dict[str, Any]:
        """Flat status summary for UIs and diagnostics."""
        return {
            "connected": self.is_connected,
            "url": self._snapshot.address,
            "reconnect_attempts": self._snapshot.retry.attempt,
            "state": self._snapshot.state.value,
            "should_reconnect": self._snapshot.should_reconnect,
            "is_destroyed": self._snapshot.is_destroyed,
        }

    async def wait_for_state(
        self,
        *states: ConnectionState,
        timeout_s: float | None = None,
    ) -> ConnectionState:
        """
        Wait until the connection is in one of states.

        Raises:
            asyncio.TimeoutError if timeout_s elapses first.
        """
        targets = frozenset(states)
        async with self._state_changed:
            await asyncio.wait_for(
                self._state_changed.wait_for(lambda: self._snapshot.state in targets),
                timeout_s,
            )
        return self._snapshot.state

    async def wait_until_open(self, timeout_s: float | None = None) -> None:
        """
        Wait for the current connect() to settle.

        Raises:
            ConnectionTimeoutError if timeout_s elapses first.
            MaxRetryExceededError if the retry budget ran out.
            TransportError if reconnection was stopped.
            NotConnectedError if the connection was closed instead.
        """
        try:
            state = await self.wait_for_state(
                ConnectionState.OPEN,
                ConnectionState.FAILED,
                ConnectionState.CLOSED,
                timeout_s=timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                f"Not connected after {timeout_s} s (state={self.state.value})"
            ) from e

        if state is ConnectionState.OPEN:
            return
        if state is ConnectionState.FAILED:
            if self._snapshot.last_error is ErrorKind.MAX_RETRY_EXCEEDED:
                raise MaxRetryExceededError(
                    f"Gave up after {self._snapshot.retry.attempt} reconnect attempts"
                )
            raise TransportError("Connection failed and reconnection is stopped")
        raise NotConnectedError("Connection closed")

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the reducer.

        Processing steps:
        1. Pass the current snapshot and event to the pure reducer
        2. Swap in the new snapshot
        3. Execute all emitted commands sequentially
        4. Wake wait_for_state() callers on a state change
        """
        prev_state = self._snapshot.state
        new_snapshot, commands = reduce(self._snapshot, event)
        self._snapshot = new_snapshot

        for cmd in commands:
            await self._execute_command(cmd)

        if self._snapshot.state is not prev_state:
            async with self._state_changed:
                self._state_changed.notify_all()

    # ------------------------------------------------------------------
    # Caller API: lifecycle
    # ------------------------------------------------------------------

    async def connect(self, address: str | None = None) -> None:
        """
        Start connecting. Returns once the attempt has started.

        A no-op while CONNECTING or OPEN, and after destroy().

        Raises:
            ValueError if no address can be resolved.
        """
        if self._snapshot.is_destroyed:
            log_event({
                "level": "WARNING",
                "event_type": "CONNECT_AFTER_DESTROY",
                **self.session.log_context(),
            })
            return

        resolved = self._resolve_address(address)
        await self.handle_event(ConnectRequested(
            event_type=EventType.CONNECT_REQUESTED,
            ts_ms=_now_ms(),
            address=resolved,
        ))

    async def disconnect(self, reason: str = USER_DISCONNECT_REASON) -> None:
        """Graceful, final disconnect. Idempotent."""
        await self.handle_event(DisconnectRequested(
            event_type=EventType.DISCONNECT_REQUESTED,
            ts_ms=_now_ms(),
            reason=reason,
        ))
        # The transport is gone once the abort above has been executed
        if self._snapshot.state is ConnectionState.CLOSING:
            await self.handle_event(CloseCompleted(
                event_type=EventType.CLOSE_COMPLETED,
                ts_ms=_now_ms(),
                reason=reason,
            ))

    async def stop_reconnecting(self) -> None:
        await self.handle_event(StopReconnecting(
            event_type=EventType.STOP_RECONNECTING,
            ts_ms=_now_ms(),
        ))

    async def reset(self) -> None:
        """Return to IDLE for reuse. Ignored after destroy()."""
        await self.handle_event(ResetRequested(
            event_type=EventType.RESET_REQUESTED,
            ts_ms=_now_ms(),
        ))

    async def destroy(self) -> None:
        """Irreversible teardown: timers, transport and listeners."""
        await self.handle_event(DestroyRequested(
            event_type=EventType.DESTROY_REQUESTED,
            ts_ms=_now_ms(),
        ))

    def _resolve_address(self, address: str | None) -> str:
        for candidate in (address, self._snapshot.address, self.config.relay_url):
            if candidate:
                return candidate

        if self._address_provider is not None:
            provided = self._address_provider.get_server_address()
            if provided:
                return provided

        raise ValueError("No relay address: pass one to connect() or set RELAY_URL")

    # ------------------------------------------------------------------
    # Caller API: sending
    # ------------------------------------------------------------------

    async def send_audio(self, audio: OutboundAudio) -> None:
        """
        Send one voice clip.

        Write failures are reported as error(TransportError), not raised.

        Raises:
            NotConnectedError if the connection is not OPEN.
            TypeError / ProtocolError if audio is not usable audio.
        """
        transport = self._require_open("send_audio")
        frame = coerce_outbound(audio)

        payload: str | bytes = frame.payload
        if self.config.audio_wire_format == "base64":
            payload = to_wire_text(frame)

        if await self._write(transport, payload):
            log_event({
                "event_type": "AUDIO_SENT",
                "bytes": len(frame),
                "container": frame.container.value,
                "wire": self.config.audio_wire_format,
            })

    async def send_control(self, message: OutboundControl) -> None:
        """
        Send one control message.

        Raises:
            NotConnectedError if the connection is not OPEN.
        """
        transport = self._require_open("send_control")

        if isinstance(message, FindMatch):
            self.session.profile = message.profile
        elif isinstance(message, EndMatch):
            self.session.clear_partner()

        if await self._write(transport, encode_control(message)):
            log_event({
                "event_type": "CONTROL_SENT",
                "message_type": type(message).__name__,
            })

    async def find_match(self, profile: Profile | None = None) -> None:
        """
        Ask the relay for a partner.

        Raises:
            ValueError if no profile is given and none is stored.
            NotConnectedError if the connection is not OPEN.
        """
        if profile is None and self._profile_store is not None:
            profile = self._profile_store.get_stored_profile()
        if profile is None:
            raise ValueError("No profile available for find_match")

        await self.send_control(FindMatch(profile=profile))

    async def end_match(self) -> None:
        await self.send_control(EndMatch())

    async def send_recording(self, source: MicrophoneSource) -> None:
        """Capture one recording from source and send it."""
        self._require_open("send_recording")
        data = await source.capture_microphone_buffer()
        await self.send_audio(data)

    async def send_recording_file(
        self,
        path: str | os.PathLike[str],
        *,
        delete_after: bool = True,
    ) -> None:
        """
        Read a finished recording fully into memory and send it.

        The file is left in place when not connected.
        """
        self._require_open("send_recording_file")
        frame = read_recording(path, delete_after=delete_after)
        await self.send_audio(frame)

    def _require_open(self, operation: str) -> Transport:
        transport = self._transport
        if self._snapshot.state is ConnectionState.OPEN and transport is not None:
            return transport

        err = NotConnectedError(
            f"Cannot {operation}: not connected (state={self._snapshot.state.value})"
        )
        log_event({
            "level": "WARNING",
            "event_type": "SEND_REJECTED",
            "operation": operation,
            "state": self._snapshot.state.value,
        })
        self.bus.emit(EventKind.ERROR, err.info())
        raise err

    async def _write(
        self,
        transport: Transport,
        payload: str | bytes,
        *,
        surface_errors: bool = True,
    ) -> bool:
        try:
            await transport.send(payload)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "TRANSPORT_WRITE_FAILED",
                "exception": type(e).__name__,
                "message": str(e),
            })
            if surface_errors:
                self.bus.emit(
                    EventKind.ERROR,
                    ErrorInfo(kind=ErrorKind.TRANSPORT_ERROR, message=f"Send failed: {e}"),
                )
            return False
        return True

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                **self.session.log_context(),
            })

        elif isinstance(cmd, OpenTransport):
            self._open_transport(cmd.attempt_id, cmd.address)

        elif isinstance(cmd, AbortTransport):
            await self._abort_transport(cmd.attempt_id, cmd.code, cmd.reason)

        elif isinstance(cmd, SendControl):
            if self._transport is not None:
                await self._write(
                    self._transport,
                    encode_control(cmd.message),
                    surface_errors=False,
                )

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        elif isinstance(cmd, EmitEvent):
            self.bus.emit(cmd.kind, cmd.payload)

        elif isinstance(cmd, ClearSession):
            self.session.clear(clear_profile=cmd.clear_profile)

        elif isinstance(cmd, ResumeMatching):
            await self._resume_matching()

        elif isinstance(cmd, ReleaseResources):
            await self._release_resources()

        elif isinstance(cmd, RemoveAllListeners):
            self.bus.remove_all_listeners()

        else:
            log_event({
                "level": "ERROR",
                "event_type": "UNKNOWN_COMMAND",
                "command_type": getattr(cmd, "command_type", type(cmd).__name__),
            })

    async def _resume_matching(self) -> None:
        profile = self.session.profile
        if not self.config.resume_matching or profile is None:
            return

        log_event({
            "event_type": "RESUME_MATCHING",
            **self.session.log_context(),
        })
        try:
            await self.send_control(FindMatch(profile=profile))
        except NotConnectedError:
            # Connection dropped again before the resume went out
            return

    async def _release_resources(self) -> None:
        for timer_id in list(self._timers.keys()):
            self._cancel_timer(timer_id)

        if self._transport_task is not None:
            await self._abort_transport(
                self._transport_attempt, NORMAL_CLOSURE_CODE, "released"
            )

    # ------------------------------------------------------------------
    # Transport attempts
    # ------------------------------------------------------------------

    def _open_transport(self, attempt_id: int, address: str) -> None:
        transport = self._transport_factory(address)
        self._transport = transport
        self._transport_attempt = attempt_id
        self._transport_task = asyncio.create_task(
            self._run_transport(attempt_id, transport)
        )

    async def _abort_transport(self, attempt_id: int, code: int, reason: str) -> None:
        """
        Close the attempt's transport and wait for its task to finish.

        Idempotent; a no-op for attempts that are already gone.
        """
        if attempt_id != self._transport_attempt or self._transport_task is None:
            return

        transport = self._transport
        task = self._transport_task
        self._abort_reasons.setdefault(attempt_id, (code, reason))

        if transport is not None:
            await self._close_transport(attempt_id, transport, code, reason)

        if task is asyncio.current_task() or task.done():
            return

        if self._cancellable_attempt == attempt_id:
            task.cancel()
        await asyncio.wait({task})

    async def _run_transport(self, attempt_id: int, transport: Transport) -> None:
        code: int = ABNORMAL_CLOSURE_CODE
        reason: str | None = None

        if attempt_id not in self._abort_reasons:
            self._cancellable_attempt = attempt_id
            try:
                code, reason = await self._pump(attempt_id, transport)
            except asyncio.CancelledError:
                pass
            finally:
                if self._cancellable_attempt == attempt_id:
                    self._cancellable_attempt = None

        abort = self._abort_reasons.pop(attempt_id, None)
        if abort is not None:
            code, reason = abort
        else:
            # The pump ended on its own; the socket may still be up
            await self._close_transport(
                attempt_id, transport, NORMAL_CLOSURE_CODE, reason or "receive loop ended"
            )

        if self._transport_attempt == attempt_id:
            self._transport = None
            self._transport_task = None

        await self.handle_event(TransportClosed(
            event_type=EventType.TRANSPORT_CLOSED,
            ts_ms=_now_ms(),
            attempt_id=attempt_id,
            code=code,
            reason=reason,
        ))

    async def _close_transport(
        self,
        attempt_id: int,
        transport: Transport,
        code: int,
        reason: str,
    ) -> None:
        try:
            await asyncio.wait_for(transport.close(code, reason), CLOSE_HANDSHAKE_TIMEOUT_S)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "WARNING",
                "event_type": "TRANSPORT_CLOSE_FAILED",
                "attempt_id": attempt_id,
                "exception": type(e).__name__,
                "message": str(e),
            })

    async def _post(self, attempt_id: int, event: Event) -> None:
        """Dispatch from a transport task without being interruptible by an abort."""
        self._cancellable_attempt = None
        try:
            await self.handle_event(event)
        finally:
            self._cancellable_attempt = attempt_id

    async def _pump(self, attempt_id: int, transport: Transport) -> tuple[int, str | None]:
        """Open, then receive until closed. Returns the close code and reason."""
        try:
            await transport.open()
        except TransportClosedError as e:
            await self._post_failure(attempt_id, e)
            return e.code, e.reason
        except Exception as e:  # pylint: disable=broad-exception-caught
            await self._post_failure(attempt_id, e)
            return ABNORMAL_CLOSURE_CODE, None

        await self._post(attempt_id, TransportOpened(
            event_type=EventType.TRANSPORT_OPENED,
            ts_ms=_now_ms(),
            attempt_id=attempt_id,
        ))

        try:
            while attempt_id not in self._abort_reasons:
                payload = await transport.recv()
                self._handle_inbound(attempt_id, payload)
        except TransportClosedError as e:
            return e.code, e.reason
        except Exception as e:  # pylint: disable=broad-exception-caught
            await self._post_failure(attempt_id, e)
            return ABNORMAL_CLOSURE_CODE, str(e) or None

        return ABNORMAL_CLOSURE_CODE, None

    async def _post_failure(self, attempt_id: int, exc: BaseException) -> None:
        await self._post(attempt_id, TransportFailed(
            event_type=EventType.TRANSPORT_FAILED,
            ts_ms=_now_ms(),
            attempt_id=attempt_id,
            reason=f"{type(exc).__name__}: {exc}",
        ))

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def _handle_inbound(self, attempt_id: int, payload: str | bytes) -> None:
        if (
            attempt_id != self._snapshot.attempt_id
            or self._snapshot.state is not ConnectionState.OPEN
        ):
            log_event({
                "level": "DEBUG",
                "event_type": "INBOUND_DROPPED",
                "attempt_id": attempt_id,
                "state": self._snapshot.state.value,
            })
            return

        try:
            message = classify_inbound(payload)
        except ProtocolError as e:
            log_event({
                "level": "WARNING",
                "event_type": "INBOUND_PROTOCOL_ERROR",
                "message": str(e),
                "preview": _preview(payload),
            })
            self.bus.emit(EventKind.ERROR, e.info())
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            # One undecodable message never takes the connection down
            log_event({
                "level": "ERROR",
                "event_type": "INBOUND_CLASSIFY_FAILED",
                "exception": type(e).__name__,
                "message": str(e),
                "preview": _preview(payload),
            })
            self.bus.emit(
                EventKind.ERROR,
                ErrorInfo(
                    kind=ErrorKind.PROTOCOL_ERROR,
                    message=f"Invalid message format: {type(e).__name__}",
                ),
            )
            return

        try:
            self._deliver(payload, message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "INBOUND_DISPATCH_FAILED",
                "exception": type(e).__name__,
                "message": str(e),
                **self.session.log_context(),
            })

    def _deliver(self, payload: str | bytes, message: AudioFrame | InboundControl) -> None:
        if isinstance(message, AudioFrame):
            log_event({
                "event_type": "AUDIO_RECEIVED",
                "bytes": len(message),
                "container": message.container.value,
                "wire": "binary" if isinstance(payload, bytes) else "base64",
            })
            self.bus.emit(EventKind.AUDIO_RECEIVED, message)
            return

        self._dispatch_control(message)

    def _dispatch_control(self, message: InboundControl) -> None:
        if isinstance(message, Connected):
            log_event({
                "event_type": "RELAY_GREETING",
                "message": message.message,
            })

        elif isinstance(message, MatchFound):
            self.session.set_partner(message.partner)
            log_event({
                "event_type": "MATCH_FOUND",
                "partner": message.partner.label(),
                **self.session.log_context(),
            })
            self.bus.emit(EventKind.MATCH_FOUND, message.partner)

        elif isinstance(message, MatchEnded):
            self.session.clear_partner()
            self.bus.emit(EventKind.MATCH_ENDED, message.reason)

        elif isinstance(message, PartnerDisconnected):
            self.session.clear_partner()
            self.bus.emit(EventKind.PARTNER_DISCONNECTED, None)
            self.bus.emit(EventKind.MATCH_ENDED, PARTNER_DISCONNECTED_REASON)

        elif isinstance(message, NoMatches):
            self.bus.emit(EventKind.NO_MATCHES, None)

        elif isinstance(message, StatsUpdate):
            self.session.stats = message.stats
            self.bus.emit(EventKind.STATS_UPDATE, message.stats)

        elif isinstance(message, ServerError):
            log_event({
                "level": "WARNING",
                "event_type": "RELAY_ERROR",
                "message": message.message,
            })
            self.bus.emit(
                EventKind.ERROR,
                ErrorInfo(kind=ErrorKind.SERVER_ERROR, message=message.message),
            )

        elif isinstance(message, UnknownControl):
            log_event({
                "level": "WARNING",
                "event_type": "UNKNOWN_CONTROL_DROPPED",
                "message_type": message.type,
            })

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
    ) -> None:
        """
        Start or replace a timer that emits a timeout event.

        The attempt/retry identity is captured now so a late expiry is
        recognised as stale by the reducer.
        """
        self._cancel_timer(timer_id)

        attempt_id = self._snapshot.attempt_id
        retry_attempt = self._snapshot.retry.attempt

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
            except asyncio.CancelledError:
                # Timer was cancelled - this is normal
                return

            # An expired timer is no longer cancellable
            if self._timers.get(timer_id) is asyncio.current_task():
                del self._timers[timer_id]

            await self.handle_event(self._construct_timeout_event(
                timeout_event_type=timeout_event_type,
                attempt_id=attempt_id,
                retry_attempt=retry_attempt,
            ))

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _construct_timeout_event(
        self,
        *,
        timeout_event_type: EventType,
        attempt_id: int,
        retry_attempt: int,
    ) -> Event:
        ts = _now_ms()

        if timeout_event_type is EventType.CONNECT_TIMEOUT:
            return ConnectTimeout(
                event_type=EventType.CONNECT_TIMEOUT,
                ts_ms=ts,
                attempt_id=attempt_id,
            )

        if timeout_event_type is EventType.RECONNECT_READY:
            return ReconnectReady(
                event_type=EventType.RECONNECT_READY,
                ts_ms=ts,
                attempt=retry_attempt,
            )

        raise ValueError(f"Unknown timeout event type: {timeout_event_type}")

    @property
    def active_timers(self) -> Iterable[str]:
        """Ids of timers that are still pending (diagnostics and tests)."""
        return tuple(tid for tid, task in self._timers.items() if not task.done())
