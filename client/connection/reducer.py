"""
Pure connection reducer.

(snapshot, event) -> (new_snapshot, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

# Reducer owns timer semantics; the manager must not cancel timers implicitly.

from __future__ import annotations

from dataclasses import replace
from typing import Any

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
    AttemptEvent,
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
from connection.retry import RetryAttempt, next_attempt, reset_attempt
from connection.state import ConnectionSnapshot
from events.kinds import ConnectInfo, DisconnectInfo, EventKind, ReconnectInfo
from protocol.control import EndSession
from protocol.errors import ErrorInfo, ErrorKind
from spec import ABNORMAL_CLOSURE_CODE, NORMAL_CLOSURE_CODE


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_CONNECT = "connect_timeout"
TIMER_RECONNECT = "reconnect"

# States in which a live transport attempt may exist
_ATTEMPT_STATES = (ConnectionState.CONNECTING, ConnectionState.OPEN)

# States from which connect() starts a fresh retry budget
_FRESH_START_STATES = (
    ConnectionState.IDLE,
    ConnectionState.CLOSED,
    ConnectionState.FAILED,
)


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    snapshot: ConnectionSnapshot,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": snapshot.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "attempt_id": snapshot.attempt_id,
            "retry_count": snapshot.retry.attempt,
            "should_reconnect": snapshot.should_reconnect,
            "details": details or {},
        }
    )


def _log_transition(
    prev: ConnectionSnapshot,
    new: ConnectionSnapshot,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": prev.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    snapshot: ConnectionSnapshot, event: Event, reason: str
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    return snapshot, (_log(snapshot, event, "ignore", {"reason": reason}),)


def _is_stale(snapshot: ConnectionSnapshot, event: AttemptEvent) -> bool:
    return event.attempt_id != snapshot.attempt_id


def _error(kind: ErrorKind, message: str) -> EmitEvent:
    return EmitEvent(kind=EventKind.ERROR, payload=ErrorInfo(kind=kind, message=message))


def _begin_attempt(
    snapshot: ConnectionSnapshot,
    event: Event,
    *,
    address: str,
    retry: RetryAttempt,
    source: str,
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    """Bump attempt_id, enter CONNECTING and open a transport with a timeout."""
    new_snapshot = replace(
        snapshot,
        state=ConnectionState.CONNECTING,
        address=address,
        retry=retry,
        attempt_id=snapshot.attempt_id + 1,
        should_reconnect=True,
    )
    return new_snapshot, _logs_last((
        CancelTimer(timer_id=TIMER_RECONNECT),
        OpenTransport(attempt_id=new_snapshot.attempt_id, address=address),
        StartTimer(
            timer_id=TIMER_CONNECT,
            duration_ms=snapshot.connect_timeout_ms,
            timeout_event_type=EventType.CONNECT_TIMEOUT,
        ),
        _log_transition(snapshot, new_snapshot, event, source),
    ))


# =============================================================================
# Caller requests
# =============================================================================

def _on_connect_requested(
    snapshot: ConnectionSnapshot, event: ConnectRequested
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if snapshot.state in _ATTEMPT_STATES:
        return _ignore(snapshot, event, "already_connecting_or_open")
    if snapshot.state is ConnectionState.CLOSING:
        return _ignore(snapshot, event, "closing")

    retry = (
        reset_attempt()
        if snapshot.state in _FRESH_START_STATES
        else snapshot.retry
    )
    return _begin_attempt(
        replace(snapshot, last_error=None),
        event,
        address=event.address,
        retry=retry,
        source="connect_requested",
    )


def _on_disconnect_requested(
    snapshot: ConnectionSnapshot, event: DisconnectRequested
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if snapshot.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
        return _ignore(snapshot, event, "already_closed")
    if snapshot.state is ConnectionState.IDLE:
        return _ignore(snapshot, event, "never_connected")

    timers: tuple[Command, ...] = (
        CancelTimer(timer_id=TIMER_CONNECT),
        CancelTimer(timer_id=TIMER_RECONNECT),
    )

    # No live transport: the close that led here already emitted disconnect
    if snapshot.state in (ConnectionState.RECONNECTING, ConnectionState.FAILED):
        new_snapshot = replace(
            snapshot, state=ConnectionState.CLOSED, should_reconnect=False
        )
        return new_snapshot, _logs_last(timers + (
            ClearSession(clear_profile=True),
            _log_transition(snapshot, new_snapshot, event, "disconnect_requested"),
        ))

    new_snapshot = replace(
        snapshot, state=ConnectionState.CLOSING, should_reconnect=False
    )
    goodbye: tuple[Command, ...] = ()
    if snapshot.state is ConnectionState.OPEN:
        goodbye = (SendControl(message=EndSession()),)

    return new_snapshot, _logs_last(timers + goodbye + (
        AbortTransport(
            attempt_id=snapshot.attempt_id,
            code=NORMAL_CLOSURE_CODE,
            reason=event.reason,
        ),
        _log_transition(snapshot, new_snapshot, event, "disconnect_requested"),
    ))


def _on_close_completed(
    snapshot: ConnectionSnapshot, event: CloseCompleted
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if snapshot.state is not ConnectionState.CLOSING:
        return _ignore(snapshot, event, "not_closing")

    new_snapshot = replace(snapshot, state=ConnectionState.CLOSED)
    return new_snapshot, _logs_last((
        ClearSession(clear_profile=True),
        EmitEvent(
            kind=EventKind.DISCONNECT,
            payload=DisconnectInfo(
                code=NORMAL_CLOSURE_CODE,
                reason=event.reason,
                user_initiated=True,
            ),
        ),
        _log_transition(snapshot, new_snapshot, event, "close_completed"),
    ))


def _on_stop_reconnecting(
    snapshot: ConnectionSnapshot, event: StopReconnecting
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    new_snapshot = replace(snapshot, should_reconnect=False)
    commands: tuple[Command, ...] = (CancelTimer(timer_id=TIMER_RECONNECT),)

    if snapshot.state is ConnectionState.RECONNECTING:
        new_snapshot = replace(new_snapshot, state=ConnectionState.FAILED)
        commands += (
            _log_transition(snapshot, new_snapshot, event, "stop_reconnecting"),
        )
    else:
        commands += (_log(new_snapshot, event, "reconnect_disabled"),)

    return new_snapshot, _logs_last(commands)


def _on_reset(
    snapshot: ConnectionSnapshot, event: ResetRequested
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    # attempt_id survives so late events from the old attempt stay stale
    new_snapshot = ConnectionSnapshot(
        address=snapshot.address,
        attempt_id=snapshot.attempt_id,
        policy=snapshot.policy,
        connect_timeout_ms=snapshot.connect_timeout_ms,
    )
    return new_snapshot, _logs_last((
        ReleaseResources(),
        ClearSession(clear_profile=True),
        _log_transition(snapshot, new_snapshot, event, "reset"),
    ))


def _on_destroy(
    snapshot: ConnectionSnapshot, event: DestroyRequested
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    new_snapshot = replace(
        snapshot,
        state=ConnectionState.CLOSED,
        should_reconnect=False,
        is_destroyed=True,
    )
    goodbye: tuple[Command, ...] = ()
    if snapshot.state is ConnectionState.OPEN:
        goodbye = (SendControl(message=EndSession()),)

    return new_snapshot, _logs_last(goodbye + (
        ReleaseResources(),
        ClearSession(clear_profile=True),
        RemoveAllListeners(),
        _log_transition(snapshot, new_snapshot, event, "destroy"),
    ))


# =============================================================================
# Transport events
# =============================================================================

def _on_transport_opened(
    snapshot: ConnectionSnapshot, event: TransportOpened
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if _is_stale(snapshot, event):
        return _ignore(snapshot, event, "stale_attempt")
    if snapshot.state is not ConnectionState.CONNECTING:
        return _ignore(snapshot, event, "not_connecting")

    reconnected = snapshot.retry.attempt > 0
    new_snapshot = replace(
        snapshot,
        state=ConnectionState.OPEN,
        retry=reset_attempt(),
        last_error=None,
    )

    commands: tuple[Command, ...] = (
        CancelTimer(timer_id=TIMER_CONNECT),
        EmitEvent(
            kind=EventKind.CONNECT,
            payload=ConnectInfo(
                address=snapshot.address or "",
                attempt_id=snapshot.attempt_id,
                reconnected=reconnected,
            ),
        ),
    )
    if reconnected:
        commands += (ResumeMatching(),)

    return new_snapshot, _logs_last(commands + (
        _log_transition(snapshot, new_snapshot, event, "transport_opened"),
    ))


def _on_transport_failed(
    snapshot: ConnectionSnapshot, event: TransportFailed
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if _is_stale(snapshot, event):
        return _ignore(snapshot, event, "stale_attempt")
    if snapshot.state not in _ATTEMPT_STATES:
        return _ignore(snapshot, event, "no_live_attempt")

    # State is resolved by the TransportClosed that always follows
    new_snapshot = replace(snapshot, last_error=ErrorKind.TRANSPORT_ERROR)
    return new_snapshot, _logs_last((
        CancelTimer(timer_id=TIMER_CONNECT),
        _error(ErrorKind.TRANSPORT_ERROR, event.reason),
        _log(new_snapshot, event, "transport_failed", {"reason": event.reason}),
    ))


def _on_transport_closed(
    snapshot: ConnectionSnapshot, event: TransportClosed
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if _is_stale(snapshot, event):
        return _ignore(snapshot, event, "stale_attempt")
    if snapshot.state not in _ATTEMPT_STATES:
        return _ignore(snapshot, event, "no_live_attempt")

    closed: tuple[Command, ...] = (
        CancelTimer(timer_id=TIMER_CONNECT),
        ClearSession(clear_profile=False),
        EmitEvent(
            kind=EventKind.DISCONNECT,
            payload=DisconnectInfo(code=event.code, reason=event.reason),
        ),
    )

    if event.code == NORMAL_CLOSURE_CODE:
        new_snapshot = replace(snapshot, state=ConnectionState.CLOSED)
        return new_snapshot, _logs_last(closed + (
            _log_transition(snapshot, new_snapshot, event, "normal_closure"),
        ))

    if not snapshot.should_reconnect:
        new_snapshot = replace(snapshot, state=ConnectionState.FAILED)
        return new_snapshot, _logs_last(closed + (
            _log_transition(snapshot, new_snapshot, event, "reconnect_disabled"),
        ))

    if snapshot.policy.should_retry(snapshot.retry):
        retry = next_attempt(snapshot.retry)
        delay_ms = snapshot.policy.delay_ms(retry)
        new_snapshot = replace(
            snapshot, state=ConnectionState.RECONNECTING, retry=retry
        )
        return new_snapshot, _logs_last(closed + (
            StartTimer(
                timer_id=TIMER_RECONNECT,
                duration_ms=delay_ms,
                timeout_event_type=EventType.RECONNECT_READY,
            ),
            EmitEvent(
                kind=EventKind.RECONNECTING,
                payload=ReconnectInfo(attempt=retry.attempt, delay_ms=delay_ms),
            ),
            _log(new_snapshot, event, "reconnect_scheduled", {
                "attempt": retry.attempt,
                "delay_ms": delay_ms,
                "code": event.code,
            }),
            _log_transition(snapshot, new_snapshot, event, "abnormal_closure"),
        ))

    new_snapshot = replace(
        snapshot,
        state=ConnectionState.FAILED,
        last_error=ErrorKind.MAX_RETRY_EXCEEDED,
    )
    return new_snapshot, _logs_last(closed + (
        EmitEvent(kind=EventKind.MAX_RETRY_EXCEEDED, payload=snapshot.retry.attempt),
        _log_transition(snapshot, new_snapshot, event, "max_retry_exceeded"),
    ))


# =============================================================================
# Timer events
# =============================================================================

def _on_connect_timeout(
    snapshot: ConnectionSnapshot, event: ConnectTimeout
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if _is_stale(snapshot, event):
        return _ignore(snapshot, event, "stale_attempt")
    if snapshot.state is not ConnectionState.CONNECTING:
        return _ignore(snapshot, event, "not_connecting")

    new_snapshot = replace(snapshot, last_error=ErrorKind.CONNECTION_TIMEOUT)
    return new_snapshot, _logs_last((
        _error(
            ErrorKind.CONNECTION_TIMEOUT,
            f"Connection timeout after {snapshot.connect_timeout_ms} ms",
        ),
        AbortTransport(
            attempt_id=snapshot.attempt_id,
            code=ABNORMAL_CLOSURE_CODE,
            reason="connect_timeout",
        ),
        _log(new_snapshot, event, "connect_timeout"),
    ))


def _on_reconnect_ready(
    snapshot: ConnectionSnapshot, event: ReconnectReady
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    if snapshot.state is not ConnectionState.RECONNECTING:
        return _ignore(snapshot, event, "not_reconnecting")
    if not snapshot.should_reconnect:
        return _ignore(snapshot, event, "reconnect_disabled")
    if event.attempt != snapshot.retry.attempt:
        return _ignore(snapshot, event, "stale_reconnect")
    if snapshot.address is None:
        return _ignore(snapshot, event, "no_address")

    return _begin_attempt(
        snapshot,
        event,
        address=snapshot.address,
        retry=snapshot.retry,
        source="reconnect_ready",
    )


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    snapshot: ConnectionSnapshot, event: Event
) -> tuple[ConnectionSnapshot, tuple[Command, ...]]:
    """
    Pure reducer for the connection lifecycle.

    Given the current snapshot and a single event, returns:
    - the next snapshot
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Version-safe: ignores transport/timer events with stale attempt ids
    - Terminal: once destroyed, every event is ignored
    """
    if snapshot.is_destroyed:
        return _ignore(snapshot, event, "destroyed")

    if isinstance(event, ConnectRequested):
        return _on_connect_requested(snapshot, event)

    if isinstance(event, DisconnectRequested):
        return _on_disconnect_requested(snapshot, event)

    if isinstance(event, CloseCompleted):
        return _on_close_completed(snapshot, event)

    if isinstance(event, StopReconnecting):
        return _on_stop_reconnecting(snapshot, event)

    if isinstance(event, ResetRequested):
        return _on_reset(snapshot, event)

    if isinstance(event, DestroyRequested):
        return _on_destroy(snapshot, event)

    if isinstance(event, TransportOpened):
        return _on_transport_opened(snapshot, event)

    if isinstance(event, TransportFailed):
        return _on_transport_failed(snapshot, event)

    if isinstance(event, TransportClosed):
        return _on_transport_closed(snapshot, event)

    if isinstance(event, ConnectTimeout):
        return _on_connect_timeout(snapshot, event)

    if isinstance(event, ReconnectReady):
        return _on_reconnect_ready(snapshot, event)

    return _ignore(snapshot, event, "unhandled_event")
