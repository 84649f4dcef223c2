"""
Event definitions for the connection reducer.

Rules:
- Events describe facts that have occurred (or caller requests).
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Transport and timer events carry attempt_id for stale gating: an event for
an attempt other than the current one is ignored by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Caller requests
    # ------------------------------------------------------------------
    CONNECT_REQUESTED = "CONNECT_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"
    CLOSE_COMPLETED = "CLOSE_COMPLETED"
    STOP_RECONNECTING = "STOP_RECONNECTING"
    RESET_REQUESTED = "RESET_REQUESTED"
    DESTROY_REQUESTED = "DESTROY_REQUESTED"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    TRANSPORT_OPENED = "TRANSPORT_OPENED"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"
    TRANSPORT_CLOSED = "TRANSPORT_CLOSED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    CONNECT_TIMEOUT = "CONNECT_TIMEOUT"
    RECONNECT_READY = "RECONNECT_READY"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class AttemptEvent(Event):
    """
    Base class for events scoped to one transport attempt.

    The reducer MUST ignore events whose attempt_id does not match the
    current attempt.
    """

    attempt_id: int


# =============================================================================
# Caller Requests
# =============================================================================

@dataclass(frozen=True)
class ConnectRequested(Event):
    """Caller asked to connect to address."""
    address: str


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """Caller asked for a graceful, final disconnect."""
    reason: str


@dataclass(frozen=True)
class CloseCompleted(Event):
    """The manager finished tearing down the transport after a disconnect."""
    reason: str


@dataclass(frozen=True)
class StopReconnecting(Event):
    """Caller disabled automatic reconnection."""


@dataclass(frozen=True)
class ResetRequested(Event):
    """Caller asked to return to IDLE for reuse."""


@dataclass(frozen=True)
class DestroyRequested(Event):
    """Caller asked for irreversible teardown."""


# =============================================================================
# Transport Events
# =============================================================================

@dataclass(frozen=True)
class TransportOpened(AttemptEvent):
    """The WebSocket handshake completed."""


@dataclass(frozen=True)
class TransportFailed(AttemptEvent):
    """Open or read failed. Always followed by TransportClosed."""
    reason: str


@dataclass(frozen=True)
class TransportClosed(AttemptEvent):
    """The attempt's transport is gone. Emitted exactly once per attempt."""
    code: int
    reason: str | None = None


# =============================================================================
# Timer Events
# =============================================================================

@dataclass(frozen=True)
class ConnectTimeout(AttemptEvent):
    """The attempt did not open within the connect timeout."""


@dataclass(frozen=True)
class ReconnectReady(Event):
    """Backoff delay elapsed for reconnect attempt N."""
    attempt: int
