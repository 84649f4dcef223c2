"""
Side-effect command definitions for the connection reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by ConnectionManager.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from connection.events import EventType
from events.kinds import EventKind
from protocol.control import OutboundControl

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    Stable discriminants used for logging and manager dispatch.
    """

    # Transport
    OPEN_TRANSPORT = "OPEN_TRANSPORT"
    ABORT_TRANSPORT = "ABORT_TRANSPORT"
    SEND_CONTROL = "SEND_CONTROL"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Caller-facing
    EMIT_EVENT = "EMIT_EVENT"

    # Session / lifecycle
    CLEAR_SESSION = "CLEAR_SESSION"
    RESUME_MATCHING = "RESUME_MATCHING"
    RELEASE_RESOURCES = "RELEASE_RESOURCES"
    REMOVE_ALL_LISTENERS = "REMOVE_ALL_LISTENERS"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenTransport(Command):
    """
    Request to open a new transport for attempt_id.

    The manager must eventually report exactly one TransportClosed for the
    attempt, preceded by TransportOpened if the handshake succeeded.
    """
    attempt_id: int
    address: str
    command_type: CommandType = CommandType.OPEN_TRANSPORT


@dataclass(frozen=True)
class AbortTransport(Command):
    """Request to close the attempt's transport with the given close code."""
    attempt_id: int
    code: int
    reason: str
    command_type: CommandType = CommandType.ABORT_TRANSPORT


@dataclass(frozen=True)
class SendControl(Command):
    """Best-effort control write. Failures are logged, never surfaced."""
    message: OutboundControl
    command_type: CommandType = CommandType.SEND_CONTROL


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start a named timer.

    On expiration, the manager must inject the specified timeout event.
    Starting a timer id that is already running replaces it.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer (no-op if absent)."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Caller-facing Commands
# =============================================================================

@dataclass(frozen=True)
class EmitEvent(Command):
    """Publish a typed event on the bus."""
    kind: EventKind
    payload: Any = None
    command_type: CommandType = CommandType.EMIT_EVENT


# =============================================================================
# Session / Lifecycle Commands
# =============================================================================

@dataclass(frozen=True)
class ClearSession(Command):
    """Drop the current partner (and the stored profile if clear_profile)."""
    clear_profile: bool = False
    command_type: CommandType = CommandType.CLEAR_SESSION


@dataclass(frozen=True)
class ResumeMatching(Command):
    """Re-send find_match with the session profile, if one is stored."""
    command_type: CommandType = CommandType.RESUME_MATCHING


@dataclass(frozen=True)
class ReleaseResources(Command):
    """Cancel every timer and tear down any live transport."""
    command_type: CommandType = CommandType.RELEASE_RESOURCES


@dataclass(frozen=True)
class RemoveAllListeners(Command):
    command_type: CommandType = CommandType.REMOVE_ALL_LISTENERS


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
