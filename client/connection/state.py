"""
Authoritative connection state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from connection.enums.state import ConnectionState
from connection.retry import ReconnectPolicy, RetryAttempt
from protocol.errors import ErrorKind
from spec import CONNECT_TIMEOUT_MS


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Immutable snapshot of all connection-owned state."""

    state: ConnectionState = ConnectionState.IDLE

    # Last address passed to connect(); kept across reconnects and reset()
    address: str | None = None

    # Number of reconnects scheduled since the last successful open
    retry: RetryAttempt = field(default_factory=RetryAttempt)

    # Monotonic transport attempt counter. Never reused.
    attempt_id: int = 0

    last_error: ErrorKind | None = None

    # Cleared by disconnect() / stop_reconnecting(); set again by connect()
    should_reconnect: bool = True

    is_destroyed: bool = False

    # ------------------------------------------------------------------
    # Policy (fixed per manager)
    # ------------------------------------------------------------------

    policy: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    connect_timeout_ms: int = CONNECT_TIMEOUT_MS
