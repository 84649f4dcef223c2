"""
Connection lifecycle states.

Rules:
- This enum defines ONLY the states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in connection.reducer.

    IDLE -> CONNECTING -> OPEN -> CLOSING -> CLOSED
                 ^          |
                 |          v
            RECONNECTING <-(abnormal close)-> FAILED
"""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """
    Lifecycle of the single relay connection.

    CLOSED is terminal for user-initiated or normal closure.
    FAILED is terminal once the retry budget is exhausted (or retries were
    stopped); both leave the client awaiting an explicit connect().
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
    RECONNECTING = "RECONNECTING"
    FAILED = "FAILED"
