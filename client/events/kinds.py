"""
Caller-facing event kinds and their payload types.

Every handler is called with exactly one positional argument, the payload:

    CONNECT              ConnectInfo
    DISCONNECT           DisconnectInfo
    RECONNECTING         ReconnectInfo
    MATCH_FOUND          Partner
    MATCH_ENDED          str | None        (reason)
    NO_MATCHES           None
    STATS_UPDATE         StatsSnapshot
    PARTNER_DISCONNECTED None
    AUDIO_RECEIVED       AudioFrame
    ERROR                ErrorInfo
    MAX_RETRY_EXCEEDED   int               (retry count)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EventKind(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    RECONNECTING = "reconnecting"
    MATCH_FOUND = "matchFound"
    MATCH_ENDED = "matchEnded"
    NO_MATCHES = "noMatches"
    STATS_UPDATE = "statsUpdate"
    PARTNER_DISCONNECTED = "partnerDisconnected"
    AUDIO_RECEIVED = "audioReceived"
    ERROR = "error"
    MAX_RETRY_EXCEEDED = "maxRetryExceeded"


@dataclass(frozen=True)
class ConnectInfo:
    address: str
    attempt_id: int
    # True when the open followed an automatic reconnect
    reconnected: bool = False


@dataclass(frozen=True)
class DisconnectInfo:
    code: int
    reason: str | None = None
    user_initiated: bool = False


@dataclass(frozen=True)
class ReconnectInfo:
    attempt: int
    delay_ms: int
