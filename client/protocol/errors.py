"""
Error taxonomy for the relay client.

Every failure the connection layer can surface is classified by ErrorKind.
Exceptions carry their kind so call sites and bus `error` events agree on
classification.

Recovery rules:
- CONNECTION_TIMEOUT / TRANSPORT_ERROR feed the reconnect policy
- PROTOCOL_ERROR drops one message; the connection stays up
- UNSUPPORTED_AUDIO_FORMAT degrades to best-effort playback (logged, never raised)
- NOT_CONNECTED / MAX_RETRY_EXCEEDED are always surfaced to the caller
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Stable error discriminants (also used in logs and bus payloads)."""

    CONNECTION_TIMEOUT = "ConnectionTimeout"
    TRANSPORT_ERROR = "TransportError"
    PROTOCOL_ERROR = "ProtocolError"
    UNSUPPORTED_AUDIO_FORMAT = "UnsupportedAudioFormat"
    NOT_CONNECTED = "NotConnected"
    MAX_RETRY_EXCEEDED = "MaxRetryExceeded"
    AUDIO_PLAYBACK_ERROR = "AudioPlaybackError"
    SERVER_ERROR = "ServerError"


@dataclass(frozen=True)
class ErrorInfo:
    """Payload of bus `error` events."""
    kind: ErrorKind
    message: str


# -------------------------
# Exceptions
# -------------------------

class ClientError(Exception):
    """Base class for relay client errors."""

    kind: ErrorKind = ErrorKind.TRANSPORT_ERROR

    def info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=str(self))


class ConnectionTimeoutError(ClientError):
    """A transport attempt did not open within the connect timeout."""

    kind = ErrorKind.CONNECTION_TIMEOUT


class TransportError(ClientError):
    """The underlying socket failed to open, read or write."""

    kind = ErrorKind.TRANSPORT_ERROR


class ProtocolError(ClientError):
    """
    Raised when an inbound payload is neither a valid control message
    nor a recognisable audio payload.

    The payload is unsafe to dispatch and must be dropped.
    """

    kind = ErrorKind.PROTOCOL_ERROR


class NotConnectedError(ClientError):
    """A send was attempted while the connection is not OPEN."""

    kind = ErrorKind.NOT_CONNECTED


class MaxRetryExceededError(ClientError):
    """Reconnect budget exhausted; the connection settled in FAILED."""

    kind = ErrorKind.MAX_RETRY_EXCEEDED


class AudioPlaybackError(ClientError):
    """A received clip could not be materialized for the audio sink."""

    kind = ErrorKind.AUDIO_PLAYBACK_ERROR
