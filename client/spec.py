"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral constants of the relay client.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- config.py may override a subset of these per deployment; the values here
  are the defaults.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Connection lifecycle
# =============================================================================

# A transport attempt that has not opened within this window is aborted.
CONNECT_TIMEOUT_MS: Final[int] = 10_000

# Reconnect backoff: attempt n waits min(BASE * 2^(n-1), MAX)
RECONNECT_BASE_DELAY_MS: Final[int] = 1_000
RECONNECT_MAX_DELAY_MS: Final[int] = 120_000
MAX_RECONNECT_ATTEMPTS: Final[int] = 5

# Upper bound for the WebSocket closing handshake on explicit disconnect
CLOSE_HANDSHAKE_TIMEOUT_S: Final[float] = 2.0

# =============================================================================
# WebSocket close codes (RFC 6455 §7.4.1)
# =============================================================================

NORMAL_CLOSURE_CODE: Final[int] = 1000
# Reserved; never sent on the wire. Used locally for "closed without a frame".
ABNORMAL_CLOSURE_CODE: Final[int] = 1006

USER_DISCONNECT_REASON: Final[str] = "User disconnected"

# =============================================================================
# Transport limits
# =============================================================================

# Voice clips are whole recordings, not 20 ms frames
MAX_MESSAGE_BYTES: Final[int] = 16 * 1024 * 1024

# =============================================================================
# Inbound text classification
# =============================================================================

# A text payload that is not JSON is treated as base64 audio only if it is at
# least this long (or carries an explicit data URI tag).
BASE64_AUDIO_MIN_CHARS: Final[int] = 1_000

DATA_URI_AUDIO_PREFIX: Final[str] = "data:audio/"

# Truncation for payload previews in logs
LOG_PAYLOAD_PREVIEW_CHARS: Final[int] = 100

# =============================================================================
# Audio container detection
# =============================================================================

# Decoded header window inspected for container signatures.
# WebM's DocType element sits past byte 12, so the window is wider than the
# 12 bytes needed for RIFF/OggS/ftyp.
FORMAT_SNIFF_BYTES: Final[int] = 64

DEFAULT_PLAYBACK_CONTAINER: Final[str] = "m4a"

TEMP_AUDIO_PREFIX: Final[str] = "relay_audio_"

# =============================================================================
# Event streams
# =============================================================================

EVENT_STREAM_DEFAULT_MAXSIZE: Final[int] = 64

# =============================================================================
# Control message types
# =============================================================================

INBOUND_CONTROL_TYPES: Final[Tuple[str, ...]] = (
    "connected",
    "match_found",
    "match_ended",
    "partner_disconnected",
    "no_matches",
    "stats_update",
    "error",
)

OUTBOUND_CONTROL_TYPES: Final[Tuple[str, ...]] = (
    "find_match",
    "end_match",
    "end_session",
)
