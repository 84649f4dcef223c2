"""
Client configuration.

Responsibilities:
- Read environment variables
- Provide a typed, immutable config object
- Fall back to spec.py defaults

Non-responsibilities:
- No connection logic
- No protocol constants (spec.py owns those)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import (
    CONNECT_TIMEOUT_MS,
    MAX_MESSAGE_BYTES,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_DELAY_MS,
)

AUDIO_WIRE_FORMATS = ("binary", "base64")


@dataclass(frozen=True)
class ClientConfig:
    """
    Immutable client configuration.

    Constructed once at process startup and passed to ConnectionManager.
    Tests construct it directly with small timeouts.
    """

    # ------------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------------

    relay_url: str | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    connect_timeout_ms: int = CONNECT_TIMEOUT_MS
    reconnect_base_delay_ms: int = RECONNECT_BASE_DELAY_MS
    reconnect_max_delay_ms: int = RECONNECT_MAX_DELAY_MS
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    max_message_bytes: int = MAX_MESSAGE_BYTES

    # Re-send find_match with the stored profile after an automatic reconnect
    resume_matching: bool = True

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    # "binary" (native frames) or "base64" (text frames, data URI tagged)
    audio_wire_format: str = "binary"
    materialize_playback: bool = False
    audio_temp_dir: str | None = None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    enable_json_logs: bool = True

    def __post_init__(self) -> None:
        if self.audio_wire_format not in AUDIO_WIRE_FORMATS:
            raise ValueError(
                f"audio_wire_format must be one of {AUDIO_WIRE_FORMATS}, "
                f"got {self.audio_wire_format!r}"
            )
        if self.connect_timeout_ms <= 0:
            raise ValueError("connect_timeout_ms must be > 0")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> ClientConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is malformed or a value is out of range.
        """
        return ClientConfig(
            relay_url=os.environ.get("RELAY_URL"),

            connect_timeout_ms=int(os.environ.get("CONNECT_TIMEOUT_MS", CONNECT_TIMEOUT_MS)),
            reconnect_base_delay_ms=int(
                os.environ.get("RECONNECT_BASE_DELAY_MS", RECONNECT_BASE_DELAY_MS)
            ),
            reconnect_max_delay_ms=int(
                os.environ.get("RECONNECT_MAX_DELAY_MS", RECONNECT_MAX_DELAY_MS)
            ),
            max_reconnect_attempts=int(
                os.environ.get("MAX_RECONNECT_ATTEMPTS", MAX_RECONNECT_ATTEMPTS)
            ),
            max_message_bytes=int(os.environ.get("MAX_MESSAGE_BYTES", MAX_MESSAGE_BYTES)),
            resume_matching=os.environ.get("RESUME_MATCHING", "1") == "1",

            audio_wire_format=os.environ.get("AUDIO_WIRE_FORMAT", "binary"),
            materialize_playback=os.environ.get("MATERIALIZE_PLAYBACK", "0") == "1",
            audio_temp_dir=os.environ.get("AUDIO_TEMP_DIR"),

            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
