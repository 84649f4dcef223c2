"""
Inbound payload classification.

The relay multiplexes control JSON and audio on one socket:

    bytes                                -> audio (native binary frame)
    "data:audio/<mime>;base64,<body>"    -> audio (explicitly tagged text)
    JSON object with "type"              -> control message
    text >= BASE64_AUDIO_MIN_CHARS of valid base64
                                         -> audio (untagged fallback)
    anything else                        -> ProtocolError

The untagged fallback is a length heuristic: a short untagged base64 clip is
indistinguishable from garbage and is rejected. Senders that need short clips
must use binary frames or the data URI tag.
"""

from __future__ import annotations

import json
from typing import Union

from audio.frames import AudioFrame
from audio.transcoder import frame_from_base64, frame_from_binary, is_base64_text
from protocol.control import InboundControl, decode_envelope, parse_envelope
from protocol.errors import ProtocolError
from spec import BASE64_AUDIO_MIN_CHARS, DATA_URI_AUDIO_PREFIX

Inbound = Union[AudioFrame, InboundControl]


def looks_like_base64_audio(text: str) -> bool:
    """The documented untagged-audio heuristic (length threshold + valid base64)."""
    return len(text) >= BASE64_AUDIO_MIN_CHARS and is_base64_text(text)


def classify_inbound(payload: str | bytes | bytearray | memoryview) -> Inbound:
    """
    Resolve one transport payload into audio or a typed control message.

    Raises:
        ProtocolError if the payload is neither.
    """
    if isinstance(payload, (bytes, bytearray, memoryview)):
        if len(payload) == 0:
            raise ProtocolError("Empty binary frame")
        return frame_from_binary(payload)

    if not isinstance(payload, str):
        raise ProtocolError(f"Unsupported payload type {type(payload).__name__}")

    if payload.startswith(DATA_URI_AUDIO_PREFIX):
        return frame_from_base64(payload)

    # A control envelope starts with "{", which is never a base64 character
    if looks_like_base64_audio(payload):
        return frame_from_base64(payload)

    try:
        envelope = decode_envelope(payload)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid message format: {e.msg}") from e
    except (ValueError, RecursionError) as e:
        # Oversized integer literals and pathological nesting
        raise ProtocolError(f"Invalid message format: {type(e).__name__}") from e

    return parse_envelope(envelope)
