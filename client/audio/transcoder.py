"""
Audio transcoding between wire representations.

Two representations carry the same bytes:
- native binary WebSocket frames (preferred)
- base64 text, optionally tagged as a data URI: "data:audio/mp4;base64,...."

Guarantees:
- decode_base64(encode_base64(b)) == b for every b
- Container detection never alters the payload
- Inputs are copied into immutable bytes; nothing is mutated in place

Usage example:

    frame = frame_from_binary(ws_payload)
    text = to_wire_text(frame)
    assert frame_from_base64(text).payload == frame.payload

    with materialized_audio(frame) as path:
        sink.play_file(path, playback_hint(frame.container))
"""

from __future__ import annotations

import base64
import binascii
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from audio.formats import container_for_mime, detect_container, mime_type_for, playback_hint
from audio.frames import AudioContainer, AudioFrame
from protocol.errors import AudioPlaybackError, ProtocolError
from spec import DATA_URI_AUDIO_PREFIX, TEMP_AUDIO_PREFIX

OutboundAudio = Union[AudioFrame, bytes, bytearray, memoryview, str]


# -------------------------
# Base64 primitives
# -------------------------

def encode_base64(data: bytes) -> str:
    """Pure base64 (no data URI prefix, no line wrapping)."""
    return base64.b64encode(bytes(data)).decode("ascii")


def split_data_uri(text: str) -> tuple[str | None, str]:
    """
    Split "data:audio/<type>;base64,<body>" into (mime_type, body).

    Text without a data URI prefix is returned unchanged with mime_type None.
    """
    if not text.startswith(DATA_URI_AUDIO_PREFIX):
        return None, text

    header, sep, body = text.partition(",")
    if not sep or not header.endswith(";base64"):
        raise ProtocolError("Malformed audio data URI header")

    mime_type = header[len("data:"):-len(";base64")]
    return mime_type, body


def decode_base64(text: str) -> bytes:
    """
    Decode base64 audio text, accepting an optional data URI prefix.

    Raises:
        ProtocolError if the body is not valid base64.
    """
    _, body = split_data_uri(text)
    compact = "".join(body.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Invalid base64 audio payload: {e}") from e


def is_base64_text(text: str) -> bool:
    """True if text decodes cleanly as base64 (data URI prefix allowed)."""
    try:
        decode_base64(text)
    except ProtocolError:
        return False
    return True


# -------------------------
# Frame construction
# -------------------------

def frame_from_binary(payload: bytes | bytearray | memoryview) -> AudioFrame:
    """Build a frame from a native binary transport payload."""
    data = bytes(payload)
    return AudioFrame(payload=data, container=detect_container(data))


def frame_from_base64(text: str) -> AudioFrame:
    """
    Build a frame from base64 text.

    Byte signatures win over the data URI MIME type; the MIME type is only
    used when the signature is unrecognised.
    """
    mime_type, _ = split_data_uri(text)
    data = decode_base64(text)
    if not data:
        raise ProtocolError("Empty base64 audio payload")

    container = detect_container(data)
    if container is AudioContainer.UNKNOWN and mime_type is not None:
        container = container_for_mime(mime_type)

    return AudioFrame(payload=data, container=container)


def coerce_outbound(audio: OutboundAudio) -> AudioFrame:
    """
    Normalize caller-supplied audio into a frame.

    Accepts a frame, raw bytes-like data, or base64 text.
    """
    if isinstance(audio, AudioFrame):
        return audio
    if isinstance(audio, (bytes, bytearray, memoryview)):
        return frame_from_binary(audio)
    if isinstance(audio, str):
        return frame_from_base64(audio)
    raise TypeError(
        f"Unsupported audio type {type(audio).__name__}; "
        "expected AudioFrame, bytes or base64 str"
    )


def to_wire_text(frame: AudioFrame) -> str:
    """Data URI tagged base64 text for transports that cannot send binary."""
    return f"data:{mime_type_for(frame.container)};base64,{encode_base64(frame.payload)}"


# -------------------------
# File helpers
# -------------------------

def read_recording(path: str | os.PathLike[str], *, delete_after: bool = False) -> AudioFrame:
    """
    Read a finished recording fully into memory.

    The source is deleted after a successful read when delete_after is set
    (recorders leave one temporary file per clip).

    Raises:
        FileNotFoundError if the recording does not exist.
        ValueError if the recording is empty.
    """
    source = Path(path)
    data = source.read_bytes()
    if not data:
        raise ValueError(f"Recording is empty: {source}")

    frame = frame_from_binary(data)

    if delete_after:
        source.unlink(missing_ok=True)

    return frame


@contextmanager
def materialized_audio(
    frame: AudioFrame,
    *,
    temp_dir: str | os.PathLike[str] | None = None,
) -> Iterator[Path]:
    """
    Write a frame to a temporary file for sinks that cannot play from memory.

    The file is verified to be non-empty before it is yielded and is always
    removed on exit, including when the consumer raises.

    Raises:
        AudioPlaybackError if the file could not be written or is empty.
    """
    hint = playback_hint(frame.container)

    fd, name = tempfile.mkstemp(
        prefix=TEMP_AUDIO_PREFIX,
        suffix=hint.extension,
        dir=None if temp_dir is None else os.fspath(temp_dir),
    )
    path = Path(name)
    try:
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(frame.payload)
            size = path.stat().st_size
        except OSError as e:
            raise AudioPlaybackError(f"Could not materialize audio: {e}") from e

        if size == 0:
            raise AudioPlaybackError(f"Materialized audio file is empty: {path.name}")

        yield path
    finally:
        path.unlink(missing_ok=True)
