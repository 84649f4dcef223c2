"""
Container detection and playback hints.

Detection inspects the first FORMAT_SNIFF_BYTES of decoded audio:
- "ftyp" and "M4A"     -> m4a
- "webm"               -> webm
- leading "RIFF" + "WAVE" -> wav
- leading "OggS"       -> ogg
- anything else        -> unknown (played as m4a, best effort)

Checks run in that order. Pure functions; never raise.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from audio.frames import AudioContainer, PlaybackHint
from spec import DEFAULT_PLAYBACK_CONTAINER, FORMAT_SNIFF_BYTES


_MIME_TYPES: Mapping[AudioContainer, str] = MappingProxyType({
    AudioContainer.M4A: "audio/mp4",
    AudioContainer.WEBM: "audio/webm",
    AudioContainer.WAV: "audio/wav",
    AudioContainer.OGG: "audio/ogg",
})

_MIME_TO_CONTAINER: Mapping[str, AudioContainer] = MappingProxyType({
    "audio/mp4": AudioContainer.M4A,
    "audio/m4a": AudioContainer.M4A,
    "audio/x-m4a": AudioContainer.M4A,
    "audio/aac": AudioContainer.M4A,
    "audio/webm": AudioContainer.WEBM,
    "audio/wav": AudioContainer.WAV,
    "audio/x-wav": AudioContainer.WAV,
    "audio/wave": AudioContainer.WAV,
    "audio/ogg": AudioContainer.OGG,
})


def detect_container(data: bytes) -> AudioContainer:
    """Classify a decoded audio buffer by its leading signature bytes."""
    head = bytes(data[:FORMAT_SNIFF_BYTES])

    if b"ftyp" in head and b"M4A" in head:
        return AudioContainer.M4A
    if b"webm" in head:
        return AudioContainer.WEBM
    if head.startswith(b"RIFF") and b"WAVE" in head:
        return AudioContainer.WAV
    if head.startswith(b"OggS"):
        return AudioContainer.OGG
    return AudioContainer.UNKNOWN


def playback_hint(container: AudioContainer) -> PlaybackHint:
    """
    Map a detected container to a playback hint.

    UNKNOWN maps to the default container. This is a documented fallback,
    not a claim about the true format.
    """
    resolved = container
    if resolved is AudioContainer.UNKNOWN:
        resolved = AudioContainer(DEFAULT_PLAYBACK_CONTAINER)

    return PlaybackHint(
        container=resolved,
        mime_type=_MIME_TYPES[resolved],
        extension=f".{resolved.value}",
    )


def mime_type_for(container: AudioContainer) -> str:
    return playback_hint(container).mime_type


def container_for_mime(mime_type: str) -> AudioContainer:
    """Container named by a data URI MIME type (UNKNOWN if unrecognised)."""
    return _MIME_TO_CONTAINER.get(mime_type.strip().lower(), AudioContainer.UNKNOWN)
