"""
Audio frame primitives.

Pure data containers only.
No behavior, no I/O, no format sniffing (see audio.formats).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AudioContainer(str, Enum):
    """Container format inferred from byte signatures."""
    M4A = "m4a"
    WEBM = "webm"
    WAV = "wav"
    OGG = "ogg"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AudioFrame:
    """
    One voice clip exchanged with the relay.

    payload:
        Raw container bytes exactly as recorded or received.
        Never mutated; transforms produce new frames.

    container:
        Detected container. Affects playback hints only, never the payload.

    A frame is consumed once (played or transmitted) and then dropped.
    """
    payload: bytes
    container: AudioContainer = AudioContainer.UNKNOWN

    def __len__(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class PlaybackHint:
    """
    How a sink should treat a frame.

    container:
        Container to play as. UNKNOWN frames are played as DEFAULT (m4a).
    mime_type:
        MIME type for in-memory players.
    extension:
        File suffix (with dot) for sinks that need a materialized file.
    """
    container: AudioContainer
    mime_type: str
    extension: str
