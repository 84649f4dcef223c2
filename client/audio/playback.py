"""
Playback bridge: audioReceived events -> caller-supplied audio sink.

Rules:
- Clips play one at a time, in arrival order
- Unknown containers are logged (UnsupportedAudioFormat) and played with
  the default hint; never fatal
- Sink failures surface as error(AudioPlaybackError) on the bus
- File sinks get a temporary file that is removed after playback
"""

from __future__ import annotations

import asyncio
import inspect
import os
from typing import Any, Union

from audio.formats import playback_hint
from audio.frames import AudioContainer, AudioFrame
from audio.transcoder import materialized_audio
from events.bus import EventBus
from events.kinds import EventKind
from observability.logger import log_event
from protocol.errors import AudioPlaybackError, ErrorInfo, ErrorKind
from session.collaborators import AudioSink, FileAudioSink

Sink = Union[AudioSink, FileAudioSink]


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class PlaybackBridge:
    """Subscribes to AUDIO_RECEIVED and feeds clips to a sink."""

    def __init__(
        self,
        bus: EventBus,
        sink: Sink,
        *,
        materialize: bool = False,
        temp_dir: str | os.PathLike[str] | None = None,
    ) -> None:
        if materialize and not isinstance(sink, FileAudioSink):
            raise TypeError("materialize=True requires a sink with play_file()")
        if not materialize and not isinstance(sink, AudioSink):
            raise TypeError("sink must provide play_buffer()")

        self._bus = bus
        self._sink = sink
        self._materialize = materialize
        self._temp_dir = temp_dir
        self._lock = asyncio.Lock()
        self.played: int = 0
        self.failed: int = 0

    def attach(self) -> None:
        self._bus.on(EventKind.AUDIO_RECEIVED, self._on_audio)

    def detach(self) -> None:
        self._bus.off(EventKind.AUDIO_RECEIVED, self._on_audio)

    async def _on_audio(self, frame: AudioFrame) -> None:
        await self.play(frame)

    async def play(self, frame: AudioFrame) -> bool:
        """Play one clip. Returns False (and emits an error) on failure."""
        async with self._lock:
            return await self._play_locked(frame)

    async def _play_locked(self, frame: AudioFrame) -> bool:
        if frame.container is AudioContainer.UNKNOWN:
            log_event({
                "level": "WARNING",
                "event_type": "AUDIO_FORMAT_UNKNOWN",
                "error_kind": ErrorKind.UNSUPPORTED_AUDIO_FORMAT.value,
                "bytes": len(frame),
                "head_hex": frame.payload[:12].hex(),
            })

        hint = playback_hint(frame.container)

        try:
            if self._materialize:
                with materialized_audio(frame, temp_dir=self._temp_dir) as path:
                    await _maybe_await(self._sink.play_file(path, hint))
            else:
                await _maybe_await(self._sink.play_buffer(frame.payload, hint))
        except AudioPlaybackError as e:
            self._report(e.info())
            return False
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._report(ErrorInfo(
                kind=ErrorKind.AUDIO_PLAYBACK_ERROR,
                message=f"Audio playback failed: {type(e).__name__}: {e}",
            ))
            return False

        self.played += 1
        log_event({
            "level": "DEBUG",
            "event_type": "AUDIO_PLAYED",
            "bytes": len(frame),
            "container": hint.container.value,
        })
        return True

    def _report(self, info: ErrorInfo) -> None:
        self.failed += 1
        log_event({
            "level": "ERROR",
            "event_type": "AUDIO_PLAYBACK_FAILED",
            "message": info.message,
        })
        self._bus.emit(EventKind.ERROR, info)
