"""
Collaborator contracts consumed by the client.

Screens, QR scanning, secure storage and audio devices live outside this
package. They are reached only through these structural interfaces, so any
object with the right methods can be plugged in (tests use plain fakes).
"""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Protocol, Union, runtime_checkable

from audio.frames import PlaybackHint
from session.models import Profile

MaybeAwaitable = Union[Awaitable[None], None]


@runtime_checkable
class AddressProvider(Protocol):
    """Supplies the relay address (e.g. scanned from a QR code)."""

    def get_server_address(self) -> str | None: ...


@runtime_checkable
class ProfileStore(Protocol):
    """Supplies the stored local profile, or None if none was saved."""

    def get_stored_profile(self) -> Profile | None: ...


@runtime_checkable
class MicrophoneSource(Protocol):
    """Captures one complete recording as encoded container bytes."""

    async def capture_microphone_buffer(self) -> bytes: ...


@runtime_checkable
class AudioSink(Protocol):
    """Plays a received clip from memory. May be sync or async."""

    def play_buffer(self, data: bytes, hint: PlaybackHint) -> MaybeAwaitable: ...


@runtime_checkable
class FileAudioSink(Protocol):
    """
    Plays a received clip from a file path.

    The file only exists for the duration of the call.
    """

    def play_file(self, path: Path, hint: PlaybackHint) -> MaybeAwaitable: ...
