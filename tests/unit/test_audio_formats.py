# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from audio.formats import container_for_mime, detect_container, mime_type_for, playback_hint
from audio.frames import AudioContainer


# ---------------------------------------------------------------------
# Signature fixtures (headers only; payload bodies are irrelevant)
# ---------------------------------------------------------------------

M4A_HEAD = b"\x00\x00\x00\x20ftypM4A \x00\x00\x00\x00M4A mp42isom"
WEBM_HEAD = b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01\x42\xf7\x81\x01\x42\xf2\x81\x04\x42\xf3\x81\x08\x42\x82\x84webm"
WAV_HEAD = b"RIFF\x24\x08\x00\x00WAVEfmt \x10\x00\x00\x00"
OGG_HEAD = b"OggS\x00\x02\x00\x00\x00\x00\x00\x00\x00\x00"


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (M4A_HEAD + b"\x00" * 100, AudioContainer.M4A),
        (WEBM_HEAD + b"\x00" * 100, AudioContainer.WEBM),
        (WAV_HEAD + b"\x00" * 100, AudioContainer.WAV),
        (OGG_HEAD + b"\x00" * 100, AudioContainer.OGG),
        (b"\x00" * 64, AudioContainer.UNKNOWN),
        (b"", AudioContainer.UNKNOWN),
    ],
)
def test_detect_container(data: bytes, expected: AudioContainer) -> None:
    assert detect_container(data) is expected


def test_webm_doctype_past_first_twelve_bytes_is_detected() -> None:
    # DocType sits at byte 24 in WEBM_HEAD
    assert WEBM_HEAD.index(b"webm") > 12
    assert detect_container(WEBM_HEAD) is AudioContainer.WEBM


def test_signature_outside_sniff_window_is_ignored() -> None:
    assert detect_container(b"\x00" * 64 + b"OggS") is AudioContainer.UNKNOWN


def test_riff_without_wave_is_not_wav() -> None:
    assert detect_container(b"RIFF\x00\x00\x00\x00AVI LIST") is AudioContainer.UNKNOWN


def test_wav_requires_leading_riff() -> None:
    assert detect_container(b"xxxxRIFFWAVE") is AudioContainer.UNKNOWN


def test_ftyp_without_m4a_brand_is_unknown() -> None:
    assert detect_container(b"\x00\x00\x00\x18ftypisom") is AudioContainer.UNKNOWN


def test_unknown_container_plays_as_m4a() -> None:
    hint = playback_hint(AudioContainer.UNKNOWN)

    assert hint.container is AudioContainer.M4A
    assert hint.mime_type == "audio/mp4"
    assert hint.extension == ".m4a"


@pytest.mark.parametrize(
    ("container", "mime", "ext"),
    [
        (AudioContainer.M4A, "audio/mp4", ".m4a"),
        (AudioContainer.WEBM, "audio/webm", ".webm"),
        (AudioContainer.WAV, "audio/wav", ".wav"),
        (AudioContainer.OGG, "audio/ogg", ".ogg"),
    ],
)
def test_playback_hints(container: AudioContainer, mime: str, ext: str) -> None:
    hint = playback_hint(container)

    assert hint.container is container
    assert hint.mime_type == mime
    assert hint.extension == ext
    assert mime_type_for(container) == mime


def test_container_for_mime_aliases() -> None:
    assert container_for_mime("audio/x-m4a") is AudioContainer.M4A
    assert container_for_mime(" Audio/WAV ") is AudioContainer.WAV
    assert container_for_mime("audio/flac") is AudioContainer.UNKNOWN
