# pylint: disable=missing-module-docstring,missing-function-docstring

from pathlib import Path

import pytest

import cli
from audio.formats import playback_hint
from audio.frames import AudioContainer, AudioFrame
from cli import DirectorySink, build_parser, build_playback, main
from config import ClientConfig
from events.bus import EventBus
from observability import logger


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # main() reconfigures the module-level logger and reads .env from the cwd
    monkeypatch.setattr(logger, "_json_enabled", logger._json_enabled)  # pylint: disable=protected-access
    monkeypatch.setattr(logger, "_min_level", logger._min_level)  # pylint: disable=protected-access
    monkeypatch.setattr(cli, "load_dotenv", lambda: False)
    monkeypatch.delenv("RELAY_URL", raising=False)
    for name in ("CONNECT_TIMEOUT_MS", "MATERIALIZE_PLAYBACK", "AUDIO_TEMP_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_directory_sink_numbers_clips(tmp_path: Path) -> None:
    sink = DirectorySink(tmp_path / "out")

    sink.play_buffer(b"one", playback_hint(AudioContainer.OGG))
    sink.play_buffer(b"two", playback_hint(AudioContainer.UNKNOWN))

    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == [
        "clip_0001.ogg",
        "clip_0002.m4a",
    ]
    assert (tmp_path / "out" / "clip_0002.m4a").read_bytes() == b"two"


def test_parser_collects_repeated_send() -> None:
    args = build_parser().parse_args(["ws://relay.test/ws", "--send", "a.m4a", "--send", "b.m4a"])

    assert args.address == "ws://relay.test/ws"
    assert args.send == [Path("a.m4a"), Path("b.m4a")]
    assert not args.find_match


def test_missing_address_fails(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--plain-logs", "--log-level", "ERROR"]) == 1

    assert "No relay address" in capsys.readouterr().err


def test_missing_recording_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["ws://relay.test/ws", "--send", "nope.m4a"]) == 2

    assert "nope.m4a" in capsys.readouterr().err


def test_bad_environment_is_a_usage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONNECT_TIMEOUT_MS", "later")

    assert main(["ws://relay.test/ws"]) == 2


def test_directory_sink_copies_materialized_clip(tmp_path: Path) -> None:
    source = tmp_path / "incoming.webm"
    source.write_bytes(b"\x1a\x45\xdf\xa3 clip")
    sink = DirectorySink(tmp_path / "out")

    sink.play_file(source, playback_hint(AudioContainer.WEBM))

    assert (tmp_path / "out" / "clip_0001.webm").read_bytes() == source.read_bytes()
    assert source.exists()


@pytest.mark.asyncio
async def test_materialize_setting_plays_through_temp_files(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    monkeypatch.setenv("MATERIALIZE_PLAYBACK", "1")
    monkeypatch.setenv("AUDIO_TEMP_DIR", str(temp_dir))
    config = ClientConfig.load_from_env()

    bridge = build_playback(EventBus(), config, tmp_path / "out")

    assert await bridge.play(AudioFrame(payload=b"OggS" + b"\x00" * 16, container=AudioContainer.OGG))
    assert [p.name for p in (tmp_path / "out").iterdir()] == ["clip_0001.ogg"]
    assert list(temp_dir.iterdir()) == []


def test_playback_defaults_to_memory_buffers(tmp_path: Path) -> None:
    bridge = build_playback(EventBus(), ClientConfig(), tmp_path / "out")

    assert not bridge._materialize  # pylint: disable=protected-access


def test_empty_address_store_does_not_supply_an_address(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    store = tmp_path / "relay.json"

    assert main(["--address-store", str(store), "--plain-logs", "--log-level", "ERROR"]) == 1

    assert "No relay address" in capsys.readouterr().err
    assert not store.exists()
