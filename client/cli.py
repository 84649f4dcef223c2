"""
Command-line relay client.

Connects to a relay, optionally starts matchmaking with a stored profile,
sends recorded clips and saves received clips to a directory.

Examples:

    relay-voice-client wss://relay.example:8080 --profile ~/.relay/profile.json --find-match

    relay-voice-client --send hello.m4a --out received/ --duration 120
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import shutil
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from audio.frames import PlaybackHint
from audio.playback import PlaybackBridge
from config import ClientConfig
from connection.enums.state import ConnectionState
from connection.manager import ConnectionManager
from events.bus import EventBus
from events.kinds import ConnectInfo, DisconnectInfo, EventKind, ReconnectInfo
from observability import logger
from protocol.errors import ClientError, ErrorInfo
from session.address_store import JsonAddressStore
from session.models import Partner, StatsSnapshot
from session.profile_store import JsonProfileStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _err(line: str) -> None:
    print(line, file=sys.stderr)


class DirectorySink:
    """
    Audio sink that saves every received clip into a directory.

    Works from memory (play_buffer) or from a materialized temp file (play_file).
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self._count = 0

    def play_buffer(self, data: bytes, hint: PlaybackHint) -> None:
        path = self._next_path(hint)
        path.write_bytes(data)
        print(f"saved {len(data)} bytes -> {path}")

    def play_file(self, path: Path, hint: PlaybackHint) -> None:
        target = self._next_path(hint)
        shutil.copyfile(path, target)
        print(f"saved {target.stat().st_size} bytes -> {target}")

    def _next_path(self, hint: PlaybackHint) -> Path:
        self._count += 1
        return self.directory / f"clip_{self._count:04d}{hint.extension}"


def _attach_printers(manager: ConnectionManager) -> None:
    bus = manager.bus

    def on_connect(info: ConnectInfo) -> None:
        suffix = " (reconnected)" if info.reconnected else ""
        print(f"connected to {info.address}{suffix}")

    def on_disconnect(info: DisconnectInfo) -> None:
        print(f"disconnected (code={info.code}, reason={info.reason})")

    def on_reconnecting(info: ReconnectInfo) -> None:
        print(f"reconnecting: attempt {info.attempt} in {info.delay_ms} ms")

    def on_match(partner: Partner) -> None:
        print(f"matched with {partner.label()}")

    def on_match_ended(reason: str | None) -> None:
        print(f"match ended: {reason or 'no reason given'}")

    def on_stats(stats: StatsSnapshot) -> None:
        print(f"users online: {stats.users_online}")

    def on_error(info: ErrorInfo) -> None:
        _err(f"error [{info.kind.value}]: {info.message}")

    def on_max_retry(count: int) -> None:
        _err(f"gave up after {count} reconnect attempts")

    bus.on(EventKind.CONNECT, on_connect)
    bus.on(EventKind.DISCONNECT, on_disconnect)
    bus.on(EventKind.RECONNECTING, on_reconnecting)
    bus.on(EventKind.MATCH_FOUND, on_match)
    bus.on(EventKind.MATCH_ENDED, on_match_ended)
    bus.on(EventKind.NO_MATCHES, lambda _: print("no matches right now"))
    bus.on(EventKind.STATS_UPDATE, on_stats)
    bus.on(EventKind.ERROR, on_error)
    bus.on(EventKind.MAX_RETRY_EXCEEDED, on_max_retry)


def build_playback(bus: EventBus, config: ClientConfig, out: Path) -> PlaybackBridge:
    """Save received clips into out, through temp files when MATERIALIZE_PLAYBACK=1."""
    return PlaybackBridge(
        bus,
        DirectorySink(out),
        materialize=config.materialize_playback,
        temp_dir=config.audio_temp_dir,
    )


async def _run(config: ClientConfig, args: argparse.Namespace) -> None:
    address_store = JsonAddressStore(args.address_store) if args.address_store else None
    if address_store is not None and args.address:
        address_store.save_server_address(args.address)

    manager = ConnectionManager(
        config=config,
        address_provider=address_store,
        profile_store=JsonProfileStore(args.profile) if args.profile else None,
    )
    _attach_printers(manager)

    if args.out is not None:
        build_playback(manager.bus, config, args.out).attach()

    await manager.connect(args.address)
    try:
        await manager.wait_until_open(timeout_s=config.connect_timeout_ms / 1000.0)

        if args.find_match:
            await manager.find_match()

        for path in args.send:
            await manager.send_recording_file(path, delete_after=False)

        # Run until the connection settles for good or the duration elapses
        with contextlib.suppress(asyncio.TimeoutError):
            await manager.wait_for_state(
                ConnectionState.FAILED,
                ConnectionState.CLOSED,
                timeout_s=args.duration,
            )
    finally:
        await manager.disconnect()
        await manager.bus.drain()
        if address_store is not None and args.forget_address:
            address_store.forget()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="relay-voice-client",
        description="Connect to a voice relay and exchange clips.",
    )
    ap.add_argument("address", nargs="?", default=None,
                    help="Relay WebSocket address (default: RELAY_URL, then --address-store)")
    ap.add_argument("--profile", type=Path, default=None,
                    help="Stored profile JSON used for find_match")
    ap.add_argument("--address-store", type=Path, default=None,
                    help="JSON file that remembers the relay address between runs")
    ap.add_argument("--forget-address", action="store_true",
                    help="Remove the remembered address when leaving")
    ap.add_argument("--find-match", action="store_true",
                    help="Start matchmaking once connected")
    ap.add_argument("--send", type=Path, action="append", default=[],
                    help="Recorded clip to send (repeatable)")
    ap.add_argument("--out", type=Path, default=None,
                    help="Directory to save received clips into")
    ap.add_argument("--duration", type=float, default=None,
                    help="Seconds to stay connected (default: until interrupted)")
    ap.add_argument("--base64", action="store_true",
                    help="Send audio as base64 text frames")
    ap.add_argument("--plain-logs", action="store_true",
                    help="key=value logs instead of JSON")
    ap.add_argument("--log-level", default=None,
                    help="DEBUG, INFO, WARNING or ERROR")
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config = ClientConfig.load_from_env()
    except ValueError as e:
        _err(f"invalid configuration: {e}")
        return EXIT_USAGE

    missing = [p for p in args.send if not p.is_file()]
    if missing:
        _err(f"no such recording: {missing[0]}")
        return EXIT_USAGE

    if args.base64:
        config = replace(config, audio_wire_format="base64")

    logger.configure(
        enable_json=config.enable_json_logs and not args.plain_logs,
        level=args.log_level or config.log_level,
    )

    try:
        asyncio.run(_run(config, args))
    except (ClientError, ValueError) as e:
        _err(f"error: {e}")
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("interrupted")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
