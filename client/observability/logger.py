"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_enabled: bool = True
_min_level: int = _LEVELS["DEBUG"]


def configure(*, enable_json: bool = True, level: str = "DEBUG") -> None:
    """
    Select output rendering and minimum level.

    Events without a "level" key are treated as INFO.
    Unknown level names fall back to DEBUG (log everything).
    """
    global _json_enabled, _min_level  # pylint: disable=global-statement
    _json_enabled = enable_json
    _min_level = _LEVELS.get(level.upper(), _LEVELS["DEBUG"])


def _render_plain(event: Mapping[str, Any]) -> str:
    head = str(event.get("event_type", "EVENT"))
    rest = " ".join(
        f"{k}={v!r}" for k, v in event.items() if k != "event_type"
    )
    return f"{head} {rest}".rstrip()


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single log event.

    The caller supplies a flat mapping with at least "event_type".
    "ts_ms" is filled with wall-clock milliseconds when absent.

    This function:
    - Serializes to JSON (or key=value when JSON logs are disabled)
    - Writes exactly one line
    - Flushes immediately
    - Never raises
    """
    level = _LEVELS.get(str(event.get("level", "INFO")).upper(), _LEVELS["INFO"])
    if level < _min_level:
        return

    payload: dict[str, Any] = dict(event)
    payload.setdefault("ts_ms", time.time_ns() // 1_000_000)

    if not _json_enabled:
        _print(_render_plain(payload))
        return

    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Logging must never crash the client
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
