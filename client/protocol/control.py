"""
Control-plane codec (JSON over text frames).

Inbound (relay -> client), discriminated by "type":

    connected            {message}
    match_found          {partner}
    match_ended          {reason?}
    partner_disconnected {}
    no_matches           {}
    stats_update         {stats: {usersOnline}}
    error                {message}

Outbound (client -> relay):

    {"type":"find_match","profile":{...}}
    {"type":"end_match"}
    {"type":"end_session"}

Rules:
- Pure: no I/O, no connection state.
- Each kind is a frozen dataclass; dispatch sites match on the class.
- Known kinds with malformed payloads raise ProtocolError.
- Unknown kinds parse to UnknownControl (callers log and drop them).
- Encoding is deterministic: same message -> byte-identical JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Union

from protocol.errors import ProtocolError
from session.models import Partner, Profile, StatsSnapshot


# =============================================================================
# Inbound messages
# =============================================================================

@dataclass(frozen=True)
class Connected:
    """Relay greeting after the socket opens."""
    message: str | None = None


@dataclass(frozen=True)
class MatchFound:
    """A partner was paired with this client."""
    partner: Partner


@dataclass(frozen=True)
class MatchEnded:
    """The current match ended (by the partner or the relay)."""
    reason: str | None = None


@dataclass(frozen=True)
class PartnerDisconnected:
    """The partner's connection dropped."""


@dataclass(frozen=True)
class NoMatches:
    """No compatible partner is available right now."""


@dataclass(frozen=True)
class StatsUpdate:
    stats: StatsSnapshot


@dataclass(frozen=True)
class ServerError:
    """Relay-reported error."""
    message: str


@dataclass(frozen=True)
class UnknownControl:
    """Well-formed envelope with a type this client does not understand."""
    type: str


InboundControl = Union[
    Connected,
    MatchFound,
    MatchEnded,
    PartnerDisconnected,
    NoMatches,
    StatsUpdate,
    ServerError,
    UnknownControl,
]


# =============================================================================
# Outbound messages
# =============================================================================

@dataclass(frozen=True)
class FindMatch:
    profile: Profile


@dataclass(frozen=True)
class EndMatch:
    pass


@dataclass(frozen=True)
class EndSession:
    pass


OutboundControl = Union[FindMatch, EndMatch, EndSession]


# =============================================================================
# Parsing
# =============================================================================

def _optional_str_field(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"{data['type']}.{key} must be a string")
    return value


def _parse_connected(data: dict[str, Any]) -> InboundControl:
    return Connected(message=_optional_str_field(data, "message"))


def _parse_match_found(data: dict[str, Any]) -> InboundControl:
    if "partner" not in data:
        raise ProtocolError("match_found without partner")
    return MatchFound(partner=Partner.from_wire(data["partner"]))


def _parse_match_ended(data: dict[str, Any]) -> InboundControl:
    return MatchEnded(reason=_optional_str_field(data, "reason"))


def _parse_partner_disconnected(_: dict[str, Any]) -> InboundControl:
    return PartnerDisconnected()


def _parse_no_matches(_: dict[str, Any]) -> InboundControl:
    return NoMatches()


def _parse_stats_update(data: dict[str, Any]) -> InboundControl:
    if "stats" not in data:
        raise ProtocolError("stats_update without stats")
    return StatsUpdate(stats=StatsSnapshot.from_wire(data["stats"]))


def _parse_error(data: dict[str, Any]) -> InboundControl:
    return ServerError(message=_optional_str_field(data, "message") or "Server error")


_PARSERS: dict[str, Callable[[dict[str, Any]], InboundControl]] = {
    "connected": _parse_connected,
    "match_found": _parse_match_found,
    "match_ended": _parse_match_ended,
    "partner_disconnected": _parse_partner_disconnected,
    "no_matches": _parse_no_matches,
    "stats_update": _parse_stats_update,
    "error": _parse_error,
}


def decode_envelope(text: str) -> dict[str, Any]:
    """
    Parse a text payload as a control envelope.

    Raises:
        ValueError (json.JSONDecodeError included) or RecursionError if the
            text cannot be parsed as JSON.
        ProtocolError if it is JSON but not an object with a string "type".
    """
    data = json.loads(text)

    if not isinstance(data, dict):
        raise ProtocolError(f"Control payload must be an object, got {type(data).__name__}")

    msg_type = data.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise ProtocolError("Control payload missing string 'type'")

    return data


def parse_envelope(data: dict[str, Any]) -> InboundControl:
    """Build the typed message for an already-decoded envelope."""
    parser = _PARSERS.get(data["type"])
    if parser is None:
        return UnknownControl(type=data["type"])
    return parser(data)


def parse_control(text: str) -> InboundControl:
    """
    Parse an inbound control message.

    Raises:
        ProtocolError for non-JSON text or malformed payloads.
    """
    try:
        data = decode_envelope(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Control payload is not JSON: {e}") from e
    return parse_envelope(data)


# =============================================================================
# Encoding
# =============================================================================

def control_to_wire(message: OutboundControl) -> dict[str, Any]:
    if isinstance(message, FindMatch):
        return {"type": "find_match", "profile": message.profile.to_wire()}
    if isinstance(message, EndMatch):
        return {"type": "end_match"}
    if isinstance(message, EndSession):
        return {"type": "end_session"}
    raise TypeError(f"Not an outbound control message: {type(message).__name__}")


def encode_control(message: OutboundControl) -> str:
    """Compact, deterministic JSON for an outbound control message."""
    return json.dumps(
        control_to_wire(message),
        ensure_ascii=False,
        separators=(",", ":"),
    )
