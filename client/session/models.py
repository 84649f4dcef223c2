"""
Matchmaking value types.

Profile      - supplied by the caller, sent with find_match
Partner      - received on match_found, held as the current session partner
StatsSnapshot - received on stats_update

Wire names follow the relay contract (camelCase, "name" for display name).
Constructors from wire data raise ProtocolError on malformed shapes instead
of coercing them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from protocol.errors import ProtocolError


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class LookingFor(str, Enum):
    MALE = "male"
    FEMALE = "female"
    BOTH = "both"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"Field {key!r} must be a string, got {type(value).__name__}")
    return value


# ---------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Profile:
    """Immutable matchmaking profile of the local user."""
    display_name: str
    age: int
    gender: Gender
    looking_for: LookingFor
    location: str | None = None

    def __post_init__(self) -> None:
        if not _is_int(self.age) or self.age < 0:
            raise ValueError(f"age must be a non-negative int, got {self.age!r}")
        # Accept raw strings from callers, store enums
        object.__setattr__(self, "gender", Gender(self.gender))
        object.__setattr__(self, "looking_for", LookingFor(self.looking_for))

    def to_wire(self) -> dict[str, Any]:
        """Wire form; key order is fixed for deterministic encoding."""
        return {
            "name": self.display_name,
            "age": self.age,
            "gender": self.gender.value,
            "lookingFor": self.looking_for.value,
            "location": self.location,
        }


# ---------------------------------------------------------------------
# Partner
# ---------------------------------------------------------------------

_PARTNER_KNOWN_KEYS = frozenset({"name", "age", "gender", "location"})


@dataclass(frozen=True)
class Partner:
    """
    Peer profile as reported by the relay.

    All fields are optional; unknown wire keys are preserved in `extra`.
    """
    display_name: str | None = None
    age: int | None = None
    gender: str | None = None
    location: str | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @staticmethod
    def from_wire(data: Any) -> Partner:
        if not isinstance(data, dict):
            raise ProtocolError(f"partner must be an object, got {type(data).__name__}")

        age = data.get("age")
        if age is not None and not _is_int(age):
            raise ProtocolError(f"partner.age must be an int, got {age!r}")

        extra = {k: v for k, v in data.items() if k not in _PARTNER_KNOWN_KEYS}

        return Partner(
            display_name=_optional_str(data, "name"),
            age=age,
            gender=_optional_str(data, "gender"),
            location=_optional_str(data, "location"),
            extra=MappingProxyType(extra),
        )

    def label(self) -> str:
        """Short human-readable description for logs and CLIs."""
        name = self.display_name or "someone"
        age = f", {self.age}" if self.age is not None else ""
        where = f" from {self.location}" if self.location else ""
        return f"{name}{age}{where}"


# ---------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StatsSnapshot:
    """Relay-wide presence counters."""
    users_online: int

    @staticmethod
    def from_wire(data: Any) -> StatsSnapshot:
        if not isinstance(data, dict):
            raise ProtocolError(f"stats must be an object, got {type(data).__name__}")

        users_online = data.get("usersOnline", 0)
        if not _is_int(users_online) or users_online < 0:
            raise ProtocolError(f"stats.usersOnline must be a non-negative int, got {users_online!r}")

        return StatsSnapshot(users_online=users_online)
