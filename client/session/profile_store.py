"""
File-backed ProfileStore.

Stored record (as written by the profile settings screen):

    {"user": "...", "age": "27", "city": "...", "gender": "female", "lookingFor": "male"}

Values are form input: age may be a string and text fields may carry
surrounding whitespace. An empty city maps to location=None.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from observability.logger import log_event
from session.models import Profile

_REQUIRED_FIELDS = ("user", "age", "gender", "lookingFor")


class ProfileIncompleteError(ValueError):
    """The stored record is missing a field required for matchmaking."""


def profile_from_record(record: dict[str, Any]) -> Profile:
    """
    Build a Profile from a stored record.

    Raises:
        ProfileIncompleteError if a required field is empty.
        ValueError if age or an enum field is invalid.
    """
    for key in _REQUIRED_FIELDS:
        value = record.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ProfileIncompleteError(f"Profile incomplete: missing {key}")

    city = record.get("city")
    location = city.strip() if isinstance(city, str) and city.strip() else None

    return Profile(
        display_name=str(record["user"]).strip(),
        age=int(record["age"]),
        gender=record["gender"],
        looking_for=record["lookingFor"],
        location=location,
    )


def profile_to_record(profile: Profile) -> dict[str, Any]:
    return {
        "user": profile.display_name,
        "age": str(profile.age),
        "city": profile.location or "",
        "gender": profile.gender.value,
        "lookingFor": profile.looking_for.value,
    }


class JsonProfileStore:
    """ProfileStore backed by a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get_stored_profile(self) -> Profile | None:
        """
        Return the stored profile, or None if nothing was saved yet.

        Raises:
            ValueError if the file exists but is not a valid, complete record.
        """
        if not self.path.exists():
            return None

        try:
            record = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Stored profile is not JSON: {e}") from e

        if not isinstance(record, dict):
            raise ValueError("Stored profile must be a JSON object")

        return profile_from_record(record)

    def save_profile(self, profile: Profile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(profile_to_record(profile), ensure_ascii=False),
            encoding="utf-8",
        )
        log_event({
            "event_type": "PROFILE_SAVED",
            "path": str(self.path),
        })
