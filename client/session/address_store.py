"""
File-backed AddressProvider.

Keeps the relay address scanned from a QR code between runs:

    {"relay_server_url": "wss://relay.example:8080"}

A missing or unreadable file means no address is stored; the caller then
asks for one again.
"""

from __future__ import annotations

import json
from pathlib import Path

from observability.logger import log_event

ADDRESS_KEY = "relay_server_url"


class JsonAddressStore:
    """AddressProvider backed by a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get_server_address(self) -> str | None:
        if not self.path.exists():
            return None

        try:
            record = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log_event({
                "level": "WARNING",
                "event_type": "ADDRESS_READ_FAILED",
                "path": str(self.path),
                "exception": type(e).__name__,
                "message": str(e),
            })
            return None

        address = record.get(ADDRESS_KEY) if isinstance(record, dict) else None
        if not isinstance(address, str) or not address.strip():
            return None
        return address.strip()

    def save_server_address(self, address: str) -> None:
        if not address.strip():
            raise ValueError("Relay address must not be empty")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({ADDRESS_KEY: address.strip()}), encoding="utf-8")
        log_event({
            "event_type": "ADDRESS_SAVED",
            "path": str(self.path),
        })

    def forget(self) -> None:
        """Drop the stored address (leaving the relay). Idempotent."""
        self.path.unlink(missing_ok=True)
        log_event({
            "event_type": "ADDRESS_FORGOTTEN",
            "path": str(self.path),
        })
