"""
Voice session container.

- Owns matchmaking data for one client instance (profile, partner, stats)
- Owned and mutated by ConnectionManager
- NOT a state machine
- Contains no connection logic
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from session.models import Partner, Profile, StatsSnapshot


@dataclass
class VoiceSession:
    """Mutable runtime container for the local user's matchmaking session."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Matchmaking
    # ------------------------------------------------------------------

    # Last profile sent with find_match; re-sent after a reconnect
    profile: Profile | None = None

    # At most one partner at a time
    partner: Partner | None = None

    stats: StatsSnapshot | None = None

    # ------------------------------------------------------------------
    # Mutation helpers (called by ConnectionManager)
    # ------------------------------------------------------------------

    def set_partner(self, partner: Partner) -> None:
        self.partner = partner

    def clear_partner(self) -> None:
        self.partner = None

    def clear(self, *, clear_profile: bool) -> None:
        """Drop the partner, and the profile too when asked."""
        self.partner = None
        if clear_profile:
            self.profile = None

    @property
    def in_match(self) -> bool:
        return self.partner is not None

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """Return standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "in_match": self.in_match,
        }
