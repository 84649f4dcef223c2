"""
Reconnect policy helpers.

Purpose:
- Centralize the reconnect backoff schedule
- Keep the reducer pure
- Allow deterministic, independently testable retry decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from spec import (
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_DELAY_MS,
)


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable reconnect counter.

    Semantics:
    - attempt == 0: no reconnect scheduled since the last successful open.
    - attempt >= 1: the Nth reconnect has been scheduled.
    """
    attempt: int = 0


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Exponential backoff with a cap and a bounded budget.

    delay(n) = min(base_delay_ms * 2^(n-1), max_delay_ms) for attempt n >= 1
    """
    base_delay_ms: int = RECONNECT_BASE_DELAY_MS
    max_delay_ms: int = RECONNECT_MAX_DELAY_MS
    max_attempts: int = MAX_RECONNECT_ATTEMPTS

    def __post_init__(self) -> None:
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be > 0")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

    def should_retry(self, attempt: RetryAttempt) -> bool:
        """
        True if another reconnect may be scheduled.

        attempt = number of reconnects already scheduled
        """
        return attempt.attempt < self.max_attempts

    def delay_ms(self, attempt: RetryAttempt) -> int:
        """Delay before reconnect attempt N (N >= 1)."""
        if attempt.attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt.attempt}")

        # 2^62 ms already exceeds any configurable cap
        exponent = min(attempt.attempt - 1, 62)
        return min(self.base_delay_ms * (2 ** exponent), self.max_delay_ms)

    def schedule(self) -> tuple[int, ...]:
        """The full delay sequence for attempts 1..max_attempts."""
        return tuple(
            self.delay_ms(RetryAttempt(n)) for n in range(1, self.max_attempts + 1)
        )
