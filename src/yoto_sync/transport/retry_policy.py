"""Reconnect backoff policy for the MQTT session.

Delay for attempt n (0-indexed) is min(base * 2**n, max) plus a uniform
jitter in [0, max_jitter). The reconnect loop gives up after max_attempts
consecutive failures.
"""

from __future__ import annotations

import random

from yoto_sync.const import (
    YOTO_RECONNECT_BASE_DELAY,
    YOTO_RECONNECT_MAX_ATTEMPTS,
    YOTO_RECONNECT_MAX_DELAY,
    YOTO_RECONNECT_MAX_JITTER,
)


class ReconnectPolicy:
    """Exponential backoff with additive jitter and an attempt budget."""

    def __init__(
        self,
        base_delay_seconds: float = YOTO_RECONNECT_BASE_DELAY,
        max_delay_seconds: float = YOTO_RECONNECT_MAX_DELAY,
        max_jitter_seconds: float = YOTO_RECONNECT_MAX_JITTER,
        max_attempts: int = YOTO_RECONNECT_MAX_ATTEMPTS,
    ) -> None:
        """Initialize reconnect policy.

        Args:
            base_delay_seconds: Delay before the first retry (default: 5s)
            max_delay_seconds: Cap applied before jitter (default: 60s)
            max_jitter_seconds: Upper bound of the random jitter (default: 1s)
            max_attempts: Consecutive failures before giving up (default: 10)

        """
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.max_jitter_seconds = max_jitter_seconds
        self.max_attempts = max_attempts

    def base_delay(self, attempt: int) -> float:
        """Backoff for an attempt without jitter."""
        return min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)

    def get_delay(self, attempt: int) -> float:
        """Backoff for an attempt with jitter added."""
        jitter = random.uniform(0, self.max_jitter_seconds) if self.max_jitter_seconds > 0 else 0.0
        return self.base_delay(attempt) + jitter

    def exhausted(self, attempts: int) -> bool:
        """True once attempts consecutive failures used up the budget."""
        return attempts >= self.max_attempts

    def __repr__(self) -> str:
        return (
            f"ReconnectPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"max_jitter={self.max_jitter_seconds}s, "
            f"max_attempts={self.max_attempts})"
        )
