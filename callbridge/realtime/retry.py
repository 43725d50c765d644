"""Bounded reconnection policy for the speech service socket."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from callbridge.config import RetryConfig


@dataclass
class RetryPolicy:
    """Fixed-backoff retry budget.

    One budget covers one outage: the adapter resets it once a
    handshake succeeds, so every separate drop gets the full budget.

    Attributes:
        max_attempts: Retries allowed after the first attempt fails.
        backoff_seconds: Delay before each retry.
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    attempts_made: int = 0

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(max_attempts=config.max_attempts, backoff_seconds=config.backoff_seconds)

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts_made)

    def should_retry(self) -> bool:
        return self.attempts_made < self.max_attempts

    def reset(self) -> None:
        self.attempts_made = 0

    async def wait(self) -> None:
        """Consume one attempt and sleep for the backoff."""
        self.attempts_made += 1
        if self.backoff_seconds > 0:
            await asyncio.sleep(self.backoff_seconds)
