"""Exponential backoff for transient collaborator failures."""

from __future__ import annotations

from dataclasses import dataclass, field
import random
from typing import Callable

from ..config import RetryConfig
from ..core.errors import ProcessingError
from ..core.state import attempts_exhausted


@dataclass
class RetryPolicy:
    """Attempt ceiling and backoff schedule.

    The n-th retry waits ``min(ceiling, base * 2 ** (n - 1))`` seconds. With
    jitter enabled the delay is drawn from ``[delay / 2, delay]``.
    """

    max_attempts: int = 3
    base: float = 1.0
    ceiling: float = 30.0
    jitter: bool = True
    rand: Callable[[], float] = field(default=random.random, repr=False)

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=cfg.max_attempts,
            base=cfg.backoff_base,
            ceiling=cfg.backoff_ceiling,
            jitter=cfg.jitter,
        )

    def backoff(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        delay = min(self.ceiling, self.base * 2 ** (attempt - 1))
        if self.jitter:
            delay = delay / 2 + self.rand() * delay / 2
        return delay

    def delay_for(self, attempt: int, error: ProcessingError | None = None) -> float:
        """Backoff for ``attempt``, stretched to a rate-limit hint if one was given."""
        delay = self.backoff(attempt)
        if error is not None and error.retry_after:
            delay = max(delay, min(float(error.retry_after), self.ceiling))
        return delay

    def exhausted(self, attempts: int) -> bool:
        return attempts_exhausted(attempts, self.max_attempts)
