"""Reconnect backoff bookkeeping for relay clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * factor ** n`` capped at ``max_delay``."""

    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the ``attempt``-th failure (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)


@dataclass
class RetryState:
    """Attempts made so far against one policy. Holds no timers."""

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    attempts: int = 0
    last_error: Optional[BaseException] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.policy.max_attempts

    @property
    def next_delay(self) -> Optional[float]:
        if self.exhausted:
            return None
        return self.policy.delay_for(self.attempts)

    def record_failure(self, error: Optional[BaseException] = None) -> Optional[float]:
        """Count a failed attempt; return the delay before the next one or None when out."""
        self.attempts += 1
        self.last_error = error
        return self.next_delay

    def record_success(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.attempts = 0
        self.last_error = None


__all__ = ["RetryPolicy", "RetryState"]
