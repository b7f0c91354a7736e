"""Retry policy for queued uploads."""

from dataclasses import dataclass
from datetime import timedelta

from flockcount.core.config import ClientSettings


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap and an optional attempt limit.

    `max_attempts=None` retries forever (only backoff applies).
    """

    max_attempts: int | None = 8
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 300.0

    def __post_init__(self):
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay_seconds,
        )

    def delay_for(self, retry_count: int) -> timedelta:
        """Wait before the next attempt after `retry_count` failures.

        delay = base * multiplier ** (retry_count - 1), capped at max_delay.
        """
        if retry_count <= 0:
            return timedelta(0)
        # Cap the exponent so huge retry counts cannot overflow
        exponent = min(retry_count - 1, 64)
        seconds = min(self.base_delay * (self.multiplier**exponent), self.max_delay)
        return timedelta(seconds=seconds)

    def is_exhausted(self, retry_count: int) -> bool:
        """True once `retry_count` failed attempts use up the budget."""
        return self.max_attempts is not None and retry_count >= self.max_attempts
