"""Backoff policy for draining the offline queue."""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 0.0  # seconds; 0 retries on the next cycle
    max_delay: float = 300.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = False  # Add randomness to prevent thundering herd


def calculate_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Calculate delay for a retry attempt with exponential backoff.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** attempt)
    delay = min(delay, max_delay)

    if jitter:
        # Add +/- 25% jitter
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


class QueueBackoff:
    """Tracks consecutive queue drain failures and the resulting quiet period."""

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()
        self.consecutive_failures = 0
        self.until: Optional[datetime] = None

    def is_waiting(self, now: datetime) -> bool:
        return self.until is not None and now < self.until

    def record_failure(self, now: datetime) -> float:
        """Register a failed drain and schedule the next attempt.

        Returns:
            Delay in seconds before the queue is drained again
        """
        delay = calculate_delay(
            self.consecutive_failures,
            self.config.base_delay,
            self.config.max_delay,
            self.config.exponential_base,
            self.config.jitter,
        )
        self.consecutive_failures += 1
        self.until = now + timedelta(seconds=delay)
        if delay > 0:
            logger.info(f"Queue drain backing off for {delay:.1f}s")
        return delay

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.until = None
