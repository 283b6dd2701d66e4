"""
Exponential backoff calculation for scheduler retries.

Used by RetryPolicy (seedcrawl/scheduler/scheduler.py) when a job opts
into delayed retries instead of immediate requeue.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffConfig:
    """Configuration for exponential backoff calculation.

    - base_delay: Starting delay in seconds (default: 1.0)
    - max_delay: Maximum delay cap in seconds (default: 60.0)
    - exponential_base: Base for exponential calculation (default: 2.0)
    - jitter_factor: Random variation factor, ±10% by default

    Example:
        >>> config = BackoffConfig(base_delay=2.0, max_delay=120.0)
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay <= 0:
            raise ValueError("max_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base <= 1:
            raise ValueError("exponential_base must be > 1")
        if self.jitter_factor < 0 or self.jitter_factor > 1:
            raise ValueError("jitter_factor must be between 0 and 1")


def calculate_backoff(
    attempt: int,
    config: BackoffConfig | None = None,
    *,
    add_jitter: bool = True,
) -> float:
    """Calculate delay with exponential backoff and optional jitter.

    delay = min(base_delay * (exponential_base ^ attempt), max_delay)

    Args:
        attempt: Attempt number (0-indexed, 0 = first retry)
        config: Backoff configuration (default: BackoffConfig())
        add_jitter: Whether to add random jitter (default: True)

    Returns:
        Delay in seconds

    Example:
        >>> calculate_backoff(0, add_jitter=False)
        1.0
        >>> calculate_backoff(2, add_jitter=False)
        4.0
    """
    if attempt < 0:
        raise ValueError("attempt must be non-negative")

    if config is None:
        config = BackoffConfig()

    delay = min(
        config.base_delay * (config.exponential_base**attempt),
        config.max_delay,
    )

    if add_jitter and config.jitter_factor > 0:
        jitter_range = delay * config.jitter_factor
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)
