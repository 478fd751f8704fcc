"""Retry policies and the backoff schedule.

A :class:`RetryPolicy` is an immutable value configured per call site
(batched thumbnail lookups, single-asset lookups). It is never shared
mutable state: the fetcher reads it, never writes it.

Delays follow ``base * 2**attempt + uniform(0, jitter_max)`` seconds.
Network and read failures use :attr:`RetryPolicy.base_delay`; rate-limited
responses use the larger :attr:`RetryPolicy.rate_limit_base_delay`. The
jitter spreads retries from many callers so they do not hit a shared
upstream in lockstep.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from assetproxy.models import RetryConfig

DEFAULT_BASE_DELAY = 0.1
DEFAULT_RATE_LIMIT_BASE_DELAY = 0.2
DEFAULT_JITTER_MAX = 0.2


@dataclass(frozen=True)
class RetryPolicy:
    """How hard a call site retries.

    Attributes:
        name: Call-site name used in diagnostics (e.g. ``"thumbnails"``).
        max_retries: Retries allowed after the first attempt; a permanently
            failing upstream sees ``max_retries + 1`` attempts.
        base_delay: Backoff base for network/read failures, in seconds.
        rate_limit_base_delay: Backoff base for rate-limited responses.
        jitter_max: Upper bound of the uniform random jitter, in seconds.
        deadline: Overall budget for the whole fetch including every retry
            and sleep, in seconds. ``None`` means unbounded.
    """

    name: str
    max_retries: int
    base_delay: float = DEFAULT_BASE_DELAY
    rate_limit_base_delay: float = DEFAULT_RATE_LIMIT_BASE_DELAY
    jitter_max: float = DEFAULT_JITTER_MAX
    deadline: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError("deadline must be positive")

    @classmethod
    def from_config(cls, name: str, config: RetryConfig, max_retries: int) -> RetryPolicy:
        """Build a policy from :class:`~assetproxy.models.RetryConfig` delays."""
        return cls(
            name=name,
            max_retries=max_retries,
            base_delay=config.base_delay,
            rate_limit_base_delay=config.rate_limit_base_delay,
            jitter_max=config.jitter_max,
            deadline=config.deadline,
        )

    def network_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay before retrying a network or read failure."""
        return backoff(attempt, self.base_delay, self.jitter_max, rng)

    def rate_limit_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay before retrying a rate-limited response."""
        return backoff(attempt, self.rate_limit_base_delay, self.jitter_max, rng)


def backoff(
    attempt: int,
    base: float,
    jitter_max: float,
    rng: Optional[random.Random] = None,
) -> float:
    """Exponential backoff with bounded jitter: ``base * 2**attempt + uniform(0, jitter_max)``.

    Args:
        attempt: 1-based number of the attempt that just failed.
        base: Base delay in seconds.
        jitter_max: Upper bound of the random jitter in seconds.
        rng: Random source; the module-level generator when ``None``.
    """
    jitter = (rng or random).uniform(0, jitter_max) if jitter_max > 0 else 0.0
    return base * (2 ** attempt) + jitter
