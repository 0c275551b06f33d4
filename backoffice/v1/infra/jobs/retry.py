"""
Retry backoff policy for failed jobs.
"""

import random
from collections.abc import Callable

from backoffice.config.settings import Settings


def compute_backoff(
    attempts: int,
    base_s: float,
    max_s: float,
    jitter_ratio: float = 0.1,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Calculate the delay before the next attempt of a job.

    Exponential in the number of attempts already made, with up to
    ``jitter_ratio`` extra random delay so retries from many workers spread out.
    Jitter is only ever added, so the delay never decreases as ``attempts``
    grows.

    Args:
        attempts: Attempts made so far (1 after the first failure)
        base_s: Delay after the first failure, before jitter
        max_s: Upper bound on the returned delay
        jitter_ratio: Maximum fractional jitter in [0, 1]
        rand: Source of uniform floats in [0, 1)

    Returns:
        Delay in seconds, within [0, max_s]
    """
    if attempts < 1:
        attempts = 1

    # Cap the exponent before it can overflow; the delay is clamped anyway
    exponent = min(attempts - 1, 62)
    delay = base_s * (2**exponent)
    delay *= 1 + jitter_ratio * rand()
    return max(0.0, min(max_s, delay))


def backoff_for_settings(settings: Settings, attempts: int) -> float:
    """Backoff delay using the configured retry policy."""
    return compute_backoff(
        attempts,
        base_s=settings.job_backoff_base_ms / 1000,
        max_s=settings.job_max_backoff_s,
        jitter_ratio=settings.job_backoff_jitter,
    )
