"""
Reconnect Backoff
=================

Exponential backoff with proportional jitter.

    delay = min(base * 2^(attempt - 1), max_delay)
    delay += uniform(0, jitter_ratio * delay)
"""

import random
from typing import Callable


def compute_backoff_delay(
    attempt: int,
    base: float = 0.5,
    max_delay: float = 8.0,
    jitter_ratio: float = 0.25,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay before reconnect attempt ``attempt`` (1-based).

    Args:
        attempt: Attempt number, starting at 1
        base: Delay of the first attempt
        max_delay: Cap applied before jitter
        jitter_ratio: Upper bound of the jitter as a fraction of the delay
        rng: Source of uniform [0, 1) samples

    Returns:
        Delay in seconds, within [delay, delay * (1 + jitter_ratio)]
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")

    # Cap the exponent so large attempt counts never overflow
    delay = min(base * (2 ** min(attempt - 1, 32)), max_delay)
    return delay + rng() * jitter_ratio * delay
