from __future__ import annotations

import asyncio

from ..contracts import RetryPolicy


def compute_backoff(policy: RetryPolicy, attempt: int) -> float:
    """Return the delay in milliseconds to wait after failed ``attempt``.

    ``fixed`` waits ``initial_delay``, ``linear`` grows with the attempt number
    and ``exponential`` multiplies by ``multiplier`` each attempt. The result is
    clamped to ``max_delay``.
    """
    if policy.backoff_type == "exponential":
        delay = policy.initial_delay * policy.multiplier ** (attempt - 1)
    elif policy.backoff_type == "linear":
        delay = policy.initial_delay * attempt
    else:
        delay = policy.initial_delay
    return min(delay, policy.max_delay)


async def schedule_retry(policy: RetryPolicy, attempt: int) -> float:
    """Sleep for the computed backoff delay and return it (milliseconds)."""
    delay = compute_backoff(policy, attempt)
    await asyncio.sleep(delay / 1000)
    return delay
