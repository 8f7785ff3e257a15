"""Backoff computation tests."""

import asyncio

import pytest

from stepgraph.contracts import RetryPolicy
from stepgraph.utils.retry import compute_backoff, schedule_retry


def test_exponential_backoff():
    policy = RetryPolicy(backoff_type="exponential", initial_delay=100, multiplier=2)
    assert [compute_backoff(policy, n) for n in (1, 2, 3)] == [100, 200, 400]


def test_linear_and_fixed_backoff():
    linear = RetryPolicy(backoff_type="linear", initial_delay=100)
    fixed = RetryPolicy(backoff_type="fixed", initial_delay=250)
    assert [compute_backoff(linear, n) for n in (1, 2, 3)] == [100, 200, 300]
    assert [compute_backoff(fixed, n) for n in (1, 2, 3)] == [250, 250, 250]


def test_backoff_is_clamped_to_max_delay():
    policy = RetryPolicy(
        backoff_type="exponential", initial_delay=1000, multiplier=10, max_delay=5000
    )
    assert compute_backoff(policy, 1) == 1000
    assert compute_backoff(policy, 2) == 5000
    assert compute_backoff(policy, 10) == 5000


@pytest.mark.asyncio
async def test_schedule_retry_sleeps_for_delay(monkeypatch):
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    policy = RetryPolicy(backoff_type="linear", initial_delay=100)
    delay = await schedule_retry(policy, 3)
    assert delay == 300
    assert slept == [0.3]
