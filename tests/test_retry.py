"""Tests for the shared retry policy."""

import asyncio

import pytest

from errors import NotFoundError, UpstreamRateLimited, UpstreamUnavailable
from utils.retry import RetryPolicy, is_retryable

from conftest import make_config


class Flaky:
    """Raises the queued errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def test_backoff_doubles_and_caps():
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
    assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_jitter_stays_within_fraction():
    policy = RetryPolicy(base_delay=4.0, max_delay=60.0, jitter=0.25)
    for _ in range(50):
        assert 3.0 <= policy.delay_for(0) <= 5.0


def test_succeeds_after_retryable_failures(retry_policy, sleeps):
    operation = Flaky(UpstreamUnavailable("down"), UpstreamUnavailable("slow", timeout=True))

    assert asyncio.run(retry_policy.run(operation)) == "ok"
    assert operation.calls == 3
    assert sleeps == [1.0, 2.0]


def test_gives_up_after_max_attempts(retry_policy, sleeps):
    operation = Flaky(*[UpstreamUnavailable(f"attempt {n}") for n in range(10)])

    with pytest.raises(UpstreamUnavailable, match="attempt 4"):
        asyncio.run(retry_policy.run(operation))
    assert operation.calls == 5
    assert sleeps == [1.0, 2.0, 4.0, 8.0]


def test_non_retryable_status_raises_immediately(retry_policy, sleeps):
    operation = Flaky(UpstreamUnavailable("forbidden", status_code=403, retryable=False))

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(retry_policy.run(operation))
    assert operation.calls == 1
    assert sleeps == []


def test_other_errors_are_not_retried(retry_policy, sleeps):
    operation = Flaky(NotFoundError("no such league"))

    with pytest.raises(NotFoundError):
        asyncio.run(retry_policy.run(operation))
    assert operation.calls == 1
    assert sleeps == []


def test_retry_after_sets_minimum_wait(retry_policy, sleeps):
    operation = Flaky(UpstreamRateLimited("slow down", retry_after=30.0))

    assert asyncio.run(retry_policy.run(operation)) == "ok"
    assert sleeps == [30.0]


def test_is_retryable():
    assert is_retryable(UpstreamUnavailable("x"))
    assert is_retryable(UpstreamRateLimited("x"))
    assert not is_retryable(UpstreamUnavailable("x", retryable=False))
    assert not is_retryable(ValueError("x"))


def test_from_config():
    policy = RetryPolicy.from_config(make_config(max_retries=3, retry_backoff_base=0.5, max_retry_delay=10))
    assert policy.max_attempts == 3
    assert policy.base_delay == 0.5
    assert policy.max_delay == 10.0
