"""Retry policy tests."""

import asyncio
import time

import pytest

from vigil.core.errors import ConstraintViolationError, TransientStoreError
from vigil.core.retry import RetryPolicy


def test_backoff_grows_and_caps(monkeypatch):
    delays = []
    monkeypatch.setattr(time, "sleep", delays.append)

    def always_down():
        raise TransientStoreError("down")

    policy = RetryPolicy(max_attempts=5, base_delay=0.1, max_delay=0.3, factor=2.0)
    with pytest.raises(TransientStoreError):
        policy.call(always_down)
    assert delays == pytest.approx([0.1, 0.2, 0.3, 0.3])


def test_transient_errors_are_retried_until_success():
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientStoreError("blip")
        return "ok"

    assert RetryPolicy(max_attempts=3, base_delay=0.0).call(flaky) == "ok"
    assert len(attempts) == 3


def test_exhausted_retries_surface_last_error():
    attempts = []

    def always_down():
        attempts.append(1)
        raise TransientStoreError("down")

    with pytest.raises(TransientStoreError):
        RetryPolicy(max_attempts=2, base_delay=0.0).call(always_down)
    assert len(attempts) == 2


def test_constraint_violations_are_not_retried():
    attempts = []

    def conflict():
        attempts.append(1)
        raise ConstraintViolationError("duplicate")

    with pytest.raises(ConstraintViolationError):
        RetryPolicy(max_attempts=5, base_delay=0.0).call(conflict)
    assert len(attempts) == 1


def test_async_call_retries():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise TransientStoreError("blip")
        return 42

    result = asyncio.run(RetryPolicy(max_attempts=2, base_delay=0.0).acall(flaky))
    assert result == 42
    assert len(attempts) == 2


def test_none_policy_makes_one_attempt():
    assert RetryPolicy.none().max_attempts == 1
