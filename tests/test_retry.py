import pytest
from redis.exceptions import WatchError

from league.services.base import RetryPolicy, with_backoff
from league.utils.exceptions import TransientCacheError, ValidationError

POLICY = RetryPolicy(attempts=4, initial_backoff=0.001)


def flaky(failures, error=WatchError):
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) <= failures:
            raise error('conflict')
        return 'done'

    return operation, calls


def test_delays_double():
    assert list(RetryPolicy(attempts=5, initial_backoff=0.05).delays()) == [0.05, 0.1, 0.2, 0.4]
    assert list(RetryPolicy(attempts=1, initial_backoff=0.05).delays()) == []


async def test_succeeds_after_conflicts():
    operation, calls = flaky(3)
    assert await with_backoff(operation, POLICY, (WatchError,)) == 'done'
    assert len(calls) == 4


async def test_budget_exhausted():
    operation, calls = flaky(10)
    with pytest.raises(TransientCacheError) as excinfo:
        await with_backoff(operation, POLICY, (WatchError,), 'write leaderboard')
    assert len(calls) == 4
    assert excinfo.value.attempts == 4
    assert excinfo.value.operation == 'write leaderboard'
    assert isinstance(excinfo.value.__cause__, WatchError)


async def test_other_errors_are_not_retried():
    operation, calls = flaky(1, error=ValidationError)
    with pytest.raises(ValidationError):
        await with_backoff(operation, POLICY, (WatchError,))
    assert len(calls) == 1
