"""
Tests for RetryExecutor backoff behaviour.
"""
import pytest

from src.core.errors import TransientTransportError, ValidationError
from src.core.use_cases.retry import RetryExecutor


class Flaky:
    def __init__(self, failures: int, error: Exception = None, result="ok"):
        self.failures = failures
        self.error = error or TransientTransportError("timeout")
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_succeeds_on_third_attempt_after_one_and_two_seconds(sleeper):
    """Two failures then success: waits 1s, then 2s, then returns the result."""
    op = Flaky(failures=2)
    result = await RetryExecutor(sleep=sleeper).execute(op, max_attempts=3, initial_delay=1.0)

    assert result == "ok"
    assert op.calls == 3
    assert sleeper.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_first_attempt_success_does_not_sleep(sleeper):
    op = Flaky(failures=0)
    assert await RetryExecutor(sleep=sleeper).execute(op) == "ok"
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_raises_last_error_when_attempts_exhausted(sleeper):
    op = Flaky(failures=10)
    with pytest.raises(TransientTransportError):
        await RetryExecutor(sleep=sleeper).execute(op, max_attempts=3, initial_delay=0.5)

    assert op.calls == 3
    # no wait after the final attempt
    assert sleeper.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_validation_error_is_not_retried(sleeper):
    op = Flaky(failures=5, error=ValidationError("bad address"))
    with pytest.raises(ValidationError):
        await RetryExecutor(sleep=sleeper).execute(op)

    assert op.calls == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_single_attempt_never_sleeps(sleeper):
    op = Flaky(failures=1)
    with pytest.raises(TransientTransportError):
        await RetryExecutor(sleep=sleeper).execute(op, max_attempts=1)
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_rejects_non_positive_attempts(sleeper):
    with pytest.raises(ValueError):
        await RetryExecutor(sleep=sleeper).execute(Flaky(0), max_attempts=0)
