"""Tests for the backoff helper."""
import pytest

from app.core.retry import RetryConfig, retry_async


def test_delay_doubles_up_to_cap():
    config = RetryConfig(max_attempts=5, base_delay=1.0, max_delay=5.0)

    assert [config.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


async def test_returns_first_success():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("down")
        return "ok"

    result = await retry_async(flaky, RetryConfig(max_attempts=3, base_delay=0, max_delay=0))

    assert result == "ok"
    assert len(calls) == 3


async def test_raises_last_error_when_attempts_run_out():
    calls = []

    async def failing():
        calls.append(1)
        raise ConnectionError(f"attempt {len(calls)}")

    with pytest.raises(ConnectionError, match="attempt 2"):
        await retry_async(failing, RetryConfig(max_attempts=2, base_delay=0, max_delay=0))

    assert len(calls) == 2


async def test_waits_between_attempts(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("app.core.retry.asyncio.sleep", fake_sleep)

    async def failing():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await retry_async(failing, RetryConfig(max_attempts=3, base_delay=1.0, max_delay=5.0))

    assert delays == [1.0, 2.0]
