"""Tests for retry with exponential backoff."""

from unittest.mock import AsyncMock, patch

import pytest

from common.utils.retry import RetryPolicy, retry_async


def test_retry_policy_delays():
    policy = RetryPolicy(attempts=4, base_delay=0.5)
    assert [policy.delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]
    assert RetryPolicy(base_delay=10, max_delay=15).delay(3) == 15


def test_retry_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=-1)


@pytest.mark.asyncio
async def test_retry_succeeds_after_failures():
    func = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("down"), "tx-1"])
    with patch("common.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        result = await retry_async(func, RetryPolicy(attempts=3, base_delay=0.5))

    assert result == "tx-1"
    assert func.await_count == 3
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_raises_last_error():
    func = AsyncMock(side_effect=[ConnectionError("first"), ConnectionError("last")])
    with patch("common.utils.retry.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(ConnectionError, match="last"):
            await retry_async(func, RetryPolicy(attempts=2))
    assert func.await_count == 2


@pytest.mark.asyncio
async def test_retry_does_not_retry_other_errors():
    func = AsyncMock(side_effect=KeyError("bug"))
    with pytest.raises(KeyError):
        await retry_async(func, RetryPolicy(attempts=3), retry_on=(ConnectionError,))
    assert func.await_count == 1
