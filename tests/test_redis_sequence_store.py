"""Unit tests for RedisSequenceStore with a mocked client."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tenant_billing.core.exceptions import ConcurrencyConflictError
from tenant_billing.numbering.redis import RedisSequenceStore


@pytest.fixture
def next_script() -> AsyncMock:
    return AsyncMock(return_value=10001)


@pytest.fixture
def observe_script() -> AsyncMock:
    return AsyncMock(return_value=10500)


@pytest.fixture
def mock_redis(next_script: AsyncMock, observe_script: AsyncMock) -> MagicMock:
    redis = MagicMock()
    redis.register_script = MagicMock(side_effect=[next_script, observe_script])
    redis.get = AsyncMock(return_value=None)
    redis.aclose = AsyncMock()
    return redis


@pytest.fixture
def redis_store(mock_redis: MagicMock) -> RedisSequenceStore:
    with patch("tenant_billing.numbering.redis.aioredis.from_url", return_value=mock_redis):
        return RedisSequenceStore(redis_url="redis://localhost:6379/0")


class TestScripts:

    def test_registers_both_scripts(self, redis_store: RedisSequenceStore, mock_redis) -> None:
        assert mock_redis.register_script.call_count == 2

    @pytest.mark.asyncio
    async def test_next_value_calls_script(
        self, redis_store: RedisSequenceStore, next_script: AsyncMock
    ) -> None:
        assert await redis_store.next_value("acct-1", "INV", 10001) == 10001
        next_script.assert_awaited_once_with(keys=["billing:seq:acct-1:INV"], args=[10001])

    @pytest.mark.asyncio
    async def test_observe_calls_script(
        self, redis_store: RedisSequenceStore, observe_script: AsyncMock
    ) -> None:
        await redis_store.observe("acct-1", "INV", 10500)
        observe_script.assert_awaited_once_with(keys=["billing:seq:acct-1:INV"], args=[10500])

    @pytest.mark.asyncio
    async def test_redis_failure_is_conflict(
        self, redis_store: RedisSequenceStore, next_script: AsyncMock
    ) -> None:
        next_script.side_effect = RedisConnectionError("down")
        with pytest.raises(ConcurrencyConflictError, match="redis error"):
            await redis_store.next_value("acct-1", "INV", 10001)


class TestCurrent:

    @pytest.mark.asyncio
    async def test_missing_key(self, redis_store: RedisSequenceStore) -> None:
        assert await redis_store.current("acct-1", "INV") is None

    @pytest.mark.asyncio
    async def test_existing_key(self, redis_store: RedisSequenceStore, mock_redis) -> None:
        mock_redis.get.return_value = "10007"
        assert await redis_store.current("acct-1", "INV") == 10007
        mock_redis.get.assert_awaited_with("billing:seq:acct-1:INV")


class TestClose:

    @pytest.mark.asyncio
    async def test_close(self, redis_store: RedisSequenceStore, mock_redis) -> None:
        await redis_store.close()
        mock_redis.aclose.assert_awaited_once()

    def test_custom_key_prefix(self, mock_redis: MagicMock) -> None:
        with patch("tenant_billing.numbering.redis.aioredis.from_url", return_value=mock_redis):
            store = RedisSequenceStore("redis://localhost", key_prefix="tb")
        assert store._key("a", "INV") == "tb:a:INV"
