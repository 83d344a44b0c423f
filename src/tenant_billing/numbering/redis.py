"""Redis-backed sequence store.

Each sequence is a plain integer key ``{key_prefix}:{tenant_id}:{prefix}``.
Allocation runs as a Lua script, which Redis executes atomically, so any
number of application processes can share one counter.

Requires the ``redis`` extra::

    pip install tenant-billing[redis]
"""
from __future__ import annotations

import logging

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from tenant_billing.core.exceptions import ConcurrencyConflictError
from tenant_billing.numbering.sequence_store import SequenceStore

logger = logging.getLogger(__name__)

_NEXT_VALUE_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local base = tonumber(ARGV[1])
local nxt = current + 1
if nxt < base then nxt = base end
redis.call('SET', KEYS[1], nxt)
return nxt
"""

_OBSERVE_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local value = tonumber(ARGV[1])
if value > current then
  redis.call('SET', KEYS[1], value)
  return value
end
return current
"""


class RedisSequenceStore(SequenceStore):
    """Atomic per-tenant counters in Redis.

    Example
    -------
    .. code-block:: python

        store = RedisSequenceStore(redis_url="redis://localhost:6379/0")
        value = await store.next_value("acct-1", "INV", base=10001)
    """

    def __init__(self, redis_url: str, key_prefix: str = "billing:seq") -> None:
        self.key_prefix = key_prefix
        self.redis: aioredis.Redis = aioredis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._next_value = self.redis.register_script(_NEXT_VALUE_LUA)
        self._observe = self.redis.register_script(_OBSERVE_LUA)
        logger.info("RedisSequenceStore initialised prefix=%s", key_prefix)

    def _key(self, tenant_id: str, prefix: str) -> str:
        return f"{self.key_prefix}:{tenant_id}:{prefix}"

    async def next_value(self, tenant_id: str, prefix: str, base: int) -> int:
        try:
            value = await self._next_value(keys=[self._key(tenant_id, prefix)], args=[base])
        except RedisError as exc:
            raise ConcurrencyConflictError("next_number", f"redis error: {exc}") from exc
        logger.debug("Allocated %s-%s for tenant %s", prefix, value, tenant_id)
        return int(value)

    async def observe(self, tenant_id: str, prefix: str, value: int) -> None:
        try:
            await self._observe(keys=[self._key(tenant_id, prefix)], args=[value])
        except RedisError as exc:
            raise ConcurrencyConflictError("observe_number", f"redis error: {exc}") from exc

    async def current(self, tenant_id: str, prefix: str) -> int | None:
        raw = await self.redis.get(self._key(tenant_id, prefix))
        return int(raw) if raw is not None else None

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.redis.aclose()
        logger.info("RedisSequenceStore closed")


__all__ = ["RedisSequenceStore"]
