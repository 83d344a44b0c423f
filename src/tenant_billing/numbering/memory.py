"""In-memory sequence store for testing and development.

WARNING: counters live in process memory only and are lost on restart.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from tenant_billing.numbering.sequence_store import SequenceStore

logger = logging.getLogger(__name__)


class InMemorySequenceStore(SequenceStore):
    """Per-key counters guarded by one :class:`asyncio.Lock` per key.

    Attributes:
        _values: ``(tenant_id, prefix)`` -> last allocated value
        _locks: ``(tenant_id, prefix)`` -> lock serialising allocation
    """

    def __init__(self) -> None:
        self._values: dict[tuple[str, str], int] = {}
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        logger.info("Initialized in-memory sequence store")

    async def next_value(self, tenant_id: str, prefix: str, base: int) -> int:
        key = (tenant_id, prefix)
        async with self._locks[key]:
            last = self._values.get(key)
            value = base if last is None else max(last + 1, base)
            self._values[key] = value
        logger.debug("Allocated %s-%d for tenant %s", prefix, value, tenant_id)
        return value

    async def observe(self, tenant_id: str, prefix: str, value: int) -> None:
        key = (tenant_id, prefix)
        async with self._locks[key]:
            if value > self._values.get(key, 0):
                self._values[key] = value
                logger.debug("Sequence %s for tenant %s raised to %d", prefix, tenant_id, value)

    async def current(self, tenant_id: str, prefix: str) -> int | None:
        return self._values.get((tenant_id, prefix))

    def clear(self) -> None:
        """Forget every counter (for testing)."""
        self._values.clear()
        self._locks.clear()


__all__ = ["InMemorySequenceStore"]
