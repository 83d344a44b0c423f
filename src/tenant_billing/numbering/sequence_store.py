"""Abstract per-tenant counter store behind document numbering.

A sequence is keyed by ``(tenant_id, prefix)``.  Implementations must make
:meth:`SequenceStore.next_value` atomic: two concurrent callers for the same
key never receive the same value.

Implementations:
- InMemorySequenceStore: tests and single-process development
- SQLAlchemySequenceStore: ``document_sequences`` table with row locking
- RedisSequenceStore: Lua script executed atomically by Redis
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class SequenceStore(ABC):
    """Abstract base class for number counter storage.

    Example:
        ```python
        store = InMemorySequenceStore()
        await store.next_value("acct-1", "INV", base=10001)  # 10001
        await store.next_value("acct-1", "INV", base=10001)  # 10002
        await store.observe("acct-1", "INV", 20000)
        await store.next_value("acct-1", "INV", base=10001)  # 20001
        ```
    """

    @abstractmethod
    async def next_value(self, tenant_id: str, prefix: str, base: int) -> int:
        """Atomically allocate the next value for a tenant's sequence.

        Args:
            tenant_id: Tenant (account) owning the sequence
            prefix: Document number prefix, e.g. ``"INV"``
            base: First value handed out when the sequence is empty

        Returns:
            ``max(last + 1, base)``, which becomes the new last value
        """

    @abstractmethod
    async def observe(self, tenant_id: str, prefix: str, value: int) -> None:
        """Raise the sequence to at least *value*.

        Called when a caller supplies an explicit number so the next generated
        number is still "highest existing suffix + 1".
        """

    @abstractmethod
    async def current(self, tenant_id: str, prefix: str) -> int | None:
        """Return the last allocated value, or ``None`` if nothing was allocated yet."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. Default: nothing to release."""


__all__ = ["SequenceStore"]
