"""SQLAlchemy-backed sequence store.

Counters live in the ``document_sequences`` table next to the documents.
On PostgreSQL and MySQL the counter row is locked with
``SELECT … FOR UPDATE`` for the duration of the allocation; dialects
without row locks (SQLite) are serialised with a process-local lock.

Allocation commits in its own short transaction, independently of the
document write that uses the number.  A failed document write therefore
leaves a gap in the sequence, never a duplicate.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_billing.core.exceptions import ConcurrencyConflictError
from tenant_billing.numbering.sequence_store import SequenceStore
from tenant_billing.storage.models import SequenceModel
from tenant_billing.utils.db_compat import DbDialect, supports_row_locking

logger = logging.getLogger(__name__)

_INSERT_RACE_RETRIES = 3


class SQLAlchemySequenceStore(SequenceStore):
    """Per-tenant counters in a SQL table.

    Example
    -------
    .. code-block:: python

        documents = SQLAlchemyDocumentStore(database_url)
        await documents.initialize()  # also creates document_sequences
        sequences = SQLAlchemySequenceStore(
            documents.session_factory,
            documents.dialect,
            session_lock=documents.session_lock,
        )
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dialect: DbDialect = DbDialect.UNKNOWN,
        session_lock: asyncio.Lock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.dialect = dialect
        self._row_locking = supports_row_locking(dialect)
        # A document store on the same SQLite connection hands over its lock
        self._local_lock = session_lock or asyncio.Lock()
        self._shared_lock = session_lock is not None
        logger.info(
            "SQLAlchemySequenceStore dialect=%s row_locking=%s", dialect.value, self._row_locking
        )

    @contextlib.asynccontextmanager
    async def _serialised(self) -> AsyncIterator[None]:
        if self._row_locking and not self._shared_lock:
            yield
            return
        async with self._local_lock:
            yield

    def _select(self, tenant_id: str, prefix: str) -> Select[tuple[SequenceModel]]:
        query = select(SequenceModel).where(
            SequenceModel.tenant_id == tenant_id, SequenceModel.prefix == prefix
        )
        if self._row_locking:
            query = query.with_for_update()
        return query

    async def _bump(self, tenant_id: str, prefix: str, target: int, *, floor: bool) -> int:
        """Shared read-modify-write for :meth:`next_value` and :meth:`observe`.

        With ``floor=True`` the row becomes ``max(last + 1, target)``;
        otherwise ``max(last, target)``.
        """
        for attempt in range(1, _INSERT_RACE_RETRIES + 1):
            try:
                async with self._serialised(), self.session_factory() as session, session.begin():
                    result = await session.execute(self._select(tenant_id, prefix))
                    row = result.scalar_one_or_none()
                    if row is None:
                        session.add(
                            SequenceModel(tenant_id=tenant_id, prefix=prefix, last_value=target)
                        )
                        return target
                    last = row.last_value + 1 if floor else row.last_value
                    value = max(last, target)
                    row.last_value = value
                    return value
            except IntegrityError:
                # Another process inserted the first row concurrently; its row is visible now
                logger.warning(
                    "Sequence %s for tenant %s created concurrently (attempt %d/%d)",
                    prefix, tenant_id, attempt, _INSERT_RACE_RETRIES,
                )
        raise ConcurrencyConflictError(
            "next_number", f"could not initialise sequence {prefix!r} for tenant {tenant_id!r}"
        )

    async def next_value(self, tenant_id: str, prefix: str, base: int) -> int:
        value = await self._bump(tenant_id, prefix, base, floor=True)
        logger.debug("Allocated %s-%d for tenant %s", prefix, value, tenant_id)
        return value

    async def observe(self, tenant_id: str, prefix: str, value: int) -> None:
        await self._bump(tenant_id, prefix, value, floor=False)

    async def current(self, tenant_id: str, prefix: str) -> int | None:
        async with self._serialised(), self.session_factory() as session:
            result = await session.execute(
                select(SequenceModel.last_value).where(
                    SequenceModel.tenant_id == tenant_id, SequenceModel.prefix == prefix
                )
            )
            return result.scalar_one_or_none()


__all__ = ["SQLAlchemySequenceStore"]
