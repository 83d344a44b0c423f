"""Dialect detection for the SQL document and sequence stores.

URLs are parsed with SQLAlchemy's own :func:`~sqlalchemy.engine.make_url`,
so anything :func:`create_async_engine` accepts is understood here too.

How each dialect allocates document numbers
-------------------------------------------
| Dialect    | ``SELECT … FOR UPDATE`` | Number allocation                       |
|------------|-------------------------|-----------------------------------------|
| PostgreSQL | yes                     | row lock on ``document_sequences``       |
| MySQL      | yes                     | row lock on ``document_sequences``       |
| SQLite     | no                      | process-local lock around the counter    |
| Other      | no                      | process-local lock around the counter    |
"""
from __future__ import annotations

from enum import StrEnum

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


class DbDialect(StrEnum):
    """Database families the stores know how to talk to."""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"
    MYSQL = "mysql"
    UNKNOWN = "unknown"


# Async DBAPI drivers per backend; other drivers are treated as unknown
_ASYNC_DRIVERS: dict[str, tuple[DbDialect, frozenset[str]]] = {
    "postgresql": (DbDialect.POSTGRESQL, frozenset({"asyncpg", "psycopg"})),
    "sqlite": (DbDialect.SQLITE, frozenset({"aiosqlite"})),
    "mysql": (DbDialect.MYSQL, frozenset({"aiomysql", "asyncmy"})),
    "mariadb": (DbDialect.MYSQL, frozenset({"aiomysql", "asyncmy"})),
}


def _backend_and_driver(database_url: str) -> tuple[str, str | None] | None:
    try:
        url = make_url(database_url.strip())
    except ArgumentError:
        return None
    backend, _, driver = url.drivername.lower().partition("+")
    return backend, driver or None


def detect_dialect(database_url: str) -> DbDialect:
    """Return the :class:`DbDialect` for *database_url*.

    A bare backend name (``postgresql://``) is recognised; a driver this
    package does not run on (``postgresql+psycopg2://``) gives ``UNKNOWN``.

    >>> detect_dialect("postgresql+asyncpg://billing:secret@db/billing")
    <DbDialect.POSTGRESQL: 'postgresql'>
    >>> detect_dialect("sqlite+aiosqlite:///:memory:")
    <DbDialect.SQLITE: 'sqlite'>
    """
    parsed = _backend_and_driver(database_url)
    if parsed is None or parsed[0] not in _ASYNC_DRIVERS:
        return DbDialect.UNKNOWN
    backend, driver = parsed
    dialect, drivers = _ASYNC_DRIVERS[backend]
    if driver is not None and driver not in drivers:
        return DbDialect.UNKNOWN
    return dialect


def is_async_url(database_url: str) -> bool:
    """Return True if the URL names one of the supported async drivers."""
    parsed = _backend_and_driver(database_url)
    if parsed is None or parsed[0] not in _ASYNC_DRIVERS:
        return False
    backend, driver = parsed
    return driver in _ASYNC_DRIVERS[backend][1]


def supports_row_locking(dialect: DbDialect) -> bool:
    """Whether sequence rows can be locked with ``SELECT … FOR UPDATE``."""
    return dialect in (DbDialect.POSTGRESQL, DbDialect.MYSQL)


def requires_static_pool(dialect: DbDialect) -> bool:
    # An in-memory SQLite database lives and dies with its one connection
    return dialect == DbDialect.SQLITE


__all__ = [
    "DbDialect",
    "detect_dialect",
    "is_async_url",
    "requires_static_pool",
    "supports_row_locking",
]
