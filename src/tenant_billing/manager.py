"""Central billing manager: builds, starts and stops the billing components.

``BillingManager`` wires a document store, a sequence store, a number
generator and the document services from one :class:`BillingConfig`.

* Construction does no I/O.  Engines and connections are opened by
  :meth:`BillingManager.initialize` and released by
  :meth:`BillingManager.shutdown`.
* :meth:`BillingManager.create_lifespan` is the one-call FastAPI
  integration::

      app = FastAPI(lifespan=BillingManager.create_lifespan(config))

  The manager is then available to dependencies as
  ``request.app.state.billing_manager``.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from tenant_billing.core.exceptions import ConfigurationError
from tenant_billing.core.types import DocumentKind, utc_now
from tenant_billing.numbering.generator import NumberGenerator
from tenant_billing.services.estimates import EstimateService
from tenant_billing.services.invoices import InvoiceService
from tenant_billing.services.recurring import RecurringInvoiceService
from tenant_billing.services.reminders import PaymentReminderService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI
    from starlette.types import Lifespan

    from tenant_billing.core.config import BillingConfig
    from tenant_billing.numbering.sequence_store import SequenceStore
    from tenant_billing.services.base import Clock
    from tenant_billing.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


class BillingManager:
    """Orchestrator for the billing components.

    Lifecycle
    ---------
    1. **Construct**: stores configuration and overrides, no I/O.
    2. **initialize()**: creates the stores, runs schema creation, connects
       to Redis when configured, and builds the services.
    3. **shutdown()**: closes the sequence store and disposes the engine.

    Usage outside FastAPI (workers, scheduled jobs)::

        async with BillingManager(config) as billing:
            await billing.recurring.generate_all_due()
            await billing.invoices.mark_overdue_invoices()

    Parameters
    ----------
    config:
        Validated :class:`~tenant_billing.core.config.BillingConfig`.
    document_store:
        Override the default
        :class:`~tenant_billing.storage.sqlalchemy.SQLAlchemyDocumentStore`.
        Useful for testing with
        :class:`~tenant_billing.storage.memory.InMemoryDocumentStore`.
    sequence_store:
        Override the sequence store chosen by ``config.sequence_backend``.
    clock:
        Clock handed to every service.
    """

    def __init__(
        self,
        config: BillingConfig,
        *,
        document_store: DocumentStore | None = None,
        sequence_store: SequenceStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.clock = clock
        self._initialized = False

        self._custom_store = document_store
        self._custom_sequences = sequence_store

        # These are set during initialize()
        self.store: DocumentStore
        self.sequences: SequenceStore
        self.numbers: NumberGenerator
        self.invoices: InvoiceService
        self.estimates: EstimateService
        self.recurring: RecurringInvoiceService
        self.reminders: PaymentReminderService

        logger.info("BillingManager created sequence_backend=%s", config.sequence_backend)

    async def initialize(self) -> None:
        """Open the stores and build the services.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        if self._initialized:
            return

        logger.info("BillingManager initialising")

        self._initialize_storage()
        self._initialize_sequences()
        await self.store.initialize()

        self.numbers = NumberGenerator(self.sequences, self.config)
        self.invoices = InvoiceService(self.store, self.numbers, self.config, self.clock)
        self.estimates = EstimateService(self.store, self.numbers, self.config, self.clock)
        self.recurring = RecurringInvoiceService(
            self.store, self.numbers, self.config, self.clock
        )
        self.reminders = PaymentReminderService(self.store, self.config, self.clock)

        self._initialized = True
        logger.info("BillingManager initialised")

    async def shutdown(self) -> None:
        """Release connection pools and Redis connections."""
        if not self._initialized:
            return

        logger.info("BillingManager shutting down")
        await self.sequences.close()
        await self.store.close()
        self._initialized = False
        logger.info("BillingManager shutdown complete")

    async def __aenter__(self) -> BillingManager:
        await self.initialize()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.shutdown()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @staticmethod
    def create_lifespan(
        config: BillingConfig,
        *,
        document_store: DocumentStore | None = None,
        sequence_store: SequenceStore | None = None,
    ) -> Lifespan[FastAPI]:
        """Build a FastAPI ``lifespan`` that owns a :class:`BillingManager`.

        The manager is stored on ``app.state.billing_manager`` before
        startup I/O runs and shut down when the application stops.
        """

        @asynccontextmanager
        async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
            manager = BillingManager(
                config,
                document_store=document_store,
                sequence_store=sequence_store,
            )
            app.state.billing_manager = manager
            app.state.billing_config = config

            await manager.initialize()
            try:
                yield
            finally:
                await manager.shutdown()

        return _lifespan

    def _initialize_storage(self) -> None:
        if self._custom_store is not None:
            self.store = self._custom_store
        else:
            from tenant_billing.storage.sqlalchemy import SQLAlchemyDocumentStore

            self.store = SQLAlchemyDocumentStore(
                database_url=self.config.database_url,
                pool_size=self.config.database_pool_size,
                max_overflow=self.config.database_max_overflow,
                echo=self.config.database_echo,
            )

    def _initialize_sequences(self) -> None:
        if self._custom_sequences is not None:
            self.sequences = self._custom_sequences
            return

        backend = self.config.sequence_backend
        if backend == "memory":
            from tenant_billing.numbering.memory import InMemorySequenceStore

            self.sequences = InMemorySequenceStore()
        elif backend == "redis":
            from tenant_billing.numbering.redis import RedisSequenceStore

            if self.config.redis_url is None:
                raise ConfigurationError(
                    "redis_url", "the redis sequence backend needs BILLING_REDIS_URL"
                )
            self.sequences = RedisSequenceStore(self.config.redis_url)
        else:
            from tenant_billing.numbering.sqlalchemy import SQLAlchemySequenceStore
            from tenant_billing.storage.sqlalchemy import SQLAlchemyDocumentStore

            if not isinstance(self.store, SQLAlchemyDocumentStore):
                raise ConfigurationError(
                    "sequence_backend",
                    "the database sequence backend needs a SQLAlchemyDocumentStore; "
                    "pass a sequence_store or choose 'memory' or 'redis'",
                )
            self.sequences = SQLAlchemySequenceStore(
                self.store.session_factory,
                dialect=self.store.dialect,
                session_lock=self.store.session_lock,
            )

    async def health_check(self) -> dict[str, Any]:
        """Return health information for the document and sequence stores."""
        health: dict[str, Any] = {"status": "healthy", "components": {}}
        if not self._initialized:
            return {"status": "unhealthy", "components": {}, "error": "not initialised"}

        try:
            await self.store.number_exists("__health__", DocumentKind.INVOICE, "__health__")
            health["components"]["document_store"] = {"status": "healthy"}
        except Exception as exc:
            health["status"] = "unhealthy"
            health["components"]["document_store"] = {"status": "unhealthy", "error": str(exc)}

        try:
            await self.sequences.current("__health__", "__health__")
            health["components"]["sequence_store"] = {
                "status": "healthy",
                "backend": self.config.sequence_backend,
            }
        except Exception as exc:
            health["status"] = "unhealthy"
            health["components"]["sequence_store"] = {"status": "unhealthy", "error": str(exc)}
        return health


__all__ = ["BillingManager"]
