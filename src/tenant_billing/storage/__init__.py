"""Storage implementations for billing documents.

This module provides storage backends for invoices, estimates and
recurring invoice templates:
- SQLAlchemy: Production persistent storage (PostgreSQL, MySQL, SQLite)
- In-Memory: Testing and development

Example:
    ```python
    # Production: PostgreSQL
    from tenant_billing.storage import SQLAlchemyDocumentStore

    store = SQLAlchemyDocumentStore(
        database_url="postgresql+asyncpg://localhost/billing"
    )
    await store.initialize()

    # Development: In-Memory
    from tenant_billing.storage import InMemoryDocumentStore

    store = InMemoryDocumentStore()
    invoice = await store.create_invoice(Invoice(...))
    ```
"""

from tenant_billing.storage.document_store import DocumentStore
from tenant_billing.storage.memory import InMemoryDocumentStore
from tenant_billing.storage.models import (
    Base,
    EstimateModel,
    InvoiceModel,
    RecurringInvoiceModel,
    SequenceModel,
)
from tenant_billing.storage.sqlalchemy import SQLAlchemyDocumentStore

__all__ = [
    "Base",
    "DocumentStore",
    "EstimateModel",
    "InMemoryDocumentStore",
    "InvoiceModel",
    "RecurringInvoiceModel",
    "SQLAlchemyDocumentStore",
    "SequenceModel",
]
