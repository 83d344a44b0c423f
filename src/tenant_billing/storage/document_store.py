"""Abstract document storage interface.

This module defines the repository interface for invoices, estimates and
recurring invoice templates with support for multiple backend
implementations (SQLAlchemy, In-Memory).

Every lookup is scoped by ``tenant_id`` except the public payment-token
lookup, whose token is unguessable by construction.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from tenant_billing.core.exceptions import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from contextlib import AbstractAsyncContextManager
    from datetime import date

    from tenant_billing.core.types import (
        DocumentKind,
        Estimate,
        EstimateStatus,
        Invoice,
        InvoiceStatus,
        RecurringInvoice,
        RecurringStatus,
    )

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Abstract base class for billing document storage.

    Writes are optimistic: ``update_*`` receives the document as it was read
    (``version`` unchanged), stores it with ``version + 1`` and raises
    :class:`~tenant_billing.core.exceptions.ConcurrencyConflictError` when
    somebody else updated it in between.

    Implementations:
    - SQLAlchemyDocumentStore: Production persistent storage
    - InMemoryDocumentStore: Testing and development

    Example:
        ```python
        store = SQLAlchemyDocumentStore(database_url="postgresql+asyncpg://...")
        await store.initialize()

        invoice = await store.create_invoice(invoice)
        sent = invoice.model_copy(update={"status": InvoiceStatus.SENT})
        sent = await store.update_invoice(sent)  # version 1 -> 2

        # Two writes that commit together or not at all
        async with store.transaction() as tx:
            await tx.create_invoice(new_invoice)
            await tx.update_estimate(converted_estimate)
        ```
    """

    async def initialize(self) -> None:  # noqa: B027
        """Prepare the backend (create tables, open pools). Default: no-op."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. Default: no-op."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[DocumentStore]:
        """Return an async context manager yielding a transactional store handle.

        Writes made through the handle are committed when the block exits
        normally and discarded when it raises.  Nested calls on a handle
        join the outer transaction.
        """

    @abstractmethod
    async def number_exists(self, tenant_id: str, kind: DocumentKind, number: str) -> bool:
        """Return True if *number* is taken by a document of *kind* in the tenant."""

    ############
    # Invoices #
    ############

    @abstractmethod
    async def find_invoice(self, tenant_id: str, invoice_id: str) -> Invoice | None:
        """Return the invoice or ``None``."""

    @abstractmethod
    async def find_invoice_by_number(self, tenant_id: str, number: str) -> Invoice | None:
        """Return the invoice carrying *number* in the tenant, or ``None``."""

    @abstractmethod
    async def find_invoice_by_payment_token(self, token: str) -> Invoice | None:
        """Public lookup by payment token, across tenants."""

    @abstractmethod
    async def list_invoices(
        self,
        tenant_id: str,
        *,
        status: InvoiceStatus | None = None,
        client_id: str | None = None,
        recurring_invoice_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Invoice]:
        """List a tenant's invoices, newest issue date first."""

    @abstractmethod
    async def list_invoices_in_status(
        self,
        statuses: Iterable[InvoiceStatus],
        *,
        tenant_id: str | None = None,
        due_before: date | None = None,
    ) -> list[Invoice]:
        """List invoices in any of *statuses*, optionally with ``due_date < due_before``.

        Used by system sweeps, so ``tenant_id=None`` spans all tenants.
        """

    @abstractmethod
    async def create_invoice(self, invoice: Invoice) -> Invoice:
        """Persist a new invoice.

        Raises:
            DuplicateNumberError: If the number is taken in the tenant
        """

    @abstractmethod
    async def update_invoice(self, invoice: Invoice) -> Invoice:
        """Compare-and-set update on ``version``; returns the stored copy.

        Raises:
            NotFoundError: If the invoice does not exist
            ConcurrencyConflictError: If the stored version differs
        """

    @abstractmethod
    async def delete_invoice(self, tenant_id: str, invoice_id: str) -> None:
        """Remove an invoice and its line items.

        Raises:
            NotFoundError: If the invoice does not exist
        """

    async def get_invoice(self, tenant_id: str, invoice_id: str) -> Invoice:
        """Like :meth:`find_invoice` but raises :class:`NotFoundError`."""
        invoice = await self.find_invoice(tenant_id, invoice_id)
        if invoice is None:
            logger.warning("Invoice not found: tenant=%s id=%s", tenant_id, invoice_id)
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def get_invoice_by_number(self, tenant_id: str, number: str) -> Invoice:
        invoice = await self.find_invoice_by_number(tenant_id, number)
        if invoice is None:
            logger.warning("Invoice not found: tenant=%s number=%s", tenant_id, number)
            raise NotFoundError("Invoice", number)
        return invoice

    #############
    # Estimates #
    #############

    @abstractmethod
    async def find_estimate(self, tenant_id: str, estimate_id: str) -> Estimate | None:
        """Return the estimate or ``None``."""

    @abstractmethod
    async def find_estimate_by_number(self, tenant_id: str, number: str) -> Estimate | None:
        """Return the estimate carrying *number* in the tenant, or ``None``."""

    @abstractmethod
    async def list_estimates(
        self,
        tenant_id: str,
        *,
        status: EstimateStatus | None = None,
        client_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Estimate]:
        """List a tenant's estimates, newest issue date first."""

    @abstractmethod
    async def list_estimates_in_status(
        self,
        statuses: Iterable[EstimateStatus],
        *,
        tenant_id: str | None = None,
        valid_before: date | None = None,
    ) -> list[Estimate]:
        """List estimates in any of *statuses*, optionally with ``valid_until < valid_before``."""

    @abstractmethod
    async def create_estimate(self, estimate: Estimate) -> Estimate:
        """Persist a new estimate.

        Raises:
            DuplicateNumberError: If the number is taken in the tenant
        """

    @abstractmethod
    async def update_estimate(self, estimate: Estimate) -> Estimate:
        """Compare-and-set update on ``version``; returns the stored copy."""

    @abstractmethod
    async def delete_estimate(self, tenant_id: str, estimate_id: str) -> None:
        """Remove an estimate and its line items."""

    async def get_estimate(self, tenant_id: str, estimate_id: str) -> Estimate:
        estimate = await self.find_estimate(tenant_id, estimate_id)
        if estimate is None:
            logger.warning("Estimate not found: tenant=%s id=%s", tenant_id, estimate_id)
            raise NotFoundError("Estimate", estimate_id)
        return estimate

    async def get_estimate_by_number(self, tenant_id: str, number: str) -> Estimate:
        estimate = await self.find_estimate_by_number(tenant_id, number)
        if estimate is None:
            logger.warning("Estimate not found: tenant=%s number=%s", tenant_id, number)
            raise NotFoundError("Estimate", number)
        return estimate

    ######################
    # Recurring invoices #
    ######################

    @abstractmethod
    async def find_recurring(self, tenant_id: str, template_id: str) -> RecurringInvoice | None:
        """Return the recurring invoice template or ``None``."""

    @abstractmethod
    async def list_recurring(
        self,
        tenant_id: str,
        *,
        status: RecurringStatus | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[RecurringInvoice]:
        """List a tenant's recurring invoice templates."""

    @abstractmethod
    async def list_due_recurring(
        self,
        today: date,
        *,
        tenant_id: str | None = None,
    ) -> list[RecurringInvoice]:
        """Active templates whose ``next_occurrence_date`` is on or before *today*."""

    @abstractmethod
    async def create_recurring(self, template: RecurringInvoice) -> RecurringInvoice:
        """Persist a new recurring invoice template."""

    @abstractmethod
    async def update_recurring(self, template: RecurringInvoice) -> RecurringInvoice:
        """Compare-and-set update on ``version``; returns the stored copy."""

    @abstractmethod
    async def delete_recurring(self, tenant_id: str, template_id: str) -> None:
        """Remove a template; invoices generated from it keep existing, unlinked."""

    async def get_recurring(self, tenant_id: str, template_id: str) -> RecurringInvoice:
        template = await self.find_recurring(tenant_id, template_id)
        if template is None:
            logger.warning("Recurring invoice not found: tenant=%s id=%s", tenant_id, template_id)
            raise NotFoundError("RecurringInvoice", template_id)
        return template


__all__ = ["DocumentStore"]
