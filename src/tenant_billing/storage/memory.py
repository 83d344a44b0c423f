"""In-memory document storage implementation for testing and development.

WARNING: This implementation stores data in memory only. All data is lost
when the process restarts. Use ONLY for testing and development.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from tenant_billing.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateNumberError,
    NotFoundError,
)
from tenant_billing.core.types import (
    DocumentKind,
    Estimate,
    EstimateStatus,
    Invoice,
    InvoiceStatus,
    RecurringInvoice,
    RecurringStatus,
)
from tenant_billing.storage.document_store import DocumentStore

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

logger = logging.getLogger(__name__)

DocT = TypeVar("DocT", Invoice, Estimate, RecurringInvoice)
HeaderT = TypeVar("HeaderT", Invoice, Estimate)


class InMemoryDocumentStore(DocumentStore):
    """In-memory document storage for testing and development.

    Documents are kept in dictionaries keyed by id.  Stored models are
    frozen, so handing them out needs no copying.

    Transactions keep an undo log: each write made through the handle
    returned by :meth:`transaction` records how to restore the previous
    value, and the log is replayed backwards if the block raises.

    DO NOT USE IN PRODUCTION - all data is lost on restart!

    Example:
        ```python
        store = InMemoryDocumentStore()
        await store.create_invoice(invoice)
        found = await store.find_invoice_by_payment_token(invoice.payment_token)

        # Cleanup (for testing)
        store.clear()
        ```

    Attributes:
        _invoices: Invoice id -> Invoice
        _estimates: Estimate id -> Estimate
        _recurring: Template id -> RecurringInvoice
    """

    def __init__(self) -> None:
        self._invoices: dict[str, Invoice] = {}
        self._estimates: dict[str, Estimate] = {}
        self._recurring: dict[str, RecurringInvoice] = {}
        self._undo: list[Callable[[], None]] | None = None
        logger.info("Initialized in-memory document store")

    ################
    # Transactions #
    ################

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DocumentStore]:
        if self._undo is not None:
            yield self
            return

        handle = copy.copy(self)
        handle._undo = []
        try:
            yield handle
        except BaseException:
            for undo in reversed(handle._undo):
                undo()
            logger.info("Rolled back in-memory transaction (%d writes)", len(handle._undo))
            raise

    def _remember(self, table: dict[str, Any], key: str) -> None:
        if self._undo is None:
            return
        if key in table:
            previous = table[key]
            self._undo.append(lambda: table.__setitem__(key, previous))
        else:
            self._undo.append(lambda: table.pop(key, None))

    ###########
    # Helpers #
    ###########

    def _find(self, table: dict[str, DocT], tenant_id: str, doc_id: str) -> DocT | None:
        doc = table.get(doc_id)
        if doc is None or doc.tenant_id != tenant_id:
            return None
        return doc

    def _create(self, table: dict[str, DocT], doc: DocT) -> DocT:
        if doc.id in table:
            raise ValueError(f"Document id={doc.id!r} already exists.")
        self._remember(table, doc.id)
        table[doc.id] = doc
        return doc

    def _update(self, table: dict[str, DocT], doc: DocT, entity: str) -> DocT:
        stored = self._find(table, doc.tenant_id, doc.id)
        if stored is None:
            raise NotFoundError(entity, doc.id)
        if stored.version != doc.version:
            raise ConcurrencyConflictError(
                f"update_{entity.lower()}",
                f"{entity} {doc.id!r} changed concurrently "
                f"(expected version {doc.version}, found {stored.version})",
            )
        saved = doc.model_copy(update={"version": doc.version + 1})
        self._remember(table, saved.id)
        table[saved.id] = saved
        return saved

    def _delete(self, table: dict[str, Any], tenant_id: str, doc_id: str, entity: str) -> None:
        if self._find(table, tenant_id, doc_id) is None:
            raise NotFoundError(entity, doc_id)
        self._remember(table, doc_id)
        del table[doc_id]

    @staticmethod
    def _page(docs: list[HeaderT], skip: int, limit: int) -> list[HeaderT]:
        docs.sort(key=lambda d: (d.issue_date, d.created_at), reverse=True)
        return docs[skip : skip + limit]

    async def number_exists(self, tenant_id: str, kind: DocumentKind, number: str) -> bool:
        if kind == DocumentKind.INVOICE:
            return await self.find_invoice_by_number(tenant_id, number) is not None
        if kind == DocumentKind.ESTIMATE:
            return await self.find_estimate_by_number(tenant_id, number) is not None
        # Projects are stored outside this package
        return False

    ############
    # Invoices #
    ############

    async def find_invoice(self, tenant_id: str, invoice_id: str) -> Invoice | None:
        logger.debug("Looking up invoice %s for tenant %s", invoice_id, tenant_id)
        return self._find(self._invoices, tenant_id, invoice_id)

    async def find_invoice_by_number(self, tenant_id: str, number: str) -> Invoice | None:
        for invoice in self._invoices.values():
            if invoice.tenant_id == tenant_id and invoice.number == number:
                return invoice
        return None

    async def find_invoice_by_payment_token(self, token: str) -> Invoice | None:
        for invoice in self._invoices.values():
            if invoice.payment_token == token:
                return invoice
        return None

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
        invoices = [
            inv
            for inv in self._invoices.values()
            if inv.tenant_id == tenant_id
            and (status is None or inv.status == status)
            and (client_id is None or inv.client_id == client_id)
            and (recurring_invoice_id is None or inv.recurring_invoice_id == recurring_invoice_id)
        ]
        return self._page(invoices, skip, limit)

    async def list_invoices_in_status(
        self,
        statuses: Iterable[InvoiceStatus],
        *,
        tenant_id: str | None = None,
        due_before: date | None = None,
    ) -> list[Invoice]:
        wanted = set(statuses)
        return [
            inv
            for inv in self._invoices.values()
            if inv.status in wanted
            and (tenant_id is None or inv.tenant_id == tenant_id)
            and (due_before is None or inv.due_date < due_before)
        ]

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        if await self.find_invoice_by_number(invoice.tenant_id, invoice.number) is not None:
            raise DuplicateNumberError(invoice.tenant_id, invoice.number)
        if await self.find_invoice_by_payment_token(invoice.payment_token) is not None:
            raise ConcurrencyConflictError("create_invoice", "payment token collision")
        self._create(self._invoices, invoice)
        logger.info("Stored invoice %s (%s)", invoice.id, invoice.number)
        return invoice

    async def update_invoice(self, invoice: Invoice) -> Invoice:
        return self._update(self._invoices, invoice, "Invoice")

    async def delete_invoice(self, tenant_id: str, invoice_id: str) -> None:
        self._delete(self._invoices, tenant_id, invoice_id, "Invoice")
        logger.info("Deleted invoice %s", invoice_id)

    #############
    # Estimates #
    #############

    async def find_estimate(self, tenant_id: str, estimate_id: str) -> Estimate | None:
        logger.debug("Looking up estimate %s for tenant %s", estimate_id, tenant_id)
        return self._find(self._estimates, tenant_id, estimate_id)

    async def find_estimate_by_number(self, tenant_id: str, number: str) -> Estimate | None:
        for estimate in self._estimates.values():
            if estimate.tenant_id == tenant_id and estimate.number == number:
                return estimate
        return None

    async def list_estimates(
        self,
        tenant_id: str,
        *,
        status: EstimateStatus | None = None,
        client_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Estimate]:
        estimates = [
            est
            for est in self._estimates.values()
            if est.tenant_id == tenant_id
            and (status is None or est.status == status)
            and (client_id is None or est.client_id == client_id)
        ]
        return self._page(estimates, skip, limit)

    async def list_estimates_in_status(
        self,
        statuses: Iterable[EstimateStatus],
        *,
        tenant_id: str | None = None,
        valid_before: date | None = None,
    ) -> list[Estimate]:
        wanted = set(statuses)
        return [
            est
            for est in self._estimates.values()
            if est.status in wanted
            and (tenant_id is None or est.tenant_id == tenant_id)
            and (valid_before is None or est.valid_until < valid_before)
        ]

    async def create_estimate(self, estimate: Estimate) -> Estimate:
        if await self.find_estimate_by_number(estimate.tenant_id, estimate.number) is not None:
            raise DuplicateNumberError(estimate.tenant_id, estimate.number)
        self._create(self._estimates, estimate)
        logger.info("Stored estimate %s (%s)", estimate.id, estimate.number)
        return estimate

    async def update_estimate(self, estimate: Estimate) -> Estimate:
        return self._update(self._estimates, estimate, "Estimate")

    async def delete_estimate(self, tenant_id: str, estimate_id: str) -> None:
        self._delete(self._estimates, tenant_id, estimate_id, "Estimate")
        logger.info("Deleted estimate %s", estimate_id)

    ######################
    # Recurring invoices #
    ######################

    async def find_recurring(self, tenant_id: str, template_id: str) -> RecurringInvoice | None:
        return self._find(self._recurring, tenant_id, template_id)

    async def list_recurring(
        self,
        tenant_id: str,
        *,
        status: RecurringStatus | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[RecurringInvoice]:
        templates = sorted(
            (
                t
                for t in self._recurring.values()
                if t.tenant_id == tenant_id and (status is None or t.status == status)
            ),
            key=lambda t: t.created_at,
        )
        return templates[skip : skip + limit]

    async def list_due_recurring(
        self,
        today: date,
        *,
        tenant_id: str | None = None,
    ) -> list[RecurringInvoice]:
        due = [
            t
            for t in self._recurring.values()
            if t.status == RecurringStatus.ACTIVE
            and t.next_occurrence_date <= today
            and (tenant_id is None or t.tenant_id == tenant_id)
        ]
        return sorted(due, key=lambda t: t.next_occurrence_date)

    async def create_recurring(self, template: RecurringInvoice) -> RecurringInvoice:
        self._create(self._recurring, template)
        logger.info("Stored recurring invoice %s", template.id)
        return template

    async def update_recurring(self, template: RecurringInvoice) -> RecurringInvoice:
        return self._update(self._recurring, template, "RecurringInvoice")

    async def delete_recurring(self, tenant_id: str, template_id: str) -> None:
        self._delete(self._recurring, tenant_id, template_id, "RecurringInvoice")
        for invoice in list(self._invoices.values()):
            if invoice.recurring_invoice_id == template_id:
                self._remember(self._invoices, invoice.id)
                self._invoices[invoice.id] = invoice.model_copy(
                    update={"recurring_invoice_id": None}
                )
        logger.info("Deleted recurring invoice %s", template_id)

    ###########
    # Testing #
    ###########

    def clear(self) -> None:
        """Remove every document (for testing)."""
        self._invoices.clear()
        self._estimates.clear()
        self._recurring.clear()
        logger.info("Cleared all documents from in-memory store")


__all__ = ["InMemoryDocumentStore"]
