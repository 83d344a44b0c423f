"""Invoice use cases: create, edit, transition, look up, sweep."""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from tenant_billing.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
)
from tenant_billing.core.schemas import InvoiceDraft, InvoiceUpdate
from tenant_billing.core.types import DocumentKind, Invoice, InvoiceStatus
from tenant_billing.lifecycle.invoice import (
    DELETABLE_INVOICE_STATUSES,
    EDITABLE_INVOICE_STATUSES,
    INVOICE_MACHINE,
)
from tenant_billing.services.base import UNASSIGNED_NUMBER, BaseDocumentService
from tenant_billing.utils.security import generate_payment_token, mask_payment_details

logger = logging.getLogger(__name__)


class InvoiceService(BaseDocumentService):
    """Invoice operations for every tenant.

    All methods take the ``tenant_id`` explicitly; resolving the tenant of a
    request is the caller's job.

    Example:
        ```python
        service = InvoiceService(store, NumberGenerator(sequences, config), config)

        invoice = await service.create(
            "acct-1",
            InvoiceDraft(
                client_id="client-7",
                tax_rate=Decimal("10"),
                discount_amount=Decimal("5"),
                line_items=[
                    LineItemInput(description="Design", quantity=2, unit_price=100),
                    LineItemInput(description="Hosting", quantity=1, unit_price=50),
                ],
            ),
        )
        invoice.number        # "INV-10001"
        invoice.total_amount  # Decimal("269.50")

        invoice = await service.send("acct-1", invoice.id)
        invoice = await service.mark_paid("acct-1", invoice.id, payment_method="card")
        ```
    """

    ##########
    # Create #
    ##########

    async def create(self, tenant_id: str, draft: InvoiceDraft) -> Invoice:
        """Validate, number and persist a new draft invoice.

        Raises:
            ValidationError: Malformed header or line items, or a taken number
            ConcurrencyConflictError: No free number after the configured retries
        """
        now = self.now()
        issue_date = draft.issue_date or now.date()
        errors: dict[str, list[str]] = {}
        line_items = self._line_items(draft.line_items, errors)
        candidate = self._validated(
            Invoice,
            "invoice",
            {
                "tenant_id": tenant_id,
                "client_id": draft.client_id,
                "project_id": draft.project_id,
                "recurring_invoice_id": draft.recurring_invoice_id,
                "number": draft.number or UNASSIGNED_NUMBER,
                "issue_date": issue_date,
                "due_date": draft.due_date
                or issue_date + timedelta(days=self.config.default_payment_terms_days),
                "currency": self._currency(draft.currency, errors),
                "line_items": line_items,
                "tax_rate": draft.tax_rate,
                "discount_amount": draft.discount_amount,
                "notes": draft.notes,
                "terms": draft.terms,
                "payment_token": generate_payment_token(self.config.payment_token_bytes),
                "created_at": now,
                "updated_at": now,
            },
            errors,
        ).recalculate()

        invoice = await self._create_numbered(
            tenant_id, DocumentKind.INVOICE, candidate, draft.number, self.store.create_invoice
        )
        logger.info(
            "Created invoice %s (%s) for tenant %s total=%s",
            invoice.id, invoice.number, tenant_id, invoice.total_amount,
        )
        return invoice

    async def update(self, tenant_id: str, invoice_id: str, changes: InvoiceUpdate) -> Invoice:
        """Edit a draft invoice; totals are recomputed, number and token stay.

        Raises:
            PreconditionFailedError: If the invoice already left draft
            ValidationError: If the edited invoice is malformed
        """
        invoice = await self.store.get_invoice(tenant_id, invoice_id)
        if invoice.status not in EDITABLE_INVOICE_STATUSES:
            raise PreconditionFailedError(
                f"Cannot edit invoice {invoice.number} in status {invoice.status.value!r}",
                details={"invoice_id": invoice_id},
            )

        errors: dict[str, list[str]] = {}
        data: dict[str, Any] = invoice.model_dump(exclude={"line_items"})
        data.update(changes.model_dump(exclude_unset=True, exclude={"line_items", "currency"}))
        if changes.currency is not None:
            data["currency"] = self._currency(changes.currency, errors)
        data["line_items"] = (
            self._line_items(changes.line_items, errors)
            if changes.line_items is not None
            else invoice.line_items
        )
        data["updated_at"] = self.now()
        edited = self._validated(Invoice, "invoice", data, errors).recalculate()

        saved = await self.store.update_invoice(edited)
        logger.info("Updated invoice %s (%s)", saved.id, saved.number)
        return saved

    async def delete(self, tenant_id: str, invoice_id: str) -> None:
        """Delete a draft or cancelled invoice.

        Raises:
            PreconditionFailedError: For any other status
        """
        invoice = await self.store.get_invoice(tenant_id, invoice_id)
        if invoice.status not in DELETABLE_INVOICE_STATUSES:
            logger.warning("Refused delete of invoice %s in status %s", invoice.id, invoice.status)
            raise PreconditionFailedError(
                f"Cannot delete invoice {invoice.number} in status {invoice.status.value!r}; "
                "only draft or cancelled invoices can be deleted",
                details={"invoice_id": invoice_id, "status": invoice.status.value},
            )
        await self.store.delete_invoice(tenant_id, invoice_id)

    ###############
    # Transitions #
    ###############

    async def _fire(
        self, tenant_id: str, invoice_id: str, event: str, **updates: Any
    ) -> Invoice:
        return await self._transition(
            INVOICE_MACHINE,
            lambda: self.store.get_invoice(tenant_id, invoice_id),
            self.store.update_invoice,
            event,
            **updates,
        )

    async def send(self, tenant_id: str, invoice_id: str) -> Invoice:
        return await self._fire(tenant_id, invoice_id, "send")

    async def mark_viewed(self, tenant_id: str, invoice_id: str) -> Invoice:
        return await self._fire(tenant_id, invoice_id, "mark_viewed")

    async def mark_paid(
        self,
        tenant_id: str,
        invoice_id: str,
        *,
        payment_date: datetime | None = None,
        payment_method: str | None = None,
        payment_reference: str | None = None,
        payment_notes: str | None = None,
    ) -> Invoice:
        """Record full payment of a sent, viewed or overdue invoice.

        Args:
            payment_date: When the money arrived (defaults to now)
            payment_method: e.g. ``"bank_transfer"``, ``"card"``, ``"stripe"``
            payment_reference: External reference such as a payment intent id
            payment_notes: Free text
        """
        updates: dict[str, Any] = {
            "payment_method": payment_method,
            "payment_reference": payment_reference,
            "payment_notes": payment_notes,
        }
        if payment_date is not None:
            updates["paid_at"] = payment_date
        return await self._fire(tenant_id, invoice_id, "mark_paid", **updates)

    async def cancel(self, tenant_id: str, invoice_id: str) -> Invoice:
        return await self._fire(tenant_id, invoice_id, "cancel")

    async def mark_overdue(
        self, tenant_id: str, invoice_id: str, today: date | None = None
    ) -> Invoice:
        return await self._transition(
            INVOICE_MACHINE,
            lambda: self.store.get_invoice(tenant_id, invoice_id),
            self.store.update_invoice,
            "mark_overdue",
            today=today,
        )

    async def mark_overdue_invoices(
        self,
        tenant_id: str | None = None,
        today: date | None = None,
    ) -> list[Invoice]:
        """System sweep: move every sent/viewed invoice past its due date to overdue.

        Invoices that changed status since they were listed (paid meanwhile,
        for instance) are skipped.
        """
        today = today or self.today()
        candidates = await self.store.list_invoices_in_status(
            (InvoiceStatus.SENT, InvoiceStatus.VIEWED), tenant_id=tenant_id, due_before=today
        )
        marked: list[Invoice] = []
        for invoice in candidates:
            try:
                marked.append(await self.mark_overdue(invoice.tenant_id, invoice.id, today=today))
            except InvalidTransitionError as exc:
                logger.debug("Skipped invoice %s: %s", invoice.id, exc)
        logger.info("Marked %d of %d invoices overdue", len(marked), len(candidates))
        return marked

    async def record_external_payment(
        self,
        tenant_id: str,
        invoice_id: str,
        reference: str,
        method: str = "stripe",
    ) -> Invoice:
        """Mark an invoice paid from a payment provider callback.

        Providers deliver callbacks more than once; an invoice that is
        already paid is returned unchanged.
        """
        logger.info(
            "External payment for invoice %s: %s",
            invoice_id,
            mask_payment_details({"payment_method": method, "payment_reference": reference}),
        )
        invoice = await self.store.get_invoice(tenant_id, invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            logger.warning(
                "Invoice %s already paid, ignoring duplicate %s payment", invoice.id, method
            )
            return invoice
        return await self.mark_paid(
            tenant_id, invoice_id, payment_method=method, payment_reference=reference
        )

    ###########
    # Lookups #
    ###########

    async def get(self, tenant_id: str, invoice_id: str) -> Invoice:
        return await self.store.get_invoice(tenant_id, invoice_id)

    async def get_by_number(self, tenant_id: str, number: str) -> Invoice:
        return await self.store.get_invoice_by_number(tenant_id, number)

    async def list(
        self,
        tenant_id: str,
        *,
        status: InvoiceStatus | None = None,
        client_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Invoice]:
        return await self.store.list_invoices(
            tenant_id, status=status, client_id=client_id, skip=skip, limit=limit
        )

    async def find_by_payment_token(self, token: str) -> Invoice | None:
        """Public payment-link lookup. Returns ``None`` for unknown tokens."""
        if not token:
            return None
        return await self.store.find_invoice_by_payment_token(token)

    async def get_by_payment_token(self, token: str) -> Invoice:
        """Like :meth:`find_by_payment_token` but raises :class:`NotFoundError`."""
        invoice = await self.find_by_payment_token(token)
        if invoice is None:
            logger.warning("Unknown payment token")
            raise NotFoundError("Invoice")
        return invoice


__all__ = ["InvoiceService"]
