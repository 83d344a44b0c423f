"""Recurring invoice templates and invoice generation."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any

from tenant_billing.core.exceptions import (
    BillingError,
    CannotGenerateError,
    ConcurrencyConflictError,
    PreconditionFailedError,
)
from tenant_billing.core.schemas import RecurringInvoiceDraft, RecurringInvoiceUpdate
from tenant_billing.core.types import (
    DocumentKind,
    Invoice,
    RecurringInvoice,
    RecurringStatus,
)
from tenant_billing.lifecycle.invoice import INVOICE_MACHINE
from tenant_billing.lifecycle.recurring import (
    RECURRING_MACHINE,
    advance_occurrence,
    build_invoice,
)
from tenant_billing.services.base import BaseDocumentService
from tenant_billing.utils.security import generate_payment_token

logger = logging.getLogger(__name__)


class RecurringInvoiceService(BaseDocumentService):
    """Manage recurring templates and generate their invoices.

    Generating an occurrence writes two rows: the new invoice and the
    advanced template.  Both go through one store transaction, and the
    template's version check makes two schedulers racing on the same
    occurrence produce exactly one invoice.

    Example:
        ```python
        template = await service.create(
            "acct-1",
            RecurringInvoiceDraft(
                client_id="client-7",
                name="Monthly retainer",
                start_date=date(2025, 1, 15),
                occurrences_limit=12,
                line_items=[LineItemInput(description="Retainer", quantity=1, unit_price=900)],
            ),
        )
        invoice, template = await service.generate_invoice("acct-1", template.id)
        ```
    """

    async def create(self, tenant_id: str, draft: RecurringInvoiceDraft) -> RecurringInvoice:
        """Validate and persist a new active template.

        Raises:
            ValidationError: Empty name, bad line items, negative payment terms,
                non-positive occurrences limit, or ``end_date`` before ``start_date``
        """
        now = self.now()
        errors: dict[str, list[str]] = {}
        line_items = self._line_items(draft.line_items, errors)
        data: dict[str, Any] = {
            "tenant_id": tenant_id,
            "client_id": draft.client_id,
            "project_id": draft.project_id,
            "name": draft.name.strip(),
            "frequency": draft.frequency,
            "start_date": draft.start_date,
            "end_date": draft.end_date,
            "next_occurrence_date": draft.next_occurrence_date or draft.start_date,
            "occurrences_limit": draft.occurrences_limit,
            "payment_terms": (
                draft.payment_terms
                if draft.payment_terms is not None
                else self.config.default_payment_terms_days
            ),
            "currency": self._currency(draft.currency, errors),
            "tax_rate": draft.tax_rate,
            "notes": draft.notes,
            "auto_send": draft.auto_send,
            "email_subject": draft.email_subject,
            "email_body": draft.email_body,
            "line_items": line_items,
            "created_at": now,
            "updated_at": now,
        }
        template = self._validated(RecurringInvoice, "recurring_invoice", data, errors)

        template = await self.store.create_recurring(template)
        logger.info(
            "Created recurring invoice %s (%s, %s) for tenant %s starting %s",
            template.id, template.name, template.frequency.value, tenant_id,
            template.next_occurrence_date,
        )
        return template

    async def update(
        self,
        tenant_id: str,
        template_id: str,
        changes: RecurringInvoiceUpdate,
    ) -> RecurringInvoice:
        """Edit a template that is still active or paused.

        Invoices already generated are not touched.
        """
        template = await self.store.get_recurring(tenant_id, template_id)
        if template.is_terminal():
            raise PreconditionFailedError(
                f"Cannot edit recurring invoice {template.id} in status "
                f"{template.status.value!r}",
                details={"recurring_invoice_id": template_id},
            )

        errors: dict[str, list[str]] = {}
        data: dict[str, Any] = template.model_dump(exclude={"line_items"})
        data.update(changes.model_dump(exclude_unset=True, exclude={"line_items"}))
        data["line_items"] = (
            self._line_items(changes.line_items, errors)
            if changes.line_items is not None
            else template.line_items
        )
        data["updated_at"] = self.now()
        edited = self._validated(RecurringInvoice, "recurring_invoice", data, errors)

        saved = await self.store.update_recurring(edited)
        logger.info("Updated recurring invoice %s", saved.id)
        return saved

    async def delete(self, tenant_id: str, template_id: str) -> None:
        """Delete a template; invoices it generated stay but lose the link."""
        await self.store.delete_recurring(tenant_id, template_id)
        logger.info("Deleted recurring invoice %s for tenant %s", template_id, tenant_id)

    ###############
    # Transitions #
    ###############

    async def _fire(
        self,
        tenant_id: str,
        template_id: str,
        event: str,
        already: RecurringStatus | None = None,
    ) -> RecurringInvoice:
        if already is not None:
            template = await self.store.get_recurring(tenant_id, template_id)
            if template.status == already:
                logger.debug("Recurring invoice %s already %s", template.id, already.value)
                return template
        return await self._transition(
            RECURRING_MACHINE,
            lambda: self.store.get_recurring(tenant_id, template_id),
            self.store.update_recurring,
            event,
        )

    async def pause(self, tenant_id: str, template_id: str) -> RecurringInvoice:
        """Stop generating until resumed. Pausing a paused template is a no-op."""
        return await self._fire(tenant_id, template_id, "pause", already=RecurringStatus.PAUSED)

    async def resume(self, tenant_id: str, template_id: str) -> RecurringInvoice:
        """Resume a paused template. Resuming an active template is a no-op."""
        return await self._fire(tenant_id, template_id, "resume", already=RecurringStatus.ACTIVE)

    async def cancel(self, tenant_id: str, template_id: str) -> RecurringInvoice:
        return await self._fire(tenant_id, template_id, "cancel")

    ###########
    # Lookups #
    ###########

    async def get(self, tenant_id: str, template_id: str) -> RecurringInvoice:
        return await self.store.get_recurring(tenant_id, template_id)

    async def list(
        self,
        tenant_id: str,
        *,
        status: RecurringStatus | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[RecurringInvoice]:
        return await self.store.list_recurring(tenant_id, status=status, skip=skip, limit=limit)

    async def list_due(
        self,
        today: date | None = None,
        tenant_id: str | None = None,
    ) -> list[RecurringInvoice]:
        """Active templates whose next occurrence is on or before *today*."""
        today = today or self.today()
        due = await self.store.list_due_recurring(today, tenant_id=tenant_id)
        return [template for template in due if template.can_generate(today)]

    ##############
    # Generation #
    ##############

    async def generate_invoice(
        self,
        tenant_id: str,
        template_id: str,
        today: date | None = None,
    ) -> tuple[Invoice, RecurringInvoice]:
        """Generate the invoice for the template's current occurrence.

        Returns:
            ``(invoice, advanced_template)``

        Raises:
            CannotGenerateError: Template not active, not due, past its end
                date, or at its occurrences limit
            ConcurrencyConflictError: Retries exhausted
        """
        today = today or self.today()
        attempts = self.config.number_max_retries
        for attempt in range(1, attempts + 1):
            template = await self.store.get_recurring(tenant_id, template_id)
            blocker = template.generation_blocker(today)
            if blocker is not None:
                logger.info("Recurring invoice %s cannot generate: %s", template.id, blocker)
                raise CannotGenerateError(template.id, blocker)

            number = await self.numbers.assign(
                tenant_id,
                DocumentKind.INVOICE,
                lambda n: self.store.number_exists(tenant_id, DocumentKind.INVOICE, n),
            )
            now = self.now()
            invoice = build_invoice(
                template,
                number=number,
                payment_token=generate_payment_token(self.config.payment_token_bytes),
                today=today,
                now=now,
            )
            if template.auto_send:
                invoice = INVOICE_MACHINE.fire(invoice, "send", now=now, today=today)
            advanced = advance_occurrence(template, today, now=now)

            try:
                async with self.store.transaction() as tx:
                    invoice = await tx.create_invoice(invoice)
                    advanced = await tx.update_recurring(advanced)
            except ConcurrencyConflictError as exc:
                # Either the number was taken or another scheduler advanced the
                # template; re-reading decides which.
                logger.warning(
                    "Conflict generating from recurring invoice %s (attempt %d/%d): %s",
                    template_id, attempt, attempts, exc.message,
                )
                continue

            logger.info(
                "Generated invoice %s (%s) from recurring invoice %s, next occurrence %s",
                invoice.id, invoice.number, advanced.id, advanced.next_occurrence_date,
            )
            return invoice, advanced

        raise ConcurrencyConflictError(
            "generate_invoice", f"gave up after {attempts} attempts on {template_id}"
        )

    async def generate_all_due(
        self,
        today: date | None = None,
        tenant_id: str | None = None,
    ) -> list[Invoice]:
        """Generate one invoice for every due template.

        A template that fails is logged and skipped; the others still run.
        """
        today = today or self.today()
        generated: list[Invoice] = []
        failed = 0
        for template in await self.list_due(today, tenant_id=tenant_id):
            try:
                invoice, _ = await self.generate_invoice(template.tenant_id, template.id, today)
            except BillingError as exc:
                failed += 1
                logger.error(
                    "Failed to generate invoice from recurring invoice %s: %s",
                    template.id, exc,
                )
                continue
            generated.append(invoice)
        logger.info("Generated %d recurring invoices (%d failed)", len(generated), failed)
        return generated


__all__ = ["RecurringInvoiceService"]
