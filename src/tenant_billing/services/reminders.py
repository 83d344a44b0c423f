"""Payment reminder bookkeeping.

Sending the reminder (email, SMS, ...) belongs to the caller.  This module
decides whether a reminder may go out and records that one did.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from tenant_billing.core.config import BillingConfig
from tenant_billing.core.exceptions import ConcurrencyConflictError, PreconditionFailedError
from tenant_billing.core.types import UNPAID_STATUSES, Invoice, InvoiceStatus, utc_now
from tenant_billing.services.base import Clock
from tenant_billing.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderDecision:
    allowed: bool
    reason: str | None = None


class PaymentReminderService:
    """Rate-limit and record payment reminders for unpaid invoices.

    Args:
        store: Document storage backend
        config: Cooldown, maximum count and "due soon" window
        clock: Returns the current aware UTC time
    """

    def __init__(
        self,
        store: DocumentStore,
        config: BillingConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.config = config or BillingConfig()
        self.clock = clock

    def check(self, invoice: Invoice, force: bool = False) -> ReminderDecision:
        """Decide whether a reminder may be sent for *invoice*.

        ``force`` skips the cooldown and the maximum count, never the status check.
        """
        if invoice.status not in UNPAID_STATUSES:
            return ReminderDecision(False, f"invoice is {invoice.status.value}")
        if force:
            return ReminderDecision(True)

        if invoice.reminder_count >= self.config.reminder_max_count:
            return ReminderDecision(
                False, f"maximum of {self.config.reminder_max_count} reminders reached"
            )
        if invoice.reminder_sent_at is not None:
            next_allowed = invoice.reminder_sent_at + timedelta(
                days=self.config.reminder_cooldown_days
            )
            if self.clock() < next_allowed:
                return ReminderDecision(
                    False,
                    f"last reminder sent less than "
                    f"{self.config.reminder_cooldown_days} days ago",
                )
        return ReminderDecision(True)

    async def record_reminder(
        self,
        tenant_id: str,
        invoice_id: str,
        force: bool = False,
    ) -> Invoice:
        """Stamp ``reminder_sent_at`` and bump ``reminder_count``.

        Raises:
            PreconditionFailedError: If :meth:`check` refuses the reminder
            ConcurrencyConflictError: If the invoice changed concurrently
        """
        invoice = await self.store.get_invoice(tenant_id, invoice_id)
        decision = self.check(invoice, force=force)
        if not decision.allowed:
            logger.info("Reminder for invoice %s refused: %s", invoice.id, decision.reason)
            raise PreconditionFailedError(
                f"Cannot send reminder for invoice {invoice.number}: {decision.reason}",
                details={"invoice_id": invoice_id, "reason": decision.reason},
            )

        now = self.clock()
        try:
            saved = await self.store.update_invoice(
                invoice.model_copy(
                    update={
                        "reminder_sent_at": now,
                        "reminder_count": invoice.reminder_count + 1,
                        "updated_at": now,
                    }
                )
            )
        except ConcurrencyConflictError:
            logger.warning("Invoice %s changed while recording a reminder", invoice.id)
            raise
        logger.info("Recorded reminder %d for invoice %s", saved.reminder_count, saved.number)
        return saved

    async def due_soon(
        self,
        today: date | None = None,
        tenant_id: str | None = None,
    ) -> list[Invoice]:
        """Sent or viewed invoices falling due within the configured window."""
        today = today or self.clock().date()
        horizon = today + timedelta(days=self.config.reminder_due_soon_days)
        candidates = await self.store.list_invoices_in_status(
            (InvoiceStatus.SENT, InvoiceStatus.VIEWED),
            tenant_id=tenant_id,
            due_before=horizon + timedelta(days=1),
        )
        return [
            invoice
            for invoice in candidates
            if today <= invoice.due_date and self.check(invoice).allowed
        ]

    async def overdue(
        self,
        today: date | None = None,
        tenant_id: str | None = None,
    ) -> list[Invoice]:
        """Unpaid invoices past their due date that may be reminded now."""
        today = today or self.clock().date()
        candidates = await self.store.list_invoices_in_status(
            UNPAID_STATUSES, tenant_id=tenant_id, due_before=today
        )
        return [invoice for invoice in candidates if self.check(invoice).allowed]


__all__ = ["PaymentReminderService", "ReminderDecision"]
