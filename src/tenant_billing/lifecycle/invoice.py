"""Invoice transition table."""
from __future__ import annotations

from datetime import date

from tenant_billing.core.types import UNPAID_STATUSES, Invoice, InvoiceStatus
from tenant_billing.lifecycle.machine import StateMachine, Transition


def _past_due(invoice: Invoice, today: date) -> bool:
    return invoice.is_past_due(today)


INVOICE_MACHINE = StateMachine(
    "invoice",
    [
        Transition(
            "send",
            frozenset({InvoiceStatus.DRAFT}),
            InvoiceStatus.SENT,
            timestamp_field="sent_at",
        ),
        Transition(
            "mark_viewed",
            frozenset({InvoiceStatus.SENT}),
            InvoiceStatus.VIEWED,
            timestamp_field="viewed_at",
        ),
        Transition(
            "mark_paid",
            UNPAID_STATUSES,
            InvoiceStatus.PAID,
            timestamp_field="paid_at",
        ),
        Transition(
            "cancel",
            UNPAID_STATUSES | {InvoiceStatus.DRAFT},
            InvoiceStatus.CANCELLED,
            timestamp_field="cancelled_at",
        ),
        Transition(
            "mark_overdue",
            frozenset({InvoiceStatus.SENT, InvoiceStatus.VIEWED}),
            InvoiceStatus.OVERDUE,
            guard=_past_due,
            guard_message="invoice is not past its due date",
        ),
    ],
)

# Deletion removes the row, so it is not a transition of the table above
DELETABLE_INVOICE_STATUSES: frozenset[InvoiceStatus] = frozenset(
    {InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED}
)

# Header and line items may only change before the invoice leaves draft
EDITABLE_INVOICE_STATUSES: frozenset[InvoiceStatus] = frozenset({InvoiceStatus.DRAFT})


__all__ = ["DELETABLE_INVOICE_STATUSES", "EDITABLE_INVOICE_STATUSES", "INVOICE_MACHINE"]
