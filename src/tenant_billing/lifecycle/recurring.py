"""Recurring invoice scheduling: cadence arithmetic and template transitions.

Everything here is pure.  Persisting the results, and doing so atomically
with the generated invoice, is the job of
:class:`~tenant_billing.services.recurring.RecurringInvoiceService`.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from tenant_billing.core.exceptions import CannotGenerateError
from tenant_billing.core.types import (
    Frequency,
    Invoice,
    RecurringInvoice,
    RecurringStatus,
    new_id,
    utc_now,
)
from tenant_billing.lifecycle.estimate import copy_line_items
from tenant_billing.lifecycle.machine import StateMachine, Transition

logger = logging.getLogger(__name__)

_STEPS: dict[Frequency, timedelta | relativedelta] = {
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.BIWEEKLY: timedelta(days=14),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.ANNUALLY: relativedelta(years=1),
}


RECURRING_MACHINE = StateMachine(
    "recurring invoice",
    [
        Transition("pause", frozenset({RecurringStatus.ACTIVE}), RecurringStatus.PAUSED),
        Transition("resume", frozenset({RecurringStatus.PAUSED}), RecurringStatus.ACTIVE),
        Transition(
            "cancel",
            frozenset({RecurringStatus.ACTIVE, RecurringStatus.PAUSED}),
            RecurringStatus.CANCELLED,
        ),
        Transition("complete", frozenset({RecurringStatus.ACTIVE}), RecurringStatus.COMPLETED),
    ],
)


def next_occurrence_after(day: date, frequency: Frequency) -> date:
    """Step *day* forward by one period of *frequency*.

    Months and years are calendar steps, clamped to the last day of a
    shorter month:

    >>> next_occurrence_after(date(2025, 1, 15), Frequency.MONTHLY)
    datetime.date(2025, 2, 15)
    >>> next_occurrence_after(date(2025, 1, 31), Frequency.MONTHLY)
    datetime.date(2025, 2, 28)
    >>> next_occurrence_after(date(2024, 2, 29), Frequency.ANNUALLY)
    datetime.date(2025, 2, 28)
    """
    return day + _STEPS[frequency]


def can_generate(template: RecurringInvoice, today: date) -> bool:
    return template.can_generate(today)


def remaining_occurrences(template: RecurringInvoice) -> int | None:
    return template.remaining_occurrences()


def advance_occurrence(
    template: RecurringInvoice,
    today: date,
    now: datetime | None = None,
) -> RecurringInvoice:
    """Record one generated occurrence and move the schedule forward.

    The template completes when the occurrence limit is reached or the new
    ``next_occurrence_date`` falls after ``end_date``.  No invoice is created.
    """
    now = now or utc_now()
    advanced = template.model_copy(
        update={
            "next_occurrence_date": next_occurrence_after(
                template.next_occurrence_date, template.frequency
            ),
            "occurrences_count": template.occurrences_count + 1,
            "last_generated_on": today,
            "updated_at": now,
        }
    )
    limit_reached = (
        advanced.occurrences_limit is not None
        and advanced.occurrences_count >= advanced.occurrences_limit
    )
    past_end = advanced.end_date is not None and advanced.next_occurrence_date > advanced.end_date
    if (limit_reached or past_end) and advanced.status == RecurringStatus.ACTIVE:
        logger.info(
            "Recurring invoice %s completed after %d occurrences",
            template.id, advanced.occurrences_count,
        )
        return RECURRING_MACHINE.fire(advanced, "complete", now=now, today=today)
    return advanced


def build_invoice(
    template: RecurringInvoice,
    *,
    number: str,
    payment_token: str,
    today: date,
    now: datetime | None = None,
) -> Invoice:
    """Build the draft invoice for the template's current occurrence.

    Raises:
        CannotGenerateError: If the template may not generate on *today*
    """
    blocker = template.generation_blocker(today)
    if blocker is not None:
        raise CannotGenerateError(template.id, blocker)
    now = now or utc_now()
    invoice = Invoice(
        id=new_id(),
        tenant_id=template.tenant_id,
        client_id=template.client_id,
        project_id=template.project_id,
        recurring_invoice_id=template.id,
        number=number,
        issue_date=today,
        due_date=today + timedelta(days=template.payment_terms),
        currency=template.currency,
        line_items=copy_line_items(template.line_items),
        tax_rate=template.tax_rate,
        notes=template.notes,
        payment_token=payment_token,
        created_at=now,
        updated_at=now,
    )
    return invoice.recalculate()


__all__ = [
    "RECURRING_MACHINE",
    "advance_occurrence",
    "build_invoice",
    "can_generate",
    "next_occurrence_after",
    "remaining_occurrences",
]
