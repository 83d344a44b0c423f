"""Estimate transition table and the estimate → invoice copy."""
from __future__ import annotations

from datetime import date, datetime

from tenant_billing.core.types import (
    Estimate,
    EstimateStatus,
    Invoice,
    LineItem,
    new_id,
)
from tenant_billing.lifecycle.machine import StateMachine, Transition

_OPEN = frozenset({EstimateStatus.SENT, EstimateStatus.VIEWED})


def _expired(estimate: Estimate, today: date) -> bool:
    return estimate.is_expired(today)


def _unconverted(estimate: Estimate, today: date) -> bool:
    return estimate.converted_invoice_id is None


ESTIMATE_MACHINE = StateMachine(
    "estimate",
    [
        Transition(
            "send",
            frozenset({EstimateStatus.DRAFT}),
            EstimateStatus.SENT,
            timestamp_field="sent_at",
        ),
        Transition(
            "mark_viewed",
            frozenset({EstimateStatus.SENT}),
            EstimateStatus.VIEWED,
            timestamp_field="viewed_at",
        ),
        Transition("accept", _OPEN, EstimateStatus.ACCEPTED, timestamp_field="accepted_at"),
        Transition("decline", _OPEN, EstimateStatus.DECLINED, timestamp_field="declined_at"),
        Transition(
            "convert",
            frozenset({EstimateStatus.ACCEPTED}),
            EstimateStatus.CONVERTED,
            timestamp_field="converted_at",
            guard=_unconverted,
            guard_message="estimate already has an invoice",
        ),
        Transition(
            "expire",
            frozenset({EstimateStatus.DRAFT, EstimateStatus.SENT, EstimateStatus.VIEWED}),
            EstimateStatus.EXPIRED,
            guard=_expired,
            guard_message="estimate is still valid",
        ),
    ],
)

DELETABLE_ESTIMATE_STATUSES: frozenset[EstimateStatus] = frozenset(
    {EstimateStatus.DRAFT, EstimateStatus.DECLINED}
)

EDITABLE_ESTIMATE_STATUSES: frozenset[EstimateStatus] = frozenset({EstimateStatus.DRAFT})


def copy_line_items(items: tuple[LineItem, ...]) -> tuple[LineItem, ...]:
    """Duplicate line items under fresh ids; amounts are derived again."""
    return tuple(
        LineItem(
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            position=item.position,
        )
        for item in items
    )


def invoice_from_estimate(
    estimate: Estimate,
    *,
    number: str,
    payment_token: str,
    issue_date: date,
    due_date: date,
    now: datetime,
) -> Invoice:
    """Build the draft invoice an accepted estimate converts into."""
    invoice = Invoice(
        id=new_id(),
        tenant_id=estimate.tenant_id,
        client_id=estimate.client_id,
        project_id=estimate.project_id,
        number=number,
        issue_date=issue_date,
        due_date=due_date,
        currency=estimate.currency,
        line_items=copy_line_items(estimate.line_items),
        tax_rate=estimate.tax_rate,
        discount_amount=estimate.discount_amount,
        notes=estimate.notes,
        terms=estimate.terms,
        payment_token=payment_token,
        created_at=now,
        updated_at=now,
    )
    return invoice.recalculate()


__all__ = [
    "DELETABLE_ESTIMATE_STATUSES",
    "EDITABLE_ESTIMATE_STATUSES",
    "ESTIMATE_MACHINE",
    "copy_line_items",
    "invoice_from_estimate",
]
