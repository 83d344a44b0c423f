"""Input models accepted by the services.

These are deliberately loose: they carry what a controller collected from a
form or API payload.  Domain rules (positive quantities, date ordering …)
are enforced when the services build the frozen entities in
:mod:`tenant_billing.core.types`, and are reported as
:class:`~tenant_billing.core.exceptions.ValidationError`.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from tenant_billing.core.types import Frequency


class LineItemInput(BaseModel):
    """A line as submitted by the caller; ``amount`` is never accepted."""

    model_config = ConfigDict(extra="ignore")

    description: str = ""
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    position: int | None = None


class DocumentDraft(BaseModel):
    client_id: str
    project_id: str | None = None
    number: str | None = Field(default=None, description="Omit to auto-number")
    issue_date: date | None = None
    currency: str | None = None
    tax_rate: Decimal = Decimal(0)
    discount_amount: Decimal = Decimal(0)
    notes: str | None = None
    terms: str | None = None
    line_items: list[LineItemInput] = Field(default_factory=list)


class InvoiceDraft(DocumentDraft):
    due_date: date | None = None
    recurring_invoice_id: str | None = None


class EstimateDraft(DocumentDraft):
    valid_until: date | None = None


class DocumentUpdate(BaseModel):
    """Partial update of a draft document.

    Only fields that were set are applied; an explicit ``None`` clears an
    optional field such as ``notes`` or ``project_id``.
    """

    client_id: str | None = None
    project_id: str | None = None
    issue_date: date | None = None
    currency: str | None = None
    tax_rate: Decimal | None = None
    discount_amount: Decimal | None = None
    notes: str | None = None
    terms: str | None = None
    line_items: list[LineItemInput] | None = Field(
        default=None, description="Replaces every line when given"
    )


class InvoiceUpdate(DocumentUpdate):
    due_date: date | None = None


class EstimateUpdate(DocumentUpdate):
    valid_until: date | None = None


class RecurringInvoiceDraft(BaseModel):
    client_id: str
    project_id: str | None = None
    name: str = ""
    frequency: Frequency = Frequency.MONTHLY
    start_date: date
    end_date: date | None = None
    next_occurrence_date: date | None = Field(default=None, description="Defaults to start_date")
    occurrences_limit: int | None = None
    payment_terms: int | None = None
    currency: str | None = None
    tax_rate: Decimal = Decimal(0)
    notes: str | None = None
    auto_send: bool = False
    email_subject: str | None = None
    email_body: str | None = None
    line_items: list[LineItemInput] = Field(default_factory=list)


class RecurringInvoiceUpdate(BaseModel):
    """Partial update of a template; unset fields stay, ``None`` clears."""

    name: str | None = None
    frequency: Frequency | None = None
    end_date: date | None = None
    occurrences_limit: int | None = None
    payment_terms: int | None = None
    tax_rate: Decimal | None = None
    notes: str | None = None
    auto_send: bool | None = None
    email_subject: str | None = None
    email_body: str | None = None
    line_items: list[LineItemInput] | None = None


__all__ = [
    "DocumentDraft",
    "DocumentUpdate",
    "EstimateDraft",
    "EstimateUpdate",
    "InvoiceDraft",
    "InvoiceUpdate",
    "LineItemInput",
    "RecurringInvoiceDraft",
    "RecurringInvoiceUpdate",
]
