"""Core types and domain models for tenant-billing.

Every persisted entity is a frozen pydantic model.  State changes produce a
new instance through ``model_copy(update={...})``; stores persist whole
documents and compare ``version`` on update.
"""
from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    computed_field,
    field_validator,
)

from tenant_billing.core.money import ZERO, compute_line_amount, compute_totals


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_today() -> date:
    return utc_now().date()


def new_id() -> str:
    return uuid.uuid4().hex


class DocumentKind(StrEnum):
    """Kinds of numbered documents, each with its own per-tenant sequence."""
    INVOICE = "invoice"
    ESTIMATE = "estimate"
    PROJECT = "project"


class InvoiceStatus(StrEnum):
    """Invoice lifecycle status."""
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


UNPAID_STATUSES: frozenset[InvoiceStatus] = frozenset(
    {InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE}
)


class EstimateStatus(StrEnum):
    """Estimate lifecycle status."""
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    CONVERTED = "converted"


class RecurringStatus(StrEnum):
    """Recurring template status. ``cancelled`` and ``completed`` are terminal."""
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Frequency(StrEnum):
    """Cadence of a recurring invoice."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class LineItem(BaseModel):
    """A single billable row.

    ``amount`` is always derived from ``quantity`` and ``unit_price``; it is
    serialised with the model but can never be set.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, description="Line identifier")
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0, description="Billed quantity")
    unit_price: Decimal = Field(..., ge=0, description="Price per unit")
    position: int = Field(default=0, ge=0, description="Display/storage order")

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be blank")
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def amount(self) -> Decimal:
        return compute_line_amount(self.quantity, self.unit_price)


def order_line_items(items: list[LineItem] | tuple[LineItem, ...]) -> tuple[LineItem, ...]:
    """Sort by ``position``; ``sorted`` is stable so creation order breaks ties."""
    return tuple(sorted(items, key=lambda li: li.position))


class BillingDocument(BaseModel):
    """Header fields shared by invoices and estimates."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str = Field(..., min_length=1, max_length=255)
    client_id: str = Field(..., min_length=1, max_length=255)
    project_id: str | None = Field(default=None)
    number: str = Field(..., min_length=1, max_length=50)
    issue_date: date = Field(default_factory=utc_today)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    line_items: tuple[LineItem, ...] = Field(default=())
    tax_rate: Decimal = Field(default=ZERO, ge=0, le=100, description="Percentage")
    discount_amount: Decimal = Field(default=ZERO, ge=0, description="Flat discount")
    subtotal: Decimal = Field(default=ZERO)
    tax_amount: Decimal = Field(default=ZERO)
    total_amount: Decimal = Field(default=ZERO)
    notes: str | None = Field(default=None)
    terms: str | None = Field(default=None)
    version: int = Field(default=1, ge=1, description="Optimistic lock counter")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def recalculate(self) -> Self:
        """Return a copy whose totals match the line items, tax rate and discount."""
        totals = compute_totals(self.line_items, self.tax_rate, self.discount_amount)
        return self.model_copy(update=totals.model_dump())

    def totals_are_consistent(self) -> bool:
        totals = compute_totals(self.line_items, self.tax_rate, self.discount_amount)
        return (
            self.subtotal == totals.subtotal
            and self.tax_amount == totals.tax_amount
            and self.total_amount == totals.total_amount
        )


class Invoice(BillingDocument):
    """Billable document.

    Example
    -------
    .. code-block:: python

        invoice = Invoice(
            tenant_id="acct-1",
            client_id="client-7",
            number="INV-10001",
            issue_date=date(2025, 1, 1),
            due_date=date(2025, 1, 31),
            payment_token=generate_payment_token(),
        )
        invoice.is_past_due(today=date(2025, 2, 1))  # True
    """

    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT)
    due_date: date
    payment_token: str = Field(..., min_length=16, max_length=128)
    payment_method: str | None = Field(default=None)
    payment_reference: str | None = Field(default=None)
    payment_notes: str | None = Field(default=None)
    recurring_invoice_id: str | None = Field(default=None)
    sent_at: datetime | None = Field(default=None)
    viewed_at: datetime | None = Field(default=None)
    paid_at: datetime | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)
    reminder_sent_at: datetime | None = Field(default=None)
    reminder_count: int = Field(default=0, ge=0)

    @field_validator("due_date")
    @classmethod
    def validate_due_date(cls, v: date, info: ValidationInfo) -> date:
        issue_date = info.data.get("issue_date")
        if issue_date is not None and v < issue_date:
            raise ValueError("due_date must be on or after issue_date")
        return v

    def is_unpaid(self) -> bool:
        return self.status in UNPAID_STATUSES

    def is_payable(self) -> bool:
        """True when the public checkout flow may accept a payment."""
        return self.status in UNPAID_STATUSES

    def is_past_due(self, today: date | None = None) -> bool:
        return self.due_date < (today or utc_today())

    def days_overdue(self, today: date | None = None) -> int:
        today = today or utc_today()
        return max(0, (today - self.due_date).days)

    def days_until_due(self, today: date | None = None) -> int:
        today = today or utc_today()
        return max(0, (self.due_date - today).days)

    def is_due_soon(self, within_days: int, today: date | None = None) -> bool:
        today = today or utc_today()
        return self.is_unpaid() and 0 <= (self.due_date - today).days <= within_days


class Estimate(BillingDocument):
    """Proposal document that may be converted into an :class:`Invoice`."""

    status: EstimateStatus = Field(default=EstimateStatus.DRAFT)
    valid_until: date
    converted_invoice_id: str | None = Field(default=None)
    sent_at: datetime | None = Field(default=None)
    viewed_at: datetime | None = Field(default=None)
    accepted_at: datetime | None = Field(default=None)
    declined_at: datetime | None = Field(default=None)
    converted_at: datetime | None = Field(default=None)

    @field_validator("valid_until")
    @classmethod
    def validate_valid_until(cls, v: date, info: ValidationInfo) -> date:
        issue_date = info.data.get("issue_date")
        if issue_date is not None and v < issue_date:
            raise ValueError("valid_until must be on or after issue_date")
        return v

    def is_expired(self, today: date | None = None) -> bool:
        return self.valid_until < (today or utc_today())

    def days_until_expiry(self, today: date | None = None) -> int:
        today = today or utc_today()
        return max(0, (self.valid_until - today).days)

    def can_convert(self) -> bool:
        return self.status == EstimateStatus.ACCEPTED and self.converted_invoice_id is None


class RecurringInvoice(BaseModel):
    """Template from which invoices are generated on a cadence. Not billable itself."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str = Field(..., min_length=1, max_length=255)
    client_id: str = Field(..., min_length=1, max_length=255)
    project_id: str | None = Field(default=None)
    name: str = Field(..., min_length=1, max_length=255)
    frequency: Frequency = Field(default=Frequency.MONTHLY)
    status: RecurringStatus = Field(default=RecurringStatus.ACTIVE)
    start_date: date
    end_date: date | None = Field(default=None)
    next_occurrence_date: date
    last_generated_on: date | None = Field(default=None)
    occurrences_count: int = Field(default=0, ge=0)
    occurrences_limit: int | None = Field(default=None, gt=0)
    payment_terms: int = Field(default=30, ge=0, description="Days until due")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    tax_rate: Decimal = Field(default=ZERO, ge=0, le=100)
    notes: str | None = Field(default=None)
    auto_send: bool = Field(default=False)
    email_subject: str | None = Field(default=None)
    email_body: str | None = Field(default=None)
    line_items: tuple[LineItem, ...] = Field(default=())
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("end_date")
    @classmethod
    def validate_end_date(cls, v: date | None, info: ValidationInfo) -> date | None:
        start_date = info.data.get("start_date")
        if v is not None and start_date is not None and v < start_date:
            raise ValueError("end_date must be on or after start_date")
        return v

    def is_terminal(self) -> bool:
        return self.status in (RecurringStatus.CANCELLED, RecurringStatus.COMPLETED)

    def generation_blocker(self, today: date | None = None) -> str | None:
        """Return why no invoice can be generated today, or ``None`` if one can."""
        today = today or utc_today()
        if self.status != RecurringStatus.ACTIVE:
            return f"recurring invoice is {self.status.value}"
        if self.next_occurrence_date > today:
            return "not due yet"
        if self.end_date is not None and today > self.end_date:
            return "end date has passed"
        if self.occurrences_limit is not None and self.occurrences_count >= self.occurrences_limit:
            return "occurrences limit reached"
        return None

    def can_generate(self, today: date | None = None) -> bool:
        return self.generation_blocker(today) is None

    def remaining_occurrences(self) -> int | None:
        """Occurrences left before the limit, ``None`` when unlimited."""
        if self.occurrences_limit is None:
            return None
        return max(0, self.occurrences_limit - self.occurrences_count)


__all__ = [
    "UNPAID_STATUSES",
    "BillingDocument",
    "DocumentKind",
    "Estimate",
    "EstimateStatus",
    "Frequency",
    "Invoice",
    "InvoiceStatus",
    "LineItem",
    "RecurringInvoice",
    "RecurringStatus",
    "new_id",
    "order_line_items",
    "utc_now",
    "utc_today",
]
