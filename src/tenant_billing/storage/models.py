"""SQLAlchemy 2.0 ORM models for billing documents.

The models use pure ``Mapped[T]`` syntax and portable column types only, so
the same tables work on PostgreSQL, SQLite and MySQL.  Line items are
stored with their parent row as JSON text and go away with it.
"""
from __future__ import annotations

import json
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tenant_billing.core.types import Estimate, Invoice, LineItem, RecurringInvoice

MONEY = Numeric(12, 2)
RATE = Numeric(7, 4)


class Base(DeclarativeBase):
    pass


def line_items_to_json(items: tuple[LineItem, ...]) -> str:
    return json.dumps(
        [
            {
                "id": item.id,
                "description": item.description,
                "quantity": str(item.quantity),
                "unit_price": str(item.unit_price),
                "position": item.position,
            }
            for item in items
        ]
    )


def line_items_from_json(raw: str | None) -> tuple[LineItem, ...]:
    return tuple(LineItem.model_validate(row) for row in json.loads(raw or "[]"))


def _aware(value: Any) -> Any:
    # SQLite hands back naive datetimes even for DateTime(timezone=True)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class _DocumentColumns:
    """Conversion between frozen domain models and ORM rows."""

    @classmethod
    def values_from(cls, doc: Any) -> dict[str, Any]:
        """Column values for *doc*, keyed by mapped attribute name."""
        values = doc.model_dump(exclude={"line_items"})
        values["line_items_json"] = line_items_to_json(doc.line_items)
        keys = {attr.key for attr in inspect(cls).column_attrs}
        return {k: v for k, v in values.items() if k in keys}

    def domain_values(self) -> dict[str, Any]:
        data = {
            attr.key: _aware(getattr(self, attr.key)) for attr in inspect(type(self)).column_attrs
        }
        data["line_items"] = line_items_from_json(data.pop("line_items_json"))
        return data


class InvoiceModel(_DocumentColumns, Base):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("tenant_id", "number", name="uq_invoices_tenant_number"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recurring_invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    line_items_json: Mapped[str] = mapped_column("line_items", Text, nullable=False, default="[]")
    tax_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> Invoice:
        return Invoice.model_validate(self.domain_values())


class EstimateModel(_DocumentColumns, Base):
    __tablename__ = "estimates"
    __table_args__ = (UniqueConstraint("tenant_id", "number", name="uq_estimates_tenant_number"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    line_items_json: Mapped[str] = mapped_column("line_items", Text, nullable=False, default="[]")
    tax_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    converted_invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> Estimate:
        return Estimate.model_validate(self.domain_values())


class RecurringInvoiceModel(_DocumentColumns, Base):
    __tablename__ = "recurring_invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_occurrence_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    last_generated_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    occurrences_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    occurrences_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_terms: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_send: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    line_items_json: Mapped[str] = mapped_column("line_items", Text, nullable=False, default="[]")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> RecurringInvoice:
        return RecurringInvoice.model_validate(self.domain_values())


class SequenceModel(Base):
    """Last number handed out per ``(tenant_id, prefix)``."""

    __tablename__ = "document_sequences"

    tenant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    prefix: Mapped[str] = mapped_column(String(20), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)


__all__ = [
    "Base",
    "EstimateModel",
    "InvoiceModel",
    "RecurringInvoiceModel",
    "SequenceModel",
    "line_items_from_json",
    "line_items_to_json",
]
