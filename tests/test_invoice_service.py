"""InvoiceService: creation, numbering, editing, lifecycle, lookups."""
from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from conftest import OTHER_TENANT, TENANT, invoice_draft
from tenant_billing.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from tenant_billing.core.schemas import InvoiceUpdate, LineItemInput
from tenant_billing.core.types import InvoiceStatus
from tenant_billing.services.invoices import InvoiceService


class TestCreate:

    @pytest.mark.asyncio
    async def test_worked_example(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        assert invoice.number == "INV-10001"
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.subtotal == Decimal("250.00")
        assert invoice.tax_amount == Decimal("24.50")
        assert invoice.total_amount == Decimal("269.50")
        assert [item.amount for item in invoice.line_items] == [
            Decimal("200.00"), Decimal("50.00"),
        ]

    @pytest.mark.asyncio
    async def test_default_dates(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        assert invoice.issue_date == date(2025, 1, 15)
        assert invoice.due_date == date(2025, 2, 14)

    @pytest.mark.asyncio
    async def test_payment_token_is_opaque(self, invoices: InvoiceService) -> None:
        first = await invoices.create(TENANT, invoice_draft())
        second = await invoices.create(TENANT, invoice_draft())
        assert first.payment_token != second.payment_token
        assert len(first.payment_token) == 32
        assert first.id not in first.payment_token

    @pytest.mark.asyncio
    async def test_numbers_are_sequential_per_tenant(self, invoices: InvoiceService) -> None:
        a1 = await invoices.create(TENANT, invoice_draft())
        a2 = await invoices.create(TENANT, invoice_draft())
        b1 = await invoices.create(OTHER_TENANT, invoice_draft())
        assert (a1.number, a2.number, b1.number) == ("INV-10001", "INV-10002", "INV-10001")

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_distinct_numbers(
        self, invoices: InvoiceService
    ) -> None:
        created = await asyncio.gather(
            *(invoices.create(TENANT, invoice_draft()) for _ in range(10))
        )
        assert sorted(i.number for i in created) == [f"INV-{n}" for n in range(10001, 10011)]

    @pytest.mark.asyncio
    async def test_currency_defaults_and_uppercases(self, invoices: InvoiceService) -> None:
        assert (await invoices.create(TENANT, invoice_draft())).currency == "USD"
        assert (await invoices.create(TENANT, invoice_draft(currency="eur"))).currency == "EUR"

    @pytest.mark.asyncio
    async def test_unknown_currency(self, invoices: InvoiceService) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await invoices.create(TENANT, invoice_draft(currency="ZZZ"))
        assert "currency" in exc_info.value.errors


class TestSuppliedNumbers:

    @pytest.mark.asyncio
    async def test_supplied_number_is_kept(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft(number="INV-20000"))
        assert invoice.number == "INV-20000"

    @pytest.mark.asyncio
    async def test_generator_continues_after_supplied(self, invoices: InvoiceService) -> None:
        await invoices.create(TENANT, invoice_draft(number="INV-20000"))
        assert (await invoices.create(TENANT, invoice_draft())).number == "INV-20001"

    @pytest.mark.asyncio
    async def test_foreign_format_is_kept(self, invoices: InvoiceService) -> None:
        await invoices.create(TENANT, invoice_draft(number="LEGACY/7"))
        assert (await invoices.create(TENANT, invoice_draft())).number == "INV-10001"

    @pytest.mark.asyncio
    async def test_taken_number_is_validation_error(self, invoices: InvoiceService) -> None:
        await invoices.create(TENANT, invoice_draft(number="INV-20000"))
        with pytest.raises(ValidationError) as exc_info:
            await invoices.create(TENANT, invoice_draft(number="INV-20000"))
        assert exc_info.value.errors == {"number": ["has already been taken"]}

    @pytest.mark.asyncio
    async def test_same_number_in_other_tenant(self, invoices: InvoiceService) -> None:
        await invoices.create(TENANT, invoice_draft(number="INV-20000"))
        other = await invoices.create(OTHER_TENANT, invoice_draft(number="INV-20000"))
        assert other.number == "INV-20000"

    @pytest.mark.asyncio
    async def test_generated_number_skips_supplied_one(self, invoices: InvoiceService) -> None:
        await invoices.create(TENANT, invoice_draft(number="INV-10001"))
        second = await invoices.create(TENANT, invoice_draft())
        assert second.number == "INV-10002"


class TestValidation:

    @pytest.mark.asyncio
    async def test_line_item_errors_are_indexed(self, invoices: InvoiceService) -> None:
        draft = invoice_draft(line_items=[
            LineItemInput(description="ok", quantity=Decimal("1"), unit_price=Decimal("1")),
            LineItemInput(description="", quantity=Decimal("0"), unit_price=Decimal("-1")),
        ])
        with pytest.raises(ValidationError) as exc_info:
            await invoices.create(TENANT, draft)
        errors = exc_info.value.errors
        assert "line_items.1.description" in errors
        assert "line_items.1.quantity" in errors
        assert "line_items.1.unit_price" in errors
        assert not any(key.startswith("line_items.0") for key in errors)

    @pytest.mark.asyncio
    async def test_due_before_issue(self, invoices: InvoiceService) -> None:
        draft = invoice_draft(issue_date=date(2025, 1, 10), due_date=date(2025, 1, 9))
        with pytest.raises(ValidationError) as exc_info:
            await invoices.create(TENANT, draft)
        assert "due_date" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_header_and_line_errors_reported_together(
        self, invoices: InvoiceService
    ) -> None:
        draft = invoice_draft(
            tax_rate=Decimal("150"),
            line_items=[LineItemInput(description="x", unit_price=Decimal("1"))],
        )
        with pytest.raises(ValidationError) as exc_info:
            await invoices.create(TENANT, draft)
        assert {"tax_rate", "line_items.0.quantity"} <= set(exc_info.value.errors)

    @pytest.mark.asyncio
    async def test_rejected_document_consumes_no_number(self, invoices: InvoiceService) -> None:
        with pytest.raises(ValidationError):
            await invoices.create(TENANT, invoice_draft(discount_amount=Decimal("-1")))
        assert (await invoices.create(TENANT, invoice_draft())).number == "INV-10001"

    @pytest.mark.asyncio
    async def test_nothing_persisted_on_failure(self, invoices: InvoiceService) -> None:
        with pytest.raises(ValidationError):
            await invoices.create(TENANT, invoice_draft(currency="ZZZ"))
        assert await invoices.list(TENANT) == []


class TestUpdate:

    @pytest.mark.asyncio
    async def test_replaces_lines_and_recomputes(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        updated = await invoices.update(TENANT, invoice.id, InvoiceUpdate(
            discount_amount=Decimal("0"),
            line_items=[LineItemInput(description="Audit", quantity=Decimal("1"),
                                      unit_price=Decimal("1000"))],
        ))
        assert updated.subtotal == Decimal("1000.00")
        assert updated.total_amount == Decimal("1100.00")
        assert updated.number == invoice.number
        assert updated.payment_token == invoice.payment_token
        assert updated.version == invoice.version + 1

    @pytest.mark.asyncio
    async def test_keeps_lines_when_omitted(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        updated = await invoices.update(TENANT, invoice.id, InvoiceUpdate(notes="hello"))
        assert updated.notes == "hello"
        assert updated.total_amount == invoice.total_amount

    @pytest.mark.asyncio
    async def test_explicit_none_clears_optional_fields(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(
            TENANT, invoice_draft(project_id="proj-1", notes="Thanks", terms="Net 30")
        )
        updated = await invoices.update(
            TENANT, invoice.id, InvoiceUpdate(project_id=None, notes=None)
        )
        assert updated.project_id is None
        assert updated.notes is None
        assert updated.terms == "Net 30"

    @pytest.mark.asyncio
    async def test_sent_invoice_is_read_only(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        with pytest.raises(PreconditionFailedError):
            await invoices.update(TENANT, invoice.id, InvoiceUpdate(notes="late"))


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_send_view_pay(self, invoices: InvoiceService, clock) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        sent = await invoices.send(TENANT, invoice.id)
        assert sent.status == InvoiceStatus.SENT
        assert sent.sent_at == clock()

        clock.advance(hours=1)
        viewed = await invoices.mark_viewed(TENANT, invoice.id)
        assert viewed.viewed_at == clock()

        paid = await invoices.mark_paid(
            TENANT, invoice.id, payment_method="bank_transfer", payment_reference="TX-1"
        )
        assert paid.status == InvoiceStatus.PAID
        assert paid.payment_method == "bank_transfer"
        assert paid.paid_at == clock()

    @pytest.mark.asyncio
    async def test_explicit_payment_date(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        when = datetime(2025, 1, 10, tzinfo=UTC)
        paid = await invoices.mark_paid(TENANT, invoice.id, payment_date=when)
        assert paid.paid_at == when

    @pytest.mark.asyncio
    async def test_paid_invoice_cannot_be_cancelled(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        await invoices.mark_paid(TENANT, invoice.id)
        with pytest.raises(PreconditionFailedError):
            await invoices.cancel(TENANT, invoice.id)
        assert (await invoices.get(TENANT, invoice.id)).status == InvoiceStatus.PAID

    @pytest.mark.asyncio
    async def test_draft_can_be_cancelled(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        cancelled = await invoices.cancel(TENANT, invoice.id)
        assert cancelled.status == InvoiceStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert (await invoices.get(TENANT, invoice.id)).status == InvoiceStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_draft_cannot_be_paid(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        with pytest.raises(InvalidTransitionError):
            await invoices.mark_paid(TENANT, invoice.id)

    @pytest.mark.asyncio
    async def test_concurrent_pay_and_cancel(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        results = await asyncio.gather(
            invoices.mark_paid(TENANT, invoice.id),
            invoices.cancel(TENANT, invoice.id),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], PreconditionFailedError | ConcurrencyConflictError)
        final = await invoices.get(TENANT, invoice.id)
        assert final.status == winners[0].status


class TestOverdue:

    @pytest.mark.asyncio
    async def test_mark_overdue_after_due_date(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft(due_date=date(2025, 1, 20)))
        await invoices.send(TENANT, invoice.id)
        with pytest.raises(InvalidTransitionError):
            await invoices.mark_overdue(TENANT, invoice.id, today=date(2025, 1, 20))
        overdue = await invoices.mark_overdue(TENANT, invoice.id, today=date(2025, 1, 21))
        assert overdue.status == InvoiceStatus.OVERDUE

    @pytest.mark.asyncio
    async def test_sweep(self, invoices: InvoiceService) -> None:
        due = await invoices.create(TENANT, invoice_draft(due_date=date(2025, 1, 16)))
        later = await invoices.create(TENANT, invoice_draft(due_date=date(2025, 3, 1)))
        draft = await invoices.create(TENANT, invoice_draft(due_date=date(2025, 1, 16)))
        other = await invoices.create(OTHER_TENANT, invoice_draft(due_date=date(2025, 1, 16)))
        for inv in (due, later):
            await invoices.send(TENANT, inv.id)
        await invoices.send(OTHER_TENANT, other.id)

        marked = await invoices.mark_overdue_invoices(tenant_id=TENANT, today=date(2025, 2, 1))
        assert [i.id for i in marked] == [due.id]
        assert (await invoices.get(TENANT, draft.id)).status == InvoiceStatus.DRAFT
        assert (await invoices.get(OTHER_TENANT, other.id)).status == InvoiceStatus.SENT

        marked = await invoices.mark_overdue_invoices(today=date(2025, 2, 1))
        assert [i.id for i in marked] == [other.id]

    @pytest.mark.asyncio
    async def test_overdue_invoice_can_still_be_paid(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft(due_date=date(2025, 1, 16)))
        await invoices.send(TENANT, invoice.id)
        await invoices.mark_overdue(TENANT, invoice.id, today=date(2025, 2, 1))
        paid = await invoices.mark_paid(TENANT, invoice.id)
        assert paid.status == InvoiceStatus.PAID


class TestDelete:

    @pytest.mark.asyncio
    async def test_draft_can_be_deleted(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.delete(TENANT, invoice.id)
        with pytest.raises(NotFoundError):
            await invoices.get(TENANT, invoice.id)

    @pytest.mark.asyncio
    async def test_cancelled_can_be_deleted(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        await invoices.cancel(TENANT, invoice.id)
        await invoices.delete(TENANT, invoice.id)

    @pytest.mark.asyncio
    async def test_sent_cannot_be_deleted(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        with pytest.raises(PreconditionFailedError):
            await invoices.delete(TENANT, invoice.id)


class TestLookups:

    @pytest.mark.asyncio
    async def test_get_by_number(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        assert (await invoices.get_by_number(TENANT, "INV-10001")).id == invoice.id

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        with pytest.raises(NotFoundError):
            await invoices.get(OTHER_TENANT, invoice.id)
        with pytest.raises(NotFoundError):
            await invoices.get_by_number(OTHER_TENANT, invoice.number)
        assert await invoices.list(OTHER_TENANT) == []

    @pytest.mark.asyncio
    async def test_payment_token_lookup(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        assert (await invoices.find_by_payment_token(invoice.payment_token)).id == invoice.id
        assert await invoices.find_by_payment_token("0" * 32) is None
        assert await invoices.find_by_payment_token("") is None
        with pytest.raises(NotFoundError):
            await invoices.get_by_payment_token("0" * 32)

    @pytest.mark.asyncio
    async def test_list_filters(self, invoices: InvoiceService, clock) -> None:
        first = await invoices.create(TENANT, invoice_draft(client_id="c-1"))
        clock.advance(days=1)
        second = await invoices.create(TENANT, invoice_draft(client_id="c-2"))
        await invoices.send(TENANT, second.id)

        assert [i.id for i in await invoices.list(TENANT)] == [second.id, first.id]
        assert [i.id for i in await invoices.list(TENANT, status=InvoiceStatus.DRAFT)] == [
            first.id
        ]
        assert [i.id for i in await invoices.list(TENANT, client_id="c-2")] == [second.id]
        assert [i.id for i in await invoices.list(TENANT, skip=1, limit=1)] == [first.id]


class TestExternalPayment:

    @pytest.mark.asyncio
    async def test_marks_paid(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        paid = await invoices.record_external_payment(TENANT, invoice.id, "pi_123")
        assert paid.status == InvoiceStatus.PAID
        assert paid.payment_method == "stripe"
        assert paid.payment_reference == "pi_123"

    @pytest.mark.asyncio
    async def test_repeated_callback_is_ignored(self, invoices: InvoiceService, clock) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        first = await invoices.record_external_payment(TENANT, invoice.id, "pi_123")
        clock.advance(minutes=5)
        second = await invoices.record_external_payment(TENANT, invoice.id, "pi_123")
        assert second == first

    @pytest.mark.asyncio
    async def test_cancelled_invoice_refuses_payment(self, invoices: InvoiceService) -> None:
        invoice = await invoices.create(TENANT, invoice_draft())
        await invoices.send(TENANT, invoice.id)
        await invoices.cancel(TENANT, invoice.id)
        with pytest.raises(InvalidTransitionError):
            await invoices.record_external_payment(TENANT, invoice.id, "pi_123")
