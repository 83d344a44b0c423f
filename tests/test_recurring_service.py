"""Recurring templates: cadence arithmetic, generation, completion, sweeps."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import OTHER_TENANT, TENANT
from tenant_billing.core.exceptions import (
    CannotGenerateError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    PreconditionFailedError,
    ValidationError,
)
from tenant_billing.core.schemas import (
    LineItemInput,
    RecurringInvoiceDraft,
    RecurringInvoiceUpdate,
)
from tenant_billing.core.types import Frequency, InvoiceStatus, RecurringStatus
from tenant_billing.lifecycle.recurring import advance_occurrence, next_occurrence_after
from tenant_billing.services.invoices import InvoiceService
from tenant_billing.services.recurring import RecurringInvoiceService


def template_draft(**kwargs) -> RecurringInvoiceDraft:
    defaults = dict(
        client_id="client-7",
        name="Monthly retainer",
        start_date=date(2025, 1, 15),
        payment_terms=14,
        tax_rate=Decimal("10"),
        line_items=[
            LineItemInput(description="Retainer", quantity=Decimal("1"), unit_price=Decimal("900")),
        ],
    )
    defaults.update(kwargs)
    return RecurringInvoiceDraft(**defaults)


class TestCadence:

    @pytest.mark.parametrize("start,frequency,expected", [
        (date(2025, 1, 15), Frequency.WEEKLY, date(2025, 1, 22)),
        (date(2025, 1, 15), Frequency.BIWEEKLY, date(2025, 1, 29)),
        (date(2025, 1, 15), Frequency.MONTHLY, date(2025, 2, 15)),
        (date(2025, 1, 31), Frequency.MONTHLY, date(2025, 2, 28)),
        (date(2024, 1, 31), Frequency.MONTHLY, date(2024, 2, 29)),
        (date(2025, 11, 30), Frequency.QUARTERLY, date(2026, 2, 28)),
        (date(2024, 2, 29), Frequency.ANNUALLY, date(2025, 2, 28)),
        (date(2025, 12, 31), Frequency.WEEKLY, date(2026, 1, 7)),
    ])
    def test_next_occurrence(self, start: date, frequency: Frequency, expected: date) -> None:
        assert next_occurrence_after(start, frequency) == expected


class TestCreate:

    @pytest.mark.asyncio
    async def test_defaults(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(TENANT, template_draft())
        assert template.status == RecurringStatus.ACTIVE
        assert template.next_occurrence_date == date(2025, 1, 15)
        assert template.occurrences_count == 0
        assert template.currency == "USD"

    @pytest.mark.asyncio
    async def test_payment_terms_default_from_config(
        self, recurring: RecurringInvoiceService
    ) -> None:
        template = await recurring.create(TENANT, template_draft(payment_terms=None))
        assert template.payment_terms == 30

    @pytest.mark.asyncio
    async def test_invalid_template(self, recurring: RecurringInvoiceService) -> None:
        draft = template_draft(
            name="  ",
            payment_terms=-1,
            occurrences_limit=0,
            end_date=date(2025, 1, 1),
        )
        with pytest.raises(ValidationError) as exc_info:
            await recurring.create(TENANT, draft)
        assert {"name", "payment_terms", "occurrences_limit", "end_date"} <= set(
            exc_info.value.errors
        )


class TestGenerate:

    @pytest.mark.asyncio
    async def test_monthly_with_limit_one(
        self, recurring: RecurringInvoiceService, invoices: InvoiceService
    ) -> None:
        template = await recurring.create(TENANT, template_draft(occurrences_limit=1))
        invoice, advanced = await recurring.generate_invoice(TENANT, template.id)

        assert invoice.number == "INV-10001"
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.issue_date == date(2025, 1, 15)
        assert invoice.due_date == date(2025, 1, 29)
        assert invoice.recurring_invoice_id == template.id
        assert invoice.total_amount == Decimal("990.00")

        assert advanced.next_occurrence_date == date(2025, 2, 15)
        assert advanced.occurrences_count == 1
        assert advanced.last_generated_on == date(2025, 1, 15)
        assert advanced.status == RecurringStatus.COMPLETED

        with pytest.raises(CannotGenerateError, match="completed"):
            await recurring.generate_invoice(TENANT, template.id)
        assert len(await invoices.list(TENANT)) == 1

    @pytest.mark.asyncio
    async def test_auto_send(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(TENANT, template_draft(auto_send=True))
        invoice, _ = await recurring.generate_invoice(TENANT, template.id)
        assert invoice.status == InvoiceStatus.SENT
        assert invoice.sent_at is not None

    @pytest.mark.asyncio
    async def test_not_due_yet(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(
            TENANT, template_draft(start_date=date(2025, 2, 1))
        )
        with pytest.raises(CannotGenerateError) as exc_info:
            await recurring.generate_invoice(TENANT, template.id)
        assert exc_info.value.reason == "not due yet"

    @pytest.mark.asyncio
    async def test_paused_template(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(TENANT, template_draft())
        await recurring.pause(TENANT, template.id)
        with pytest.raises(CannotGenerateError, match="paused"):
            await recurring.generate_invoice(TENANT, template.id)

    @pytest.mark.asyncio
    async def test_completes_when_next_date_passes_end(
        self, recurring: RecurringInvoiceService
    ) -> None:
        template = await recurring.create(
            TENANT, template_draft(end_date=date(2025, 2, 10))
        )
        _, advanced = await recurring.generate_invoice(TENANT, template.id)
        assert advanced.status == RecurringStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_generated_invoices_keep_their_own_dates(
        self, recurring: RecurringInvoiceService, clock
    ) -> None:
        template = await recurring.create(TENANT, template_draft(start_date=date(2025, 1, 31)))
        clock.set_date(date(2025, 1, 31))
        first, _ = await recurring.generate_invoice(TENANT, template.id)
        clock.set_date(date(2025, 2, 28))
        second, advanced = await recurring.generate_invoice(TENANT, template.id)
        assert (first.issue_date, second.issue_date) == (date(2025, 1, 31), date(2025, 2, 28))
        assert (first.number, second.number) == ("INV-10001", "INV-10002")
        assert advanced.next_occurrence_date == date(2025, 3, 28)

    @pytest.mark.asyncio
    async def test_failed_template_write_keeps_no_invoice(
        self, recurring: RecurringInvoiceService, invoices: InvoiceService, store
    ) -> None:
        template = await recurring.create(TENANT, template_draft())
        store.update_recurring = AsyncMock(
            side_effect=ConcurrencyConflictError("update_recurring", "simulated")
        )
        with pytest.raises(ConcurrencyConflictError):
            await recurring.generate_invoice(TENANT, template.id)
        assert await invoices.list(TENANT) == []


class TestAdvance:

    def test_advance_is_pure(self) -> None:
        from tenant_billing.core.types import RecurringInvoice

        template = RecurringInvoice(
            tenant_id=TENANT,
            client_id="c",
            name="n",
            start_date=date(2025, 1, 15),
            next_occurrence_date=date(2025, 1, 15),
            occurrences_limit=3,
        )
        advanced = advance_occurrence(template, date(2025, 1, 15))
        assert template.occurrences_count == 0
        assert advanced.occurrences_count == 1
        assert advanced.status == RecurringStatus.ACTIVE
        assert advanced.remaining_occurrences() == 2


class TestStatus:

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(TENANT, template_draft())
        paused = await recurring.pause(TENANT, template.id)
        assert paused.status == RecurringStatus.PAUSED
        assert (await recurring.pause(TENANT, template.id)).version == paused.version
        resumed = await recurring.resume(TENANT, template.id)
        assert resumed.status == RecurringStatus.ACTIVE
        assert (await recurring.resume(TENANT, template.id)).version == resumed.version

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(TENANT, template_draft())
        await recurring.cancel(TENANT, template.id)
        with pytest.raises(InvalidTransitionError):
            await recurring.resume(TENANT, template.id)
        with pytest.raises(PreconditionFailedError):
            await recurring.update(TENANT, template.id, RecurringInvoiceUpdate(name="x"))

    @pytest.mark.asyncio
    async def test_update_active_template(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(TENANT, template_draft())
        updated = await recurring.update(
            TENANT, template.id, RecurringInvoiceUpdate(frequency=Frequency.QUARTERLY, auto_send=True)
        )
        assert updated.frequency == Frequency.QUARTERLY
        assert updated.auto_send is True

    @pytest.mark.asyncio
    async def test_update_can_clear_end_date(self, recurring: RecurringInvoiceService) -> None:
        template = await recurring.create(
            TENANT, template_draft(end_date=date(2025, 12, 31), notes="Monthly")
        )
        updated = await recurring.update(
            TENANT, template.id, RecurringInvoiceUpdate(end_date=None)
        )
        assert updated.end_date is None
        assert updated.notes == "Monthly"

    @pytest.mark.asyncio
    async def test_delete_unlinks_invoices(
        self, recurring: RecurringInvoiceService, invoices: InvoiceService
    ) -> None:
        template = await recurring.create(TENANT, template_draft())
        invoice, _ = await recurring.generate_invoice(TENANT, template.id)
        await recurring.delete(TENANT, template.id)
        assert (await invoices.get(TENANT, invoice.id)).recurring_invoice_id is None


class TestSweep:

    @pytest.mark.asyncio
    async def test_list_due(self, recurring: RecurringInvoiceService) -> None:
        due = await recurring.create(TENANT, template_draft())
        await recurring.create(TENANT, template_draft(start_date=date(2025, 3, 1)))
        paused = await recurring.create(TENANT, template_draft())
        await recurring.pause(TENANT, paused.id)
        assert [t.id for t in await recurring.list_due()] == [due.id]

    @pytest.mark.asyncio
    async def test_generate_all_due_continues_after_failure(
        self, recurring: RecurringInvoiceService, store
    ) -> None:
        first = await recurring.create(TENANT, template_draft())
        second = await recurring.create(OTHER_TENANT, template_draft())
        original = store.create_invoice

        async def flaky(invoice):
            if invoice.recurring_invoice_id == first.id:
                raise ConcurrencyConflictError("create", "simulated")
            return await original(invoice)

        store.create_invoice = flaky
        generated = await recurring.generate_all_due()
        assert [i.recurring_invoice_id for i in generated] == [second.id]
        assert (await recurring.get(TENANT, first.id)).occurrences_count == 0
        assert (await recurring.get(OTHER_TENANT, second.id)).occurrences_count == 1
