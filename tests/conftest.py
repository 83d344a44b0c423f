"""Shared pytest fixtures for the tenant-billing test suite.

Design philosophy
-----------------
- Services run against the in-memory stores unless a test is about SQL.
- SQL fixtures use SQLite in-memory via aiosqlite, so no external services
  (PostgreSQL, Redis) are needed.
- Every service gets a :class:`FixedClock`, so dates in assertions are exact.
- Scope is "function" throughout to guarantee full isolation.
"""
from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from tenant_billing.core.config import BillingConfig
from tenant_billing.core.schemas import EstimateDraft, InvoiceDraft, LineItemInput
from tenant_billing.core.types import Estimate, Invoice, RecurringInvoice
from tenant_billing.numbering.generator import NumberGenerator
from tenant_billing.numbering.memory import InMemorySequenceStore
from tenant_billing.services.estimates import EstimateService
from tenant_billing.services.invoices import InvoiceService
from tenant_billing.services.recurring import RecurringInvoiceService
from tenant_billing.services.reminders import PaymentReminderService
from tenant_billing.storage.memory import InMemoryDocumentStore
from tenant_billing.storage.sqlalchemy import SQLAlchemyDocumentStore

TENANT = "acct-1"
OTHER_TENANT = "acct-2"


class FixedClock:
    """Callable clock whose time only moves when a test moves it."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)

    def set_date(self, day: date) -> None:
        self.current = datetime(day.year, day.month, day.day, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Configuration & collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig(
        database_url="sqlite+aiosqlite:///:memory:",
        sequence_backend="memory",
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 15, 9, 0, tzinfo=UTC))


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def sequences() -> InMemorySequenceStore:
    return InMemorySequenceStore()


@pytest.fixture
def numbers(sequences: InMemorySequenceStore, config: BillingConfig) -> NumberGenerator:
    return NumberGenerator(sequences, config)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def invoices(store, numbers, config, clock) -> InvoiceService:
    return InvoiceService(store, numbers, config, clock)


@pytest.fixture
def estimates(store, numbers, config, clock) -> EstimateService:
    return EstimateService(store, numbers, config, clock)


@pytest.fixture
def recurring(store, numbers, config, clock) -> RecurringInvoiceService:
    return RecurringInvoiceService(store, numbers, config, clock)


@pytest.fixture
def reminders(store, config, clock) -> PaymentReminderService:
    return PaymentReminderService(store, config, clock)


# ---------------------------------------------------------------------------
# SQL storage
# ---------------------------------------------------------------------------

@pytest.fixture
async def sqlite_store():
    """SQLite-backed document store for integration tests."""
    store = SQLAlchemyDocumentStore(database_url="sqlite+aiosqlite:///:memory:")
    await store.initialize()
    yield store
    await store.close()


# ---------------------------------------------------------------------------
# Input builders
# ---------------------------------------------------------------------------

def design_and_hosting() -> list[LineItemInput]:
    """2 x 100.00 + 1 x 50.00 = 250.00."""
    return [
        LineItemInput(description="Design", quantity=Decimal("2"), unit_price=Decimal("100")),
        LineItemInput(description="Hosting", quantity=Decimal("1"), unit_price=Decimal("50")),
    ]


def invoice_draft(**kwargs) -> InvoiceDraft:
    defaults = dict(
        client_id="client-7",
        tax_rate=Decimal("10"),
        discount_amount=Decimal("5"),
        line_items=design_and_hosting(),
    )
    defaults.update(kwargs)
    return InvoiceDraft(**defaults)


def estimate_draft(**kwargs) -> EstimateDraft:
    defaults = dict(
        client_id="client-7",
        project_id="proj-1",
        tax_rate=Decimal("10"),
        discount_amount=Decimal("5"),
        notes="Thanks",
        terms="Net 30",
        line_items=design_and_hosting(),
    )
    defaults.update(kwargs)
    return EstimateDraft(**defaults)


# ---------------------------------------------------------------------------
# Stored documents, for exercising the stores directly
# ---------------------------------------------------------------------------

def make_invoice(number: str = "INV-10000", tenant_id: str = TENANT, **kwargs) -> Invoice:
    defaults = dict(
        tenant_id=tenant_id,
        client_id="client-7",
        number=number,
        issue_date=date(2025, 1, 15),
        due_date=date(2025, 2, 14),
        payment_token=f"token-{tenant_id}-{number}-0000",
    )
    defaults.update(kwargs)
    return Invoice(**defaults)


def make_estimate(number: str = "EST-10000", **kwargs) -> Estimate:
    defaults = dict(
        tenant_id=TENANT,
        client_id="client-7",
        number=number,
        issue_date=date(2025, 1, 15),
        valid_until=date(2025, 2, 14),
    )
    defaults.update(kwargs)
    return Estimate(**defaults)


def make_template(**kwargs) -> RecurringInvoice:
    defaults = dict(
        tenant_id=TENANT,
        client_id="client-7",
        name="Retainer",
        start_date=date(2025, 1, 15),
        next_occurrence_date=date(2025, 1, 15),
    )
    defaults.update(kwargs)
    return RecurringInvoice(**defaults)
