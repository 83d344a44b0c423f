"""Document services: the operations callers use.

Each service takes the tenant id explicitly and enforces lifecycle rules,
numbering and optimistic concurrency on top of a
:class:`~tenant_billing.storage.document_store.DocumentStore`.
"""

from tenant_billing.services.base import UNASSIGNED_NUMBER, BaseDocumentService, Clock
from tenant_billing.services.estimates import EstimateService
from tenant_billing.services.invoices import InvoiceService
from tenant_billing.services.recurring import RecurringInvoiceService
from tenant_billing.services.reminders import PaymentReminderService, ReminderDecision

__all__ = [
    "UNASSIGNED_NUMBER",
    "BaseDocumentService",
    "Clock",
    "EstimateService",
    "InvoiceService",
    "PaymentReminderService",
    "RecurringInvoiceService",
    "ReminderDecision",
]
