"""Document lifecycles: transition tables and scheduling arithmetic."""

from tenant_billing.lifecycle.estimate import (
    DELETABLE_ESTIMATE_STATUSES,
    EDITABLE_ESTIMATE_STATUSES,
    ESTIMATE_MACHINE,
    invoice_from_estimate,
)
from tenant_billing.lifecycle.invoice import (
    DELETABLE_INVOICE_STATUSES,
    EDITABLE_INVOICE_STATUSES,
    INVOICE_MACHINE,
)
from tenant_billing.lifecycle.machine import StateMachine, Transition
from tenant_billing.lifecycle.recurring import (
    RECURRING_MACHINE,
    advance_occurrence,
    build_invoice,
    can_generate,
    next_occurrence_after,
    remaining_occurrences,
)

__all__ = [
    "DELETABLE_ESTIMATE_STATUSES",
    "DELETABLE_INVOICE_STATUSES",
    "EDITABLE_ESTIMATE_STATUSES",
    "EDITABLE_INVOICE_STATUSES",
    "ESTIMATE_MACHINE",
    "INVOICE_MACHINE",
    "RECURRING_MACHINE",
    "StateMachine",
    "Transition",
    "advance_occurrence",
    "build_invoice",
    "can_generate",
    "invoice_from_estimate",
    "next_occurrence_after",
    "remaining_occurrences",
]
