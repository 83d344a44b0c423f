"""Core billing components and abstractions."""

from tenant_billing.core.config import BillingConfig
from tenant_billing.core.exceptions import *  # noqa: F403
from tenant_billing.core.exceptions import __all__ as exceptions__all__
from tenant_billing.core.money import Totals, compute_line_amount, compute_totals, round2
from tenant_billing.core.types import *  # noqa: F403
from tenant_billing.core.types import __all__ as types__all__

__all__ = [
    "BillingConfig",
    "Totals",
    "compute_line_amount",
    "compute_totals",
    "round2",
]

__all__ += exceptions__all__
__all__ += types__all__
