"""Utility functions and helpers."""

from tenant_billing.utils.security import (
    constant_time_compare,
    generate_payment_token,
    mask_payment_details,
)
from tenant_billing.utils.validation import (
    SUPPORTED_CURRENCIES,
    validate_currency,
    validate_number_prefix,
)

__all__ = [
    "SUPPORTED_CURRENCIES",
    "constant_time_compare",
    "generate_payment_token",
    "mask_payment_details",
    "validate_currency",
    "validate_number_prefix",
]
