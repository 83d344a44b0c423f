"""Validation helpers shared by config, numbering and the services.

Number prefixes end up in document numbers and sequence keys, so they are
kept to a small uppercase alphabet.  Pydantic errors raised while building
entities are flattened into the ``field -> messages`` map carried by
:class:`~tenant_billing.core.exceptions.ValidationError`.
"""
from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pydantic import ValidationError as PydanticValidationError

# ---------------------------------------------------------------------------
# Compiled patterns
# ---------------------------------------------------------------------------
_NUMBER_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]{0,9}$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

SUPPORTED_CURRENCIES: frozenset[str] = frozenset(
    {
        "USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CHF", "NZD",
        "SEK", "NOK", "DKK", "SGD", "HKD", "MXN", "BRL", "INR",
        "ZAR", "PLN", "CZK", "HUF", "ILS", "AED", "SAR", "KRW",
    }
)


def validate_number_prefix(prefix: str) -> bool:
    """Return True if *prefix* is 1-10 uppercase letters/digits starting with a letter."""
    if not prefix or not isinstance(prefix, str):
        return False
    return bool(_NUMBER_PREFIX_RE.match(prefix))


def validate_currency(code: str) -> bool:
    """Return True if *code* is a supported ISO 4217 currency code."""
    if not code or not isinstance(code, str):
        return False
    return bool(_CURRENCY_RE.match(code)) and code in SUPPORTED_CURRENCIES


def pydantic_errors_to_fields(exc: PydanticValidationError) -> dict[str, list[str]]:
    """Flatten a pydantic ``ValidationError`` into ``{"a.0.b": [messages]}``.

    Errors raised by model-level validators have an empty location and are
    filed under ``"__root__"``.
    """
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        msg = err.get("msg", "invalid value")
        # pydantic prefixes messages from ValueError with "Value error, "
        msg = msg.removeprefix("Value error, ")
        errors.setdefault(loc, []).append(msg)
    return errors


__all__ = [
    "SUPPORTED_CURRENCIES",
    "pydantic_errors_to_fields",
    "validate_currency",
    "validate_number_prefix",
]
