"""Decimal arithmetic for line items and document totals.

All money values are :class:`~decimal.Decimal`.  Binary floats are accepted
as input only through their ``str()`` form so ``33.33`` stays ``33.33``.

Rounding is half-up to two places::

    >>> compute_line_amount("1.5", "33.33")
    Decimal('50.00')

Tax applies after discount::

    tax   = round2((subtotal - discount) * tax_rate / 100)
    total = subtotal - discount + tax
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class PricedLine(Protocol):
    """Anything carrying a quantity and a unit price."""

    quantity: Any
    unit_price: Any


class Totals(BaseModel):
    """Derived header amounts of a document."""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = Field(default=ZERO, description="Sum of line amounts")
    tax_amount: Decimal = Field(default=ZERO, description="Tax on the discounted subtotal")
    total_amount: Decimal = Field(default=ZERO, description="subtotal - discount + tax")


def to_decimal(value: Any) -> Decimal:
    """Coerce *value* to ``Decimal``; ``None`` and empty strings become zero.

    Raises:
        ValueError: If *value* cannot be read as a number.
    """
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a decimal value: {value!r}") from exc


def round2(value: Any) -> Decimal:
    """Round to cents using half-up rounding."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_line_amount(quantity: Any, unit_price: Any) -> Decimal:
    """Return ``round2(quantity * unit_price)``; a missing operand counts as zero."""
    return round2(to_decimal(quantity) * to_decimal(unit_price))


def compute_totals(
    line_items: Iterable[PricedLine],
    tax_rate: Any = None,
    discount_amount: Any = None,
) -> Totals:
    """Compute subtotal, tax and total for a set of lines.

    Line amounts are recomputed from quantity and unit price, so a stale
    ``amount`` on an input line can never leak into the totals.  The function
    is pure: the same inputs always produce identical ``Decimal`` values.

    Args:
        line_items: Lines exposing ``quantity`` and ``unit_price``.
        tax_rate: Percentage, e.g. ``10`` for 10 %.
        discount_amount: Flat discount subtracted before tax.

    Returns:
        A frozen :class:`Totals`.
    """
    subtotal = sum(
        (compute_line_amount(item.quantity, item.unit_price) for item in line_items),
        start=ZERO,
    )
    discount = round2(discount_amount)
    rate = to_decimal(tax_rate)
    tax_amount = round2((subtotal - discount) * rate / Decimal(100))
    total_amount = round2(subtotal - discount + tax_amount)
    return Totals(subtotal=round2(subtotal), tax_amount=tax_amount, total_amount=total_amount)


__all__ = [
    "CENT",
    "ZERO",
    "PricedLine",
    "Totals",
    "compute_line_amount",
    "compute_totals",
    "round2",
    "to_decimal",
]
