"""Unit tests for validation helpers."""
from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from tenant_billing.core.types import Invoice, LineItem
from tenant_billing.utils.validation import (
    SUPPORTED_CURRENCIES,
    pydantic_errors_to_fields,
    validate_currency,
    validate_number_prefix,
)


class TestValidateNumberPrefix:

    @pytest.mark.parametrize("prefix", ["INV", "EST", "PRJ", "Q1", "A", "ABCDEFGHIJ"])
    def test_valid(self, prefix: str) -> None:
        assert validate_number_prefix(prefix)

    @pytest.mark.parametrize("prefix", ["", "inv", "1INV", "IN-V", "INV ", "ABCDEFGHIJK"])
    def test_invalid(self, prefix: str) -> None:
        assert not validate_number_prefix(prefix)


class TestValidateCurrency:

    def test_supported(self) -> None:
        assert "EUR" in SUPPORTED_CURRENCIES
        assert validate_currency("EUR")

    @pytest.mark.parametrize("code", ["", "usd", "US", "XXX", "EURO"])
    def test_rejected(self, code: str) -> None:
        assert not validate_currency(code)


class TestPydanticErrorsToFields:

    def test_nested_locations(self) -> None:
        with pytest.raises(PydanticValidationError) as exc_info:
            LineItem(description="  ", quantity=Decimal("0"), unit_price=Decimal("1"))
        fields = pydantic_errors_to_fields(exc_info.value)
        assert set(fields) == {"description", "quantity"}
        assert fields["description"] == ["description must not be blank"]

    def test_strips_value_error_prefix(self) -> None:
        with pytest.raises(PydanticValidationError) as exc_info:
            Invoice(
                tenant_id="acct-1",
                client_id="client-7",
                number="INV-10000",
                issue_date="2025-02-01",
                due_date="2025-01-01",
                payment_token="0123456789abcdef",
            )
        fields = pydantic_errors_to_fields(exc_info.value)
        assert fields == {"due_date": ["due_date must be on or after issue_date"]}
