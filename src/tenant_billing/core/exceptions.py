"""Custom exceptions for tenant-billing.

All exceptions derive from :class:`BillingError` so callers can catch the
entire family with a single ``except BillingError`` clause.

Hierarchy::

    BillingError
    ├── ValidationError
    ├── PreconditionFailedError
    │   ├── InvalidTransitionError
    │   ├── InvalidStateError
    │   └── CannotGenerateError
    ├── NotFoundError
    ├── ConcurrencyConflictError
    │   └── DuplicateNumberError
    └── ConfigurationError
"""

from __future__ import annotations

from typing import Any


class BillingError(Exception):
    """Base exception for all tenant-billing errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r})"


class ValidationError(BillingError):
    """Raised when a document header or line item carries malformed input.

    ``errors`` maps a field path (``"due_date"``, ``"line_items.0.quantity"``)
    to the list of problems found on it.  Nothing is persisted when this is
    raised.
    """

    def __init__(
        self,
        errors: dict[str, list[str]],
        entity: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        summary = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in errors.items())
        prefix = f"Invalid {entity}" if entity else "Validation failed"
        super().__init__(f"{prefix}: {summary}" if summary else prefix, details)
        self.errors = errors
        self.entity = entity


class PreconditionFailedError(BillingError):
    """Raised when a structural precondition of an operation is not met."""


class InvalidTransitionError(PreconditionFailedError):
    """Raised when a lifecycle event is attempted from a status outside its guard."""

    def __init__(
        self,
        event: str,
        current_status: str,
        entity: str = "document",
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"Cannot {event} {entity} in status {current_status!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.event = event
        self.current_status = current_status
        self.entity = entity
        self.reason = reason


class InvalidStateError(PreconditionFailedError):
    """Raised when an estimate cannot be converted into an invoice."""

    def __init__(
        self,
        reason: str,
        entity_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"Invalid state: {reason}"
        if entity_id:
            message += f" (id: {entity_id!r})"
        super().__init__(message, details)
        self.reason = reason
        self.entity_id = entity_id


class CannotGenerateError(PreconditionFailedError):
    """Raised when a recurring template is not eligible to generate an invoice."""

    def __init__(
        self,
        template_id: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Cannot generate invoice from recurring invoice {template_id!r}: {reason}",
            details,
        )
        self.template_id = template_id
        self.reason = reason


class NotFoundError(BillingError):
    """Raised when a lookup by id, number or token has no match."""

    def __init__(
        self,
        entity: str,
        identifier: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"{entity} not found: {identifier!r}" if identifier else f"{entity} not found"
        super().__init__(message, details)
        self.entity = entity
        self.identifier = identifier


class ConcurrencyConflictError(BillingError):
    """Raised when a concurrent writer won a race; retry the whole operation."""

    def __init__(
        self,
        operation: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Concurrency conflict during {operation!r}: {reason}", details)
        self.operation = operation
        self.reason = reason


class DuplicateNumberError(ConcurrencyConflictError):
    """Raised by a store when a document number is already taken in the tenant."""

    def __init__(
        self,
        tenant_id: str,
        number: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            "create",
            f"number {number!r} already exists for tenant {tenant_id!r}",
            details,
        )
        self.tenant_id = tenant_id
        self.number = number


class ConfigurationError(BillingError):
    """Raised when :class:`~tenant_billing.core.config.BillingConfig` holds an invalid value."""

    def __init__(
        self,
        parameter: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Invalid configuration for {parameter!r}: {reason}", details)
        self.parameter = parameter
        self.reason = reason


__all__ = [
    "BillingError",
    "CannotGenerateError",
    "ConcurrencyConflictError",
    "ConfigurationError",
    "DuplicateNumberError",
    "InvalidStateError",
    "InvalidTransitionError",
    "NotFoundError",
    "PreconditionFailedError",
    "ValidationError",
]
