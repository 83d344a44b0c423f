"""FastAPI dependency-injection helpers for billing applications.

Routes, authentication and tenant resolution stay in the application; these
helpers only hand out the services held by the :class:`BillingManager`
installed by :meth:`BillingManager.create_lifespan`.
"""
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from tenant_billing.core.exceptions import (
    BillingError,
    ConcurrencyConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from tenant_billing.core.types import Invoice
from tenant_billing.manager import BillingManager
from tenant_billing.services.estimates import EstimateService
from tenant_billing.services.invoices import InvoiceService
from tenant_billing.services.recurring import RecurringInvoiceService
from tenant_billing.utils.security import constant_time_compare

logger = logging.getLogger(__name__)


def get_billing_manager(request: Request) -> BillingManager:
    manager = getattr(request.app.state, "billing_manager", None)
    if manager is None:
        raise RuntimeError(
            "billing_manager not found on app.state. "
            "Did you forget to use BillingManager.create_lifespan()?"
        )
    return manager


def get_invoice_service(
    manager: Annotated[BillingManager, Depends(get_billing_manager)],
) -> InvoiceService:
    return manager.invoices


def get_estimate_service(
    manager: Annotated[BillingManager, Depends(get_billing_manager)],
) -> EstimateService:
    return manager.estimates


def get_recurring_service(
    manager: Annotated[BillingManager, Depends(get_billing_manager)],
) -> RecurringInvoiceService:
    return manager.recurring


async def get_payable_invoice(
    payment_token: str,
    invoices: Annotated[InvoiceService, Depends(get_invoice_service)],
) -> Invoice:
    """Resolve the invoice behind a public payment link.

    Raises 404 for an unknown token and 409 when the invoice can no longer
    be paid (draft, paid or cancelled).

    Example
    -------
    .. code-block:: python

        @app.get("/pay/{payment_token}")
        async def checkout(invoice: Invoice = Depends(get_payable_invoice)):
            return {"number": invoice.number, "amount": str(invoice.total_amount)}
    """
    invoice = await invoices.find_by_payment_token(payment_token)
    if invoice is None or not constant_time_compare(invoice.payment_token, payment_token):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    if not invoice.is_payable():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Invoice {invoice.number} is {invoice.status.value} and cannot be paid",
        )
    return invoice


def billing_error_to_http(exc: BillingError) -> HTTPException:
    """Translate a :class:`BillingError` into an :class:`HTTPException`.

    =============================  ====
    ValidationError                422
    NotFoundError                  404
    PreconditionFailedError        409
    ConcurrencyConflictError       409
    anything else                  400
    =============================  ====
    """
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "errors": exc.errors},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, PreconditionFailedError | ConcurrencyConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    logger.warning("Unmapped billing error %s: %s", type(exc).__name__, exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


__all__ = [
    "billing_error_to_http",
    "get_billing_manager",
    "get_estimate_service",
    "get_invoice_service",
    "get_payable_invoice",
    "get_recurring_service",
]
