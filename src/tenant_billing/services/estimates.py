"""Estimate use cases, including conversion into an invoice."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from tenant_billing.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateNumberError,
    InvalidStateError,
    InvalidTransitionError,
    PreconditionFailedError,
)
from tenant_billing.core.schemas import EstimateDraft, EstimateUpdate
from tenant_billing.core.types import DocumentKind, Estimate, EstimateStatus, Invoice
from tenant_billing.lifecycle.estimate import (
    DELETABLE_ESTIMATE_STATUSES,
    EDITABLE_ESTIMATE_STATUSES,
    ESTIMATE_MACHINE,
    invoice_from_estimate,
)
from tenant_billing.services.base import UNASSIGNED_NUMBER, BaseDocumentService
from tenant_billing.utils.security import generate_payment_token

logger = logging.getLogger(__name__)

_EXPIRABLE = (EstimateStatus.DRAFT, EstimateStatus.SENT, EstimateStatus.VIEWED)


class EstimateService(BaseDocumentService):
    """Estimate operations for every tenant.

    Example:
        ```python
        estimate = await service.create("acct-1", EstimateDraft(client_id="c-1", ...))
        await service.send("acct-1", estimate.id)
        await service.accept("acct-1", estimate.id)
        estimate, invoice = await service.convert_to_invoice("acct-1", estimate.id)
        ```
    """

    async def create(self, tenant_id: str, draft: EstimateDraft) -> Estimate:
        """Validate, number and persist a new draft estimate.

        Raises:
            ValidationError: Malformed header or line items, or a taken number
        """
        now = self.now()
        issue_date = draft.issue_date or now.date()
        errors: dict[str, list[str]] = {}
        line_items = self._line_items(draft.line_items, errors)
        candidate = self._validated(
            Estimate,
            "estimate",
            {
                "tenant_id": tenant_id,
                "client_id": draft.client_id,
                "project_id": draft.project_id,
                "number": draft.number or UNASSIGNED_NUMBER,
                "issue_date": issue_date,
                "valid_until": draft.valid_until
                or issue_date + timedelta(days=self.config.default_payment_terms_days),
                "currency": self._currency(draft.currency, errors),
                "line_items": line_items,
                "tax_rate": draft.tax_rate,
                "discount_amount": draft.discount_amount,
                "notes": draft.notes,
                "terms": draft.terms,
                "created_at": now,
                "updated_at": now,
            },
            errors,
        ).recalculate()

        estimate = await self._create_numbered(
            tenant_id, DocumentKind.ESTIMATE, candidate, draft.number, self.store.create_estimate
        )
        logger.info(
            "Created estimate %s (%s) for tenant %s total=%s",
            estimate.id, estimate.number, tenant_id, estimate.total_amount,
        )
        return estimate

    async def update(self, tenant_id: str, estimate_id: str, changes: EstimateUpdate) -> Estimate:
        estimate = await self.store.get_estimate(tenant_id, estimate_id)
        if estimate.status not in EDITABLE_ESTIMATE_STATUSES:
            raise PreconditionFailedError(
                f"Cannot edit estimate {estimate.number} in status {estimate.status.value!r}",
                details={"estimate_id": estimate_id},
            )

        errors: dict[str, list[str]] = {}
        data: dict[str, Any] = estimate.model_dump(exclude={"line_items"})
        data.update(changes.model_dump(exclude_unset=True, exclude={"line_items", "currency"}))
        if changes.currency is not None:
            data["currency"] = self._currency(changes.currency, errors)
        data["line_items"] = (
            self._line_items(changes.line_items, errors)
            if changes.line_items is not None
            else estimate.line_items
        )
        data["updated_at"] = self.now()
        edited = self._validated(Estimate, "estimate", data, errors).recalculate()

        saved = await self.store.update_estimate(edited)
        logger.info("Updated estimate %s (%s)", saved.id, saved.number)
        return saved

    async def delete(self, tenant_id: str, estimate_id: str) -> None:
        """Delete a draft or declined estimate.

        Raises:
            PreconditionFailedError: For any other status
        """
        estimate = await self.store.get_estimate(tenant_id, estimate_id)
        if estimate.status not in DELETABLE_ESTIMATE_STATUSES:
            logger.warning(
                "Refused delete of estimate %s in status %s", estimate.id, estimate.status
            )
            raise PreconditionFailedError(
                f"Cannot delete estimate {estimate.number} in status {estimate.status.value!r}; "
                "only draft or declined estimates can be deleted",
                details={"estimate_id": estimate_id, "status": estimate.status.value},
            )
        await self.store.delete_estimate(tenant_id, estimate_id)

    ###############
    # Transitions #
    ###############

    async def _fire(
        self,
        tenant_id: str,
        estimate_id: str,
        event: str,
        today: date | None = None,
    ) -> Estimate:
        return await self._transition(
            ESTIMATE_MACHINE,
            lambda: self.store.get_estimate(tenant_id, estimate_id),
            self.store.update_estimate,
            event,
            today=today,
        )

    async def send(self, tenant_id: str, estimate_id: str) -> Estimate:
        return await self._fire(tenant_id, estimate_id, "send")

    async def mark_viewed(self, tenant_id: str, estimate_id: str) -> Estimate:
        return await self._fire(tenant_id, estimate_id, "mark_viewed")

    async def accept(self, tenant_id: str, estimate_id: str) -> Estimate:
        return await self._fire(tenant_id, estimate_id, "accept")

    async def decline(self, tenant_id: str, estimate_id: str) -> Estimate:
        return await self._fire(tenant_id, estimate_id, "decline")

    async def expire(
        self, tenant_id: str, estimate_id: str, today: date | None = None
    ) -> Estimate:
        return await self._fire(tenant_id, estimate_id, "expire", today=today)

    async def expire_estimates(
        self,
        tenant_id: str | None = None,
        today: date | None = None,
    ) -> list[Estimate]:
        """System sweep: expire every pending estimate whose ``valid_until`` has passed."""
        today = today or self.today()
        candidates = await self.store.list_estimates_in_status(
            _EXPIRABLE, tenant_id=tenant_id, valid_before=today
        )
        expired: list[Estimate] = []
        for estimate in candidates:
            try:
                expired.append(await self.expire(estimate.tenant_id, estimate.id, today=today))
            except InvalidTransitionError as exc:
                logger.debug("Skipped estimate %s: %s", estimate.id, exc)
        logger.info("Expired %d of %d estimates", len(expired), len(candidates))
        return expired

    ##############
    # Conversion #
    ##############

    async def convert_to_invoice(
        self, tenant_id: str, estimate_id: str
    ) -> tuple[Estimate, Invoice]:
        """Turn an accepted estimate into a draft invoice.

        The invoice is created and the estimate marked ``converted`` in one
        store transaction; if either write fails neither is kept.

        Returns:
            ``(converted_estimate, invoice)``

        Raises:
            InvalidStateError: Estimate not accepted, or already converted
            ConcurrencyConflictError: Estimate changed concurrently in another way
        """
        attempts = self.config.number_max_retries
        for attempt in range(1, attempts + 1):
            estimate = await self.store.get_estimate(tenant_id, estimate_id)
            self._ensure_convertible(estimate)

            number = await self.numbers.assign(
                tenant_id,
                DocumentKind.INVOICE,
                lambda n: self.store.number_exists(tenant_id, DocumentKind.INVOICE, n),
            )
            now = self.now()
            issue_date = now.date()
            invoice = invoice_from_estimate(
                estimate,
                number=number,
                payment_token=generate_payment_token(self.config.payment_token_bytes),
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=self.config.default_payment_terms_days),
                now=now,
            )
            converted = ESTIMATE_MACHINE.fire(
                estimate, "convert", now=now, converted_invoice_id=invoice.id
            )

            try:
                async with self.store.transaction() as tx:
                    invoice = await tx.create_invoice(invoice)
                    converted = await tx.update_estimate(converted)
            except DuplicateNumberError:
                logger.warning(
                    "Lost race for invoice %s while converting estimate %s (attempt %d/%d)",
                    number, estimate_id, attempt, attempts,
                )
                continue
            except ConcurrencyConflictError as exc:
                self._ensure_convertible(
                    await self.store.get_estimate(tenant_id, estimate_id), cause=exc
                )
                raise

            logger.info(
                "Converted estimate %s (%s) into invoice %s (%s)",
                converted.id, converted.number, invoice.id, invoice.number,
            )
            return converted, invoice

        raise ConcurrencyConflictError(
            "convert_to_invoice", f"could not assign a unique number after {attempts} attempts"
        )

    @staticmethod
    def _ensure_convertible(estimate: Estimate, cause: Exception | None = None) -> None:
        if estimate.can_convert():
            return
        if estimate.converted_invoice_id is not None:
            reason = f"estimate {estimate.number} was already converted"
        else:
            reason = (
                f"estimate {estimate.number} is {estimate.status.value}; "
                "only accepted estimates can be converted"
            )
        logger.warning("Refused conversion: %s", reason)
        raise InvalidStateError(reason, entity_id=estimate.id) from cause

    ###########
    # Lookups #
    ###########

    async def get(self, tenant_id: str, estimate_id: str) -> Estimate:
        return await self.store.get_estimate(tenant_id, estimate_id)

    async def get_by_number(self, tenant_id: str, number: str) -> Estimate:
        return await self.store.get_estimate_by_number(tenant_id, number)

    async def list(
        self,
        tenant_id: str,
        *,
        status: EstimateStatus | None = None,
        client_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Estimate]:
        return await self.store.list_estimates(
            tenant_id, status=status, client_id=client_id, skip=skip, limit=limit
        )


__all__ = ["EstimateService"]
