"""Plumbing shared by the document services.

- Turning loose input into validated frozen entities
- Assigning numbers with bounded retries
- Optimistic read-modify-write for status transitions
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tenant_billing.core.config import BillingConfig
from tenant_billing.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateNumberError,
    ValidationError,
)
from tenant_billing.core.schemas import LineItemInput
from tenant_billing.core.types import (
    DocumentKind,
    Estimate,
    Invoice,
    LineItem,
    RecurringInvoice,
    order_line_items,
    utc_now,
)
from tenant_billing.lifecycle.machine import StateMachine
from tenant_billing.numbering.generator import NumberGenerator
from tenant_billing.storage.document_store import DocumentStore
from tenant_billing.utils.validation import pydantic_errors_to_fields, validate_currency

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
DocT = TypeVar("DocT", Invoice, Estimate, RecurringInvoice)

Clock = Callable[[], datetime]

# Stands in for the number while a new document is validated, so that a
# document that fails validation does not consume a number.
UNASSIGNED_NUMBER = "UNASSIGNED"


class BaseDocumentService:
    """Holds the collaborators every service needs.

    Args:
        store: Document storage backend
        numbers: Number generator (sequence store + formats)
        config: Billing configuration
        clock: Returns the current aware UTC time; inject a fixed clock in tests
    """

    def __init__(
        self,
        store: DocumentStore,
        numbers: NumberGenerator,
        config: BillingConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.numbers = numbers
        self.config = config or numbers.config
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    def today(self) -> date:
        return self.clock().date()

    ##############
    # Validation #
    ##############

    def _line_items(
        self,
        inputs: Sequence[LineItemInput],
        errors: dict[str, list[str]],
    ) -> tuple[LineItem, ...]:
        """Build line items, collecting problems under ``line_items.<i>.<field>``."""
        items: list[LineItem] = []
        for index, raw in enumerate(inputs):
            data = {k: v for k, v in raw.model_dump().items() if v is not None}
            data.setdefault("position", index)
            try:
                items.append(LineItem.model_validate(data))
            except PydanticValidationError as exc:
                for field, messages in pydantic_errors_to_fields(exc).items():
                    errors.setdefault(f"line_items.{index}.{field}", []).extend(messages)
        return order_line_items(items)

    def _currency(self, value: str | None, errors: dict[str, list[str]]) -> str:
        currency = (value or self.config.default_currency).upper()
        if not validate_currency(currency):
            errors.setdefault("currency", []).append(f"unsupported currency {currency!r}")
        return currency

    def _validated(
        self,
        model_cls: type[ModelT],
        entity: str,
        data: dict[str, Any],
        errors: dict[str, list[str]],
    ) -> ModelT:
        """Build *model_cls* from *data*; raise one ValidationError with every problem."""
        try:
            model = model_cls.model_validate(data)
        except PydanticValidationError as exc:
            for field, messages in pydantic_errors_to_fields(exc).items():
                errors.setdefault(field, []).extend(messages)
        else:
            if not errors:
                return model
        logger.warning("Rejected %s: %s", entity, errors)
        raise ValidationError(errors, entity=entity)

    #############
    # Numbering #
    #############

    async def _create_numbered(
        self,
        tenant_id: str,
        kind: DocumentKind,
        candidate: DocT,
        supplied_number: str | None,
        create: Callable[[DocT], Awaitable[DocT]],
    ) -> DocT:
        """Persist *candidate* under the supplied or a freshly assigned number.

        A supplied number is never replaced: if it is taken the caller gets a
        :class:`ValidationError`.  Generated numbers are redrawn when a
        concurrent writer took them first.
        """
        entity = kind.value

        async def exists(number: str) -> bool:
            return await self.store.number_exists(tenant_id, kind, number)

        if supplied_number:
            number = supplied_number.strip()
            if await exists(number):
                raise ValidationError({"number": ["has already been taken"]}, entity=entity)
            try:
                created = await create(candidate.model_copy(update={"number": number}))
            except DuplicateNumberError as exc:
                raise ValidationError(
                    {"number": ["has already been taken"]}, entity=entity
                ) from exc
            await self.numbers.observe(tenant_id, kind, number)
            return created

        attempts = self.config.number_max_retries
        for attempt in range(1, attempts + 1):
            number = await self.numbers.assign(tenant_id, kind, exists)
            try:
                return await create(candidate.model_copy(update={"number": number}))
            except DuplicateNumberError:
                logger.warning(
                    "Lost race for %s %s in tenant %s (attempt %d/%d)",
                    entity, number, tenant_id, attempt, attempts,
                )
        raise ConcurrencyConflictError(
            f"create_{entity}", f"could not assign a unique number after {attempts} attempts"
        )

    ###############
    # Transitions #
    ###############

    async def _transition(
        self,
        machine: StateMachine,
        load: Callable[[], Awaitable[DocT]],
        save: Callable[[DocT], Awaitable[DocT]],
        event: str,
        *,
        today: date | None = None,
        **updates: Any,
    ) -> DocT:
        """Fire *event* as an optimistic read-modify-write.

        On a version conflict the document is read again and the guard is
        re-evaluated, so the loser of a race sees the winner's status and
        fails with :class:`InvalidTransitionError`.
        """
        attempts = self.config.transition_max_retries
        attempt = 0
        while True:
            attempt += 1
            current = await load()
            now = self.now()
            changed = machine.fire(current, event, now=now, today=today or now.date(), **updates)
            try:
                saved = await save(changed)
            except ConcurrencyConflictError:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Conflict on %s %s %s, retrying (attempt %d/%d)",
                    machine.entity, event, current.id, attempt, attempts,
                )
                continue
            logger.info(
                "%s %s: %s -> %s (%s)",
                machine.entity, current.id, current.status.value, saved.status.value, event,
            )
            return saved


__all__ = ["UNASSIGNED_NUMBER", "BaseDocumentService", "Clock"]
