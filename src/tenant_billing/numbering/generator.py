"""Per-tenant document number assignment."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from tenant_billing.core.config import BillingConfig
from tenant_billing.core.exceptions import ConcurrencyConflictError
from tenant_billing.core.types import DocumentKind
from tenant_billing.numbering.formats import NumberFormat
from tenant_billing.numbering.sequence_store import SequenceStore

logger = logging.getLogger(__name__)


class NumberGenerator:
    """Hands out ``INV-10001``-style numbers from a :class:`SequenceStore`.

    The sequence store provides atomicity; the generator adds formatting and
    a bounded retry when a drawn number turns out to be taken already (for
    example by an imported document the counter never saw).

    Example:
        ```python
        generator = NumberGenerator(InMemorySequenceStore(), BillingConfig())
        await generator.next_number("acct-1", DocumentKind.INVOICE)  # "INV-10001"
        await generator.next_number("acct-1", DocumentKind.PROJECT)  # "PRJ-01001"
        ```
    """

    def __init__(self, sequences: SequenceStore, config: BillingConfig | None = None) -> None:
        self.sequences = sequences
        self.config = config or BillingConfig()
        self._formats: dict[DocumentKind, NumberFormat] = {
            kind: self.config.number_format(kind) for kind in DocumentKind
        }

    def format_for(self, kind: DocumentKind) -> NumberFormat:
        return self._formats[kind]

    async def next_number(self, tenant_id: str, kind: DocumentKind) -> str:
        """Allocate and render the next number for *kind* in *tenant_id*."""
        fmt = self._formats[kind]
        value = await self.sequences.next_value(tenant_id, fmt.prefix, fmt.base)
        return fmt.render(value)

    async def observe(self, tenant_id: str, kind: DocumentKind, number: str) -> None:
        """Account for an explicitly supplied number.

        Numbers that do not follow the configured format are left alone; they
        cannot collide with generated ones.
        """
        fmt = self._formats[kind]
        value = fmt.parse(number)
        if value is not None:
            await self.sequences.observe(tenant_id, fmt.prefix, value)

    async def assign(
        self,
        tenant_id: str,
        kind: DocumentKind,
        exists: Callable[[str], Awaitable[bool]],
    ) -> str:
        """Draw numbers until one is free according to *exists*.

        Raises:
            ConcurrencyConflictError: After ``number_max_retries`` taken numbers
        """
        attempts = self.config.number_max_retries
        for attempt in range(1, attempts + 1):
            number = await self.next_number(tenant_id, kind)
            if not await exists(number):
                return number
            logger.warning(
                "Number %s already taken for tenant %s (attempt %d/%d)",
                number, tenant_id, attempt, attempts,
            )
        raise ConcurrencyConflictError(
            "assign_number",
            f"no free {kind.value} number after {attempts} attempts",
            details={"tenant_id": tenant_id, "kind": kind.value},
        )


__all__ = ["NumberGenerator"]
