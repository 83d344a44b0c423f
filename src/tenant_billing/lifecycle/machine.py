"""Table-driven status transitions for frozen documents.

A :class:`StateMachine` never mutates its input.  :meth:`StateMachine.fire`
returns a new model with the status, the owning timestamp and any extra
updates applied together, or raises
:class:`~tenant_billing.core.exceptions.InvalidTransitionError`.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Protocol, TypeVar

from tenant_billing.core.exceptions import InvalidTransitionError
from tenant_billing.core.types import utc_now

logger = logging.getLogger(__name__)


class Stateful(Protocol):
    @property
    def status(self) -> Any: ...

    def model_copy(self, *, update: dict[str, Any] | None = None, deep: bool = False) -> Any: ...


DocT = TypeVar("DocT", bound=Stateful)
Guard = Callable[[Any, date], bool]


@dataclass(frozen=True)
class Transition:
    """One edge of a transition table.

    Attributes:
        event: Name callers fire, e.g. ``"mark_paid"``
        sources: Statuses the event may be fired from
        target: Status after the event
        timestamp_field: Field set to ``now`` by this transition only
        guard: Extra condition evaluated against ``(document, today)``
        guard_message: Reason reported when *guard* refuses
    """

    event: str
    sources: frozenset[StrEnum]
    target: StrEnum
    timestamp_field: str | None = None
    guard: Guard | None = None
    guard_message: str | None = None


class StateMachine:
    """A closed transition table for one document type.

    Example:
        ```python
        sent = INVOICE_MACHINE.fire(invoice, "send", now=now)
        paid = INVOICE_MACHINE.fire(sent, "mark_paid", now=now, payment_method="card")
        INVOICE_MACHINE.fire(paid, "cancel")  # raises InvalidTransitionError
        ```
    """

    def __init__(self, entity: str, transitions: Iterable[Transition]) -> None:
        self.entity = entity
        self._transitions: dict[str, Transition] = {}
        for transition in transitions:
            if transition.event in self._transitions:
                raise ValueError(f"Duplicate event {transition.event!r} for {entity}")
            self._transitions[transition.event] = transition

    def __repr__(self) -> str:
        return f"StateMachine(entity={self.entity!r}, events={list(self._transitions)!r})"

    def events(self) -> tuple[str, ...]:
        return tuple(self._transitions)

    def transition(self, event: str) -> Transition:
        try:
            return self._transitions[event]
        except KeyError:
            raise ValueError(f"Unknown {self.entity} event: {event!r}") from None

    def _refusal(self, doc: Any, transition: Transition, today: date) -> str | None:
        if doc.status not in transition.sources:
            return ""
        if transition.guard is not None and not transition.guard(doc, today):
            return transition.guard_message or "guard failed"
        return None

    def can_fire(self, doc: Any, event: str, today: date | None = None) -> bool:
        """Return True if *event* would succeed on *doc*."""
        transition = self.transition(event)
        return self._refusal(doc, transition, today or utc_now().date()) is None

    def allowed_events(self, doc: Any, today: date | None = None) -> list[str]:
        today = today or utc_now().date()
        return [
            t.event for t in self._transitions.values() if self._refusal(doc, t, today) is None
        ]

    def fire(
        self,
        doc: DocT,
        event: str,
        *,
        now: datetime | None = None,
        today: date | None = None,
        **updates: Any,
    ) -> DocT:
        """Apply *event* to *doc* and return the updated copy.

        Args:
            doc: Current document (left untouched)
            event: Event name from the table
            now: Timestamp for the transition (defaults to the current UTC time)
            today: Calendar date used by guards (defaults to ``now.date()``)
            **updates: Extra fields written with the status change; may override the timestamp

        Raises:
            InvalidTransitionError: If the status or guard refuses the event
        """
        transition = self.transition(event)
        now = now or utc_now()
        today = today or now.date()

        refusal = self._refusal(doc, transition, today)
        if refusal is not None:
            logger.warning(
                "Refused %s %s from status %s", self.entity, event, doc.status.value
            )
            raise InvalidTransitionError(
                event, doc.status.value, entity=self.entity, reason=refusal or None
            )

        changes: dict[str, Any] = {"status": transition.target, "updated_at": now}
        if transition.timestamp_field is not None:
            changes[transition.timestamp_field] = now
        changes.update(updates)
        return doc.model_copy(update=changes)


__all__ = ["Guard", "StateMachine", "Transition"]
