"""Rendering and parsing of document numbers (``INV-10001``, ``PRJ-01001``)."""
from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class NumberFormat:
    """``{prefix}-{n}`` with optional zero padding.

    >>> NumberFormat("INV", base=10001).render(10001)
    'INV-10001'
    >>> NumberFormat("PRJ", base=1001, padding=5).render(1001)
    'PRJ-01001'
    >>> NumberFormat("EST", base=10001).parse("EST-10042")
    10042
    """

    prefix: str
    base: int = 1
    padding: int = 0
    _pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_pattern", re.compile(rf"^{re.escape(self.prefix)}-(\d+)$"))

    def render(self, value: int) -> str:
        return f"{self.prefix}-{value:0{self.padding}d}"

    def parse(self, number: str) -> int | None:
        """Return the numeric suffix of *number*, or ``None`` if it has another shape."""
        m = self._pattern.match(number.strip())
        return int(m.group(1)) if m else None


__all__ = ["NumberFormat"]
