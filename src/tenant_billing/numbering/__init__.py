"""Per-tenant sequential document numbering.

Sequence backends:
- SQLAlchemy: ``document_sequences`` table next to the documents
- Redis: atomic counters shared by many processes
- In-Memory: testing and development

Example:
    ```python
    from tenant_billing.numbering import InMemorySequenceStore, NumberGenerator

    generator = NumberGenerator(InMemorySequenceStore(), config)
    number = await generator.next_number("acct-1", DocumentKind.ESTIMATE)
    ```
"""

from tenant_billing.numbering.formats import NumberFormat
from tenant_billing.numbering.generator import NumberGenerator
from tenant_billing.numbering.memory import InMemorySequenceStore
from tenant_billing.numbering.sequence_store import SequenceStore
from tenant_billing.numbering.sqlalchemy import SQLAlchemySequenceStore

# Optional, requires: pip install tenant-billing[redis]
try:
    from tenant_billing.numbering.redis import RedisSequenceStore
except ImportError:
    RedisSequenceStore = None  # type: ignore[assignment, misc]

__all__ = [
    "InMemorySequenceStore",
    "NumberFormat",
    "NumberGenerator",
    "RedisSequenceStore",
    "SQLAlchemySequenceStore",
    "SequenceStore",
]
