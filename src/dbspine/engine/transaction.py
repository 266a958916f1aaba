"""Transaction context: the state of one open transaction.

``DbServices`` keeps one ``TransactionContext`` per thread. Bodies passed
to ``DbServices.transaction`` receive it, so they can see the isolation
level, read the transaction id that is bound into every log event, and
set savepoints.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from dbspine.core.dialect import IsolationLevel


def _generate_transaction_id() -> str:
    """Short transaction id (8 hex chars) for log correlation."""
    return uuid.uuid4().hex[:8]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Savepoint:
    """A named savepoint inside the transaction that created it."""

    name: str
    transaction_id: str


@dataclass
class TransactionContext:
    """State of the transaction active on the current thread."""

    connection: Any
    isolation: IsolationLevel = IsolationLevel.SERIALIZABLE
    read_only: bool = False
    transaction_id: str = field(default_factory=_generate_transaction_id)
    started_at: datetime = field(default_factory=utcnow)
    active: bool = True
    savepoints: list[Savepoint] = field(default_factory=list)
    _started: float = field(default_factory=time.perf_counter, repr=False)
    _savepoint_counter: int = field(default=0, repr=False)

    @property
    def duration_seconds(self) -> float:
        return time.perf_counter() - self._started

    def next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"sp_{self.transaction_id}_{self._savepoint_counter}"

    def owns(self, savepoint: Savepoint) -> bool:
        return savepoint.transaction_id == self.transaction_id and savepoint in self.savepoints

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "isolation": self.isolation.value,
            "read_only": self.read_only,
            "duration_ms": round(self.duration_seconds * 1000, 2),
        }


__all__ = ["Savepoint", "TransactionContext"]
