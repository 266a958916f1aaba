"""
Query timing for the slow-query log.

Every statement the engine executes runs inside ``timed_query``. When the
block ends, the timer holds the elapsed time, and the engine decides from
``settings.slow_query_threshold`` whether to log ``slow_query`` at WARNING
or ``query`` at DEBUG.

Usage:
    with timed_query(sql, params) as timer:
        cursor.execute(sql, params)
        timer.add_metric("rowcount", cursor.rowcount)
    timer.duration_seconds

Performance safety:
- Timer overhead is ~1μs (time.perf_counter)
- Parameters are rendered with ``repr`` only when the event is logged
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any


@dataclass
class QueryTimer:
    """Elapsed time and metrics of one executed statement."""

    query: str
    parameters: Sequence[Any] = ()
    started_at: float = field(default_factory=time.perf_counter)
    ended_at: float | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    def stop(self) -> QueryTimer:
        """Record end time."""
        self.ended_at = time.perf_counter()
        return self

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return time.perf_counter() - self.started_at
        return self.ended_at - self.started_at

    @property
    def duration_ms(self) -> float:
        return self.duration_seconds * 1000

    def add_metric(self, key: str, value: Any) -> QueryTimer:
        """Add a metric to include in the log output."""
        self.metrics[key] = value
        return self

    def is_slow(self, threshold: float) -> bool:
        return self.duration_seconds > threshold

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        result: dict[str, Any] = {
            "time": round(self.duration_seconds, 3),
            "query": self.query,
            "parameters": [repr(p) for p in self.parameters],
        }
        result.update(self.metrics)
        return result


@contextmanager
def timed_query(query: str, parameters: Sequence[Any] = ()) -> Iterator[QueryTimer]:
    """Time the enclosed statement; the timer is stopped on every exit path."""
    timer = QueryTimer(query=query, parameters=parameters)
    try:
        yield timer
    finally:
        timer.stop()


__all__ = ["QueryTimer", "timed_query"]
