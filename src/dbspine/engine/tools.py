"""Cursor helpers shared by the engine and result processors."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from dbspine.core.protocols import DBAPICursor


def column_labels(cursor: DBAPICursor) -> list[str]:
    """Lower-cased column labels of the current result set."""
    if cursor.description is None:
        return []
    return [str(d[0]).lower() for d in cursor.description]


def iter_rows(cursor: DBAPICursor) -> Iterator[Sequence[Any]]:
    """Yield rows one at a time until the cursor is exhausted."""
    if cursor.description is None:
        return
    while True:
        row = cursor.fetchone()
        if row is None:
            return
        yield row


def first_value(cursor: DBAPICursor) -> Any:
    """First column of the first row, or ``None`` for an empty result."""
    if cursor.description is None:
        return None
    row = cursor.fetchone()
    if row is None:
        return None
    return row[0]


def rows_as_dicts(cursor: DBAPICursor) -> list[dict[str, Any]]:
    """All remaining rows as dicts keyed by lower-cased column label."""
    labels = column_labels(cursor)
    return [dict(zip(labels, row)) for row in iter_rows(cursor)]


__all__ = ["column_labels", "iter_rows", "first_value", "rows_as_dicts"]
