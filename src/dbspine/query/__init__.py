"""dbspine query builders.

Builders assemble SQL text and a parallel list of ``?`` parameters.
They never execute anything; hand them to ``DbServices``.

Architecture::

    literals.py     Literal rendering, escaping and LIKE patterns
    base.py         AbstractQuery (table, WHERE, JOIN), SearchMethod, ForeignColumn
    select.py       SelectQuery, Ordering
    update.py       UpdateQuery
    delete.py       DeleteQuery
"""

from dbspine.query.base import AbstractQuery, ForeignColumn, SearchMethod
from dbspine.query.delete import DeleteQuery
from dbspine.query.literals import create_like_pattern, escape_literal, render_literal
from dbspine.query.select import Ordering, SelectQuery
from dbspine.query.update import UpdateQuery

__all__ = [
    "AbstractQuery",
    "ForeignColumn",
    "SearchMethod",
    "SelectQuery",
    "Ordering",
    "UpdateQuery",
    "DeleteQuery",
    "create_like_pattern",
    "escape_literal",
    "render_literal",
]
