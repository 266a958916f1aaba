"""dbspine record mapping -- record classes to tables and rows to records.

Architecture::

    values.py       ServerNow / NOW, LocalizedString, properties codec
    types.py        SqlType, converter table, annotation resolution
    fields.py       Column / column(), FieldHandler implementations
    classes.py      @table_record, ClassHandler, ReflectedClassHandler
    registry.py     get_class_handler (insert-once cache)
"""

from dbspine.mapping.classes import ClassHandler, ReflectedClassHandler, TableRecord, table_record
from dbspine.mapping.fields import (
    Column,
    FieldHandler,
    ReflectedFieldHandler,
    StringCollectionFieldHandler,
    column,
)
from dbspine.mapping.registry import clear_class_handlers, get_class_handler, register_class_handler
from dbspine.mapping.types import Converter, SqlType, register_converter, sql_type_for
from dbspine.mapping.values import (
    NOW,
    LocalizedString,
    ServerNow,
    properties_from_string,
    properties_to_string,
)

__all__ = [
    "ClassHandler",
    "ReflectedClassHandler",
    "TableRecord",
    "table_record",
    "Column",
    "FieldHandler",
    "ReflectedFieldHandler",
    "StringCollectionFieldHandler",
    "column",
    "clear_class_handlers",
    "get_class_handler",
    "register_class_handler",
    "Converter",
    "SqlType",
    "register_converter",
    "sql_type_for",
    "NOW",
    "LocalizedString",
    "ServerNow",
    "properties_from_string",
    "properties_to_string",
]
