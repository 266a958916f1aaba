"""Class handler registry -- one handler per record type, built on first use.

ARCHITECTURE
────────────
::

    get_class_handler(cls)      → cached handler, built once under a per-type lock
    register_class_handler(h)   → install a prebuilt handler (first one wins)
    clear_class_handlers()      → reset (for testing)

Entries are inserted once and never replaced. The global lock is held
only long enough to find or create the per-type lock, so building the
handler of one type never blocks lookups of another.
"""

from __future__ import annotations

import threading
from typing import Any, TypeVar

from dbspine.core.logging import get_logger
from dbspine.mapping.classes import ClassHandler, ReflectedClassHandler, get_table_record

logger = get_logger(__name__)

T = TypeVar("T")

_registry: dict[type, ClassHandler[Any]] = {}
_build_locks: dict[type, threading.Lock] = {}
_registry_lock = threading.Lock()


def _lock_for(cls: type) -> threading.Lock:
    with _registry_lock:
        lock = _build_locks.get(cls)
        if lock is None:
            lock = _build_locks[cls] = threading.Lock()
        return lock


def get_class_handler(cls: type[T]) -> ClassHandler[T]:
    """Handler of ``cls``, built by its ``@table_record(handler=...)`` class
    or ``ReflectedClassHandler``."""
    handler = _registry.get(cls)
    if handler is not None:
        return handler

    with _lock_for(cls):
        handler = _registry.get(cls)
        if handler is None:
            options = get_table_record(cls)
            handler_type = options.handler if options and options.handler else ReflectedClassHandler
            handler = handler_type(cls)
            _registry[cls] = handler
            logger.debug(
                "class_handler_created",
                record_type=cls.__name__,
                table=handler.table_name,
                field_count=len(handler.fields),
            )
    return handler


def register_class_handler(handler: ClassHandler[T]) -> ClassHandler[T]:
    """Install ``handler`` unless one exists already; returns the installed one."""
    cls = handler.record_type
    with _lock_for(cls):
        return _registry.setdefault(cls, handler)


def clear_class_handlers() -> None:
    with _registry_lock:
        _registry.clear()
        _build_locks.clear()


__all__ = ["get_class_handler", "register_class_handler", "clear_class_handlers"]
