"""
Per-resource serialization of schema changes.

Two layers: an in-process mutex per resource name, and on PostgreSQL a
transaction-scoped advisory lock so separate processes sharing one database
also serialize. Names are compared case-insensitively because they map to
lowercase table names.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.engine import Connection

from resource_engine.specs.field_types import POSTGRES


def _lock_key(name: str) -> str:
    return name.lower()


@dataclass
class _NamedLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ResourceLockRegistry:
    """Named mutexes, created on first use and dropped when nobody holds or awaits them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _NamedLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        """Hold the mutex for a resource name for the duration of the block."""
        key = _lock_key(name)
        with self._guard:
            entry = self._locks.setdefault(key, _NamedLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]


def acquire_advisory_lock(conn: Connection, name: str) -> None:
    """Take a transaction-scoped advisory lock on PostgreSQL (no-op elsewhere)."""
    if conn.dialect.name != POSTGRES:
        return
    conn.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
        {"key": f"resource_engine:{_lock_key(name)}"},
    )
