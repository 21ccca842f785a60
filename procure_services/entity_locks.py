"""
procure_services.entity_locks -- per-entity serialization within a process.

Responsibility:
    Hands out one re-entrant lock per entity key (``requisition:<id>``,
    ``budget:<id>``, ``sequence:<name>``) so that every read-check-write-commit
    sequence on an entity runs alone.  Shared by all workflow instances in
    the process.

Invariants enforced:
    - Keys passed to one ``hold()`` call are acquired in sorted order.
    - Acquisition never blocks longer than the timeout; it raises
      ``LockTimeoutError`` and releases whatever it already took.

Non-goals:
    - Cross-process exclusion.  That is the job of ``SELECT ... FOR UPDATE``
      on PostgreSQL.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from procure_kernel.exceptions import LockTimeoutError
from procure_kernel.logging_config import get_logger

logger = get_logger("services.entity_locks")


def requisition_key(requisition_id: UUID) -> str:
    return f"requisition:{requisition_id}"


def budget_key(budget_id: UUID) -> str:
    return f"budget:{budget_id}"


def sequence_key(name: str) -> str:
    return f"sequence:{name}"


class _LockEntry:
    """A lock plus the number of callers holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class EntityLockRegistry:
    """Registry of re-entrant locks keyed by entity.

    An entry lives only while some ``hold()`` call holds or waits on it, so
    the registry stays bounded by the number of in-flight operations.
    """

    def __init__(self, default_timeout: float = 30.0):
        self._default_timeout = default_timeout
        self._locks: dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _LockEntry()
                self._locks[key] = entry
            entry.users += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def active_keys(self) -> frozenset[str]:
        """Keys currently held or waited on."""
        with self._guard:
            return frozenset(self._locks)

    @contextmanager
    def hold(self, *keys: str, timeout: float | None = None) -> Iterator[None]:
        """Hold every lock in ``keys`` for the duration of the block.

        Raises:
            LockTimeoutError: a lock was not acquired within ``timeout``.
        """
        wait = self._default_timeout if timeout is None else timeout
        acquired: list[tuple[str, threading.RLock]] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                if not lock.acquire(timeout=wait):
                    self._checkin(key)
                    logger.warning(
                        "entity_lock_timeout",
                        extra={"lock_key": key, "timeout_seconds": wait},
                    )
                    raise LockTimeoutError(key, wait)
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


_default_registry = EntityLockRegistry()


def default_lock_registry() -> EntityLockRegistry:
    """The process-wide registry used when a workflow is not given one."""
    return _default_registry
