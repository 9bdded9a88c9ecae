"""Exclusive per-key locks scoped to one database transaction.

Policy code reads a record through :meth:`KeyedLockStore.fetch_locked` and
may then mutate it knowing no other unit of work holds the same key until
the surrounding transaction ends. On databases with row locks this is a
``SELECT ... FOR UPDATE``. SQLite has no row locks, so a named in-process
mutex is held instead and released when the session's root transaction
commits or rolls back.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import Result, Select, event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, SessionTransaction

from campus_gate.core.errors import LockTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROW_LOCK_DIALECTS = frozenset({"postgresql", "mysql", "mariadb", "oracle"})

_HELD_LOCKS = "campus_gate.held_locks"

# SQLSTATE lock_not_available / ER_LOCK_WAIT_TIMEOUT / ORA-00054 resource busy
_PG_LOCK_TIMEOUT = "55P03"
_MYSQL_LOCK_TIMEOUT = 1205
_ORACLE_RESOURCE_BUSY = 54

_ORACLE_POLL_SECONDS = 0.05


@dataclass
class _KeyEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    waiters: int = 0


class KeyedLockStore:
    """Hand out exclusive holds on logical keys for the span of a transaction."""

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._entries: dict[str, _KeyEntry] = {}

    @staticmethod
    def uses_row_locks(db: Session) -> bool:
        return db.get_bind().dialect.name in ROW_LOCK_DIALECTS

    def fetch_locked(self, db: Session, stmt: Select[tuple[T]], *, key: str) -> T | None:
        """Return the first row of ``stmt`` with ``key`` held until the transaction ends.

        When no row matches, row-locking databases hold nothing; callers rely on a
        unique constraint to arbitrate the first insert.
        """
        stmt = stmt.execution_options(populate_existing=True)
        if self.uses_row_locks(db):
            try:
                return self._select_for_update(db, stmt).scalars().first()
            except DBAPIError as exc:
                if is_lock_timeout(exc):
                    logger.warning("Timed out waiting for row lock on %s", key)
                    raise LockTimeoutError(key) from exc
                raise

        self.acquire(db, key)
        return db.execute(stmt).scalars().first()

    def fetch_all_locked(
        self,
        db: Session,
        stmt: Select[tuple[T]],
        *,
        key_of: Callable[[T], str],
    ) -> list[T]:
        """Return every row of ``stmt``, each held exclusively for the transaction.

        Without row locks the keys are taken in sorted order so that two bulk
        callers can never wait on each other.
        """
        stmt = stmt.execution_options(populate_existing=True)
        if self.uses_row_locks(db):
            try:
                return list(self._select_for_update(db, stmt).scalars())
            except DBAPIError as exc:
                if is_lock_timeout(exc):
                    raise LockTimeoutError() from exc
                raise

        candidates = list(db.execute(stmt).scalars())
        keys = sorted({key_of(row) for row in candidates})
        for key in keys:
            self.acquire(db, key)
        held = set(keys)
        # Re-read so that state changed while waiting is not acted upon.
        return [row for row in db.execute(stmt).scalars() if key_of(row) in held]

    def acquire(self, db: Session, key: str) -> None:
        """Hold ``key`` for ``db`` until its root transaction ends.

        Re-acquiring a key the session already holds is a no-op.
        """
        held: list[tuple[KeyedLockStore, str]] = db.info.setdefault(_HELD_LOCKS, [])
        if (self, key) in held:
            return
        # Holds end with the root transaction, so make sure one is open.
        db.connection()

        with self._guard:
            entry = self._entries.setdefault(key, _KeyEntry())
            entry.waiters += 1

        if not entry.lock.acquire(timeout=self.timeout_seconds):
            self._forget(key, entry)
            logger.warning("Timed out waiting for lock on %s", key)
            raise LockTimeoutError(key)
        held.append((self, key))

    def _release(self, key: str) -> None:
        with self._guard:
            entry = self._entries.get(key)
        if entry is None:  # pragma: no cover - released twice
            return
        entry.lock.release()
        self._forget(key, entry)

    def _forget(self, key: str, entry: _KeyEntry) -> None:
        with self._guard:
            entry.waiters -= 1
            if entry.waiters == 0:
                self._entries.pop(key, None)

    def _select_for_update(self, db: Session, stmt: Select[tuple[T]]) -> Result[tuple[T]]:
        dialect = db.get_bind().dialect.name
        if dialect == "oracle":
            return self._poll_nowait(db, stmt)
        if dialect == "postgresql":
            millis = max(1, int(self.timeout_seconds * 1000))
            db.execute(text(f"SET LOCAL lock_timeout = '{millis}ms'"))
        # MySQL and MariaDB get innodb_lock_wait_timeout when the connection opens.
        return db.execute(stmt.with_for_update())

    def _poll_nowait(self, db: Session, stmt: Select[tuple[T]]) -> Result[tuple[T]]:
        # Oracle has no per-session row lock timeout, so retry NOWAIT until the deadline.
        deadline = time.monotonic() + self.timeout_seconds
        while True:
            try:
                return db.execute(stmt.with_for_update(nowait=True))
            except DBAPIError as exc:
                if not is_lock_timeout(exc) or time.monotonic() >= deadline:
                    raise
            time.sleep(_ORACLE_POLL_SECONDS)


def is_lock_timeout(exc: DBAPIError) -> bool:
    """Tell whether ``exc`` reports a row lock that could not be obtained in time."""
    orig: Any = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == _PG_LOCK_TIMEOUT:
        return True
    args: Sequence[Any] = getattr(orig, "args", ())
    if not args:
        return False
    if args[0] == _MYSQL_LOCK_TIMEOUT:
        return True
    return getattr(args[0], "code", None) == _ORACLE_RESOURCE_BUSY


def release_held_locks(db: Session) -> None:
    """Release every in-process key held by ``db``."""
    held: list[tuple[KeyedLockStore, str]] = db.info.pop(_HELD_LOCKS, [])
    for store, key in reversed(held):
        store._release(key)


@event.listens_for(Session, "after_transaction_end")
def _release_on_transaction_end(db: Session, transaction: SessionTransaction) -> None:
    # Savepoints end inside the root transaction and must keep their locks.
    if transaction.parent is None:
        release_held_locks(db)
