"""Commit-or-rollback scopes with post-commit hooks."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, SessionTransaction

from campus_gate.core.errors import LockTimeoutError
from campus_gate.db.session import SQLITE_BEGIN_MODE

logger = logging.getLogger(__name__)

_DEPTH = "campus_gate.uow_depth"
_AFTER_COMMIT = "campus_gate.after_commit"
_FLUSHED = "campus_gate.flushed"
_WRITER = "campus_gate.sqlite_writer"


@contextmanager
def unit_of_work(
    db: Session,
    *,
    commit_on: tuple[type[BaseException], ...] = (),
) -> Iterator[Session]:
    """Run the enclosed block as one atomic unit of work.

    The outermost scope commits when the block finishes and rolls back when it
    raises, unless the exception is an instance of ``commit_on``: those are
    committed and then re-raised, so that a failure can still persist state.
    Nested scopes join the outermost one and never commit on their own.

    On SQLite the outermost scope takes the database write lock when it opens,
    so writers queue behind each other instead of failing on a stale snapshot.
    """
    depth = db.info.get(_DEPTH, 0)
    if depth == 0:
        _open_writer_transaction(db)
    db.info[_DEPTH] = depth + 1
    try:
        yield db
    except BaseException as exc:
        if depth == 0:
            if commit_on and isinstance(exc, commit_on):
                _commit(db)
            else:
                _rollback(db)
        raise
    else:
        if depth == 0:
            _commit(db)
    finally:
        if depth == 0:
            db.info.pop(_DEPTH, None)
        else:
            db.info[_DEPTH] = depth


def on_commit(db: Session, callback: Callable[[], object]) -> None:
    """Run ``callback`` once the current unit of work has committed.

    Callbacks are dropped on rollback. They run after every lock taken in the
    unit of work has been released, and their exceptions are logged, never raised.
    """
    if not in_unit_of_work(db):
        raise RuntimeError("on_commit() needs an open unit_of_work()")
    db.info.setdefault(_AFTER_COMMIT, []).append(callback)


def in_unit_of_work(db: Session) -> bool:
    return db.info.get(_DEPTH, 0) > 0


def _open_writer_transaction(db: Session) -> None:
    if db.get_bind().dialect.name != "sqlite":
        return
    if db.in_transaction():
        if db.info.get(_WRITER) or _has_changes(db):
            return
        # A read snapshot cannot be upgraded once another writer has committed.
        db.rollback()
    try:
        db.connection(execution_options={SQLITE_BEGIN_MODE: "IMMEDIATE"})
    except OperationalError as exc:
        db.rollback()
        if "locked" not in str(exc.orig):
            raise
        logger.warning("Timed out waiting for the SQLite write lock")
        raise LockTimeoutError() from exc
    db.info[_WRITER] = True


def _has_changes(db: Session) -> bool:
    return bool(db.info.get(_FLUSHED) or db.new or db.dirty or db.deleted)


def _commit(db: Session) -> None:
    callbacks: list[Callable[[], object]] = db.info.pop(_AFTER_COMMIT, [])
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    for callback in callbacks:
        try:
            callback()
        except Exception:
            logger.exception("Post-commit callback %r failed", callback)


def _rollback(db: Session) -> None:
    db.info.pop(_AFTER_COMMIT, None)
    db.rollback()


@event.listens_for(Session, "after_flush")
def _note_flush(db: Session, flush_context: object) -> None:
    db.info[_FLUSHED] = True


@event.listens_for(Session, "after_transaction_end")
def _reset_transaction_state(db: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        db.info.pop(_FLUSHED, None)
        db.info.pop(_WRITER, None)
