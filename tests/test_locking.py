"""Tests for transaction-scoped keyed locks."""

from __future__ import annotations

import threading
import time

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import mysql, oracle
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from campus_gate.core.errors import ErrorCode, LockTimeoutError
from campus_gate.db.locking import KeyedLockStore, is_lock_timeout
from campus_gate.db.session import set_innodb_lock_wait
from campus_gate.models import User
from tests.conftest import key_is_held


def test_sqlite_uses_in_process_locks(db_session: Session) -> None:
    assert KeyedLockStore.uses_row_locks(db_session) is False


def test_lock_held_until_commit(db_session: Session, lock_store: KeyedLockStore) -> None:
    lock_store.acquire(db_session, "user:1")
    assert key_is_held(lock_store, "user:1")

    db_session.commit()

    assert not key_is_held(lock_store, "user:1")


def test_lock_released_on_rollback(db_session: Session, lock_store: KeyedLockStore) -> None:
    lock_store.acquire(db_session, "user:1")
    db_session.rollback()
    assert not key_is_held(lock_store, "user:1")


def test_reacquire_in_same_session_is_noop(db_session: Session, lock_store: KeyedLockStore) -> None:
    lock_store.acquire(db_session, "user:1")
    lock_store.acquire(db_session, "user:1")
    db_session.commit()
    assert not key_is_held(lock_store, "user:1")


def test_savepoint_end_keeps_lock(db_session: Session, lock_store: KeyedLockStore) -> None:
    db_session.execute(select(User.id)).all()
    lock_store.acquire(db_session, "user:1")
    with db_session.begin_nested():
        db_session.execute(select(User.id)).all()
    assert key_is_held(lock_store, "user:1")
    db_session.commit()
    assert not key_is_held(lock_store, "user:1")


def test_contended_key_times_out(session_factory: sessionmaker[Session]) -> None:
    store = KeyedLockStore(timeout_seconds=0.1)
    with session_factory() as holder, session_factory() as waiter:
        store.acquire(holder, "email_otp:SIGNUP:a@kyonggi.ac.kr")
        with pytest.raises(LockTimeoutError) as exc_info:
            store.acquire(waiter, "email_otp:SIGNUP:a@kyonggi.ac.kr")
        holder.rollback()

    assert exc_info.value.error_code is ErrorCode.LOCK_TIMEOUT
    assert exc_info.value.retry_after_seconds == 1
    assert not key_is_held(store, "email_otp:SIGNUP:a@kyonggi.ac.kr")


def test_distinct_keys_do_not_block(session_factory: sessionmaker[Session]) -> None:
    store = KeyedLockStore(timeout_seconds=0.1)
    with session_factory() as first, session_factory() as second:
        store.acquire(first, "a")
        store.acquire(second, "b")
        first.rollback()
        second.rollback()


def test_waiter_proceeds_after_release(session_factory: sessionmaker[Session]) -> None:
    store = KeyedLockStore(timeout_seconds=5.0)
    order: list[str] = []
    acquired = threading.Event()

    def _waiter() -> None:
        with session_factory() as session:
            acquired.wait()
            store.acquire(session, "shared")
            order.append("waiter")
            session.rollback()

    with session_factory() as holder:
        store.acquire(holder, "shared")
        thread = threading.Thread(target=_waiter)
        thread.start()
        acquired.set()
        time.sleep(0.05)
        order.append("holder")
        holder.commit()
        thread.join(timeout=10)

    assert order == ["holder", "waiter"]


class _OracleError:
    def __init__(self, code: int) -> None:
        self.code = code


def _fake_session(mocker, dialect: str):
    db = mocker.MagicMock()
    db.get_bind.return_value.dialect.name = dialect
    return db


@pytest.mark.parametrize(
    ("dialect", "expected"),
    [
        ("postgresql", True),
        ("mysql", True),
        ("mariadb", True),
        ("oracle", True),
        ("sqlite", False),
    ],
)
def test_row_lock_dialects(mocker, dialect: str, expected: bool) -> None:
    assert KeyedLockStore.uses_row_locks(_fake_session(mocker, dialect)) is expected


def test_mariadb_locks_rows_without_session_statements(mocker) -> None:
    db = _fake_session(mocker, "mariadb")

    KeyedLockStore().fetch_locked(db, select(User), key="user:1")

    assert db.execute.call_count == 1
    (stmt,), _ = db.execute.call_args
    assert "FOR UPDATE" in str(stmt.compile(dialect=mysql.dialect()))


def test_postgres_bounds_the_row_lock_wait(mocker) -> None:
    db = _fake_session(mocker, "postgresql")

    KeyedLockStore(timeout_seconds=2.5).fetch_locked(db, select(User), key="user:1")

    first, second = db.execute.call_args_list
    assert str(first.args[0]) == "SET LOCAL lock_timeout = '2500ms'"
    assert second.args[0]._for_update_arg is not None


def test_oracle_polls_nowait_until_the_row_frees(mocker) -> None:
    db = _fake_session(mocker, "oracle")
    busy = DBAPIError("SELECT", {}, Exception(_OracleError(54)))
    row = User(nickname="holder")
    db.execute.side_effect = [busy, mocker.MagicMock(**{"scalars.return_value.first.return_value": row})]
    sleep = mocker.patch("campus_gate.db.locking.time.sleep")

    found = KeyedLockStore(timeout_seconds=5.0).fetch_locked(db, select(User), key="user:1")

    assert found is row
    assert db.execute.call_count == 2
    sleep.assert_called_once()
    (stmt,), _ = db.execute.call_args
    assert "NOWAIT" in str(stmt.compile(dialect=oracle.dialect()))


def test_oracle_gives_up_after_the_timeout(mocker) -> None:
    db = _fake_session(mocker, "oracle")
    db.execute.side_effect = DBAPIError("SELECT", {}, Exception(_OracleError(54)))
    mocker.patch("campus_gate.db.locking.time.sleep")

    with pytest.raises(LockTimeoutError) as exc_info:
        KeyedLockStore(timeout_seconds=0).fetch_locked(db, select(User), key="user:1")
    assert exc_info.value.key == "user:1"


def test_lock_timeout_classification() -> None:
    class _PgError(Exception):
        sqlstate = "55P03"

    assert is_lock_timeout(OperationalError("SELECT", {}, _PgError()))
    assert is_lock_timeout(OperationalError("SELECT", {}, Exception(1205, "Lock wait timeout")))
    assert is_lock_timeout(DBAPIError("SELECT", {}, Exception(_OracleError(54))))
    assert not is_lock_timeout(OperationalError("SELECT", {}, Exception(2006, "gone away")))
    assert not is_lock_timeout(OperationalError("SELECT", {}, Exception()))


def test_innodb_lock_wait_is_set_once_per_connection(mocker) -> None:
    dbapi_connection = mocker.MagicMock()

    set_innodb_lock_wait(dbapi_connection, 2.4)

    cursor = dbapi_connection.cursor.return_value
    cursor.execute.assert_called_once_with("SET SESSION innodb_lock_wait_timeout = 2")
    cursor.close.assert_called_once()
