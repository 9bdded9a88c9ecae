"""Database session configuration."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from campus_gate.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import campus_gate.models  # noqa: E402,F401

# Connection execution option naming the SQLite BEGIN mode, e.g. "IMMEDIATE".
SQLITE_BEGIN_MODE = "campus_gate_sqlite_begin"

MYSQL_DIALECTS = frozenset({"mysql", "mariadb"})


def _enable_sqlite_transactions(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, decide when transactions begin.

    pysqlite defers BEGIN until the first write, which breaks SAVEPOINT and
    makes reads run outside the transaction that later writes to the same
    rows. Foreign keys are also off by default on SQLite. A connection
    carrying the ``SQLITE_BEGIN_MODE`` option starts its transaction in that
    mode so that writers can claim the database lock up front.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        mode = connection.get_execution_options().get(SQLITE_BEGIN_MODE)
        connection.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


def set_innodb_lock_wait(dbapi_connection: Any, seconds: float) -> None:
    """Bound how long InnoDB waits for a row lock on this connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {max(1, round(seconds))}")
    cursor.close()


def build_engine(
    url: str,
    *,
    echo: bool = False,
    lock_timeout_seconds: float | None = None,
    **kwargs: Any,
) -> Engine:
    """Create an engine for ``url`` with the connection setup the services rely on."""
    if lock_timeout_seconds is None:
        lock_timeout_seconds = settings.lock_timeout_seconds
    if url.startswith("sqlite"):
        connect_args = kwargs.setdefault("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", lock_timeout_seconds)
    new_engine = create_engine(url, pool_pre_ping=True, echo=echo, **kwargs)
    dialect = new_engine.dialect.name
    if dialect == "sqlite":
        _enable_sqlite_transactions(new_engine)
    elif dialect in MYSQL_DIALECTS:

        @event.listens_for(new_engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            set_innodb_lock_wait(dbapi_connection, lock_timeout_seconds)

    return new_engine


engine = build_engine(settings.effective_database_url, echo=settings.sql_debug)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind: Engine | None = None) -> None:
    """Create all database tables."""
    Base.metadata.create_all(bind=bind or engine)


def drop_tables(bind: Engine | None = None) -> None:
    """Drop all database tables."""
    Base.metadata.drop_all(bind=bind or engine)
