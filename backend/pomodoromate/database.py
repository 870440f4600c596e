"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `app.db` by default) and
provides small helpers used by the application and tests.

SQLite ignores `SELECT ... FOR UPDATE`. For SQLite URLs, transactions
opened inside `immediate_transactions()` start with `BEGIN IMMEDIATE`,
which takes the database write lock up front and serialises concurrent
joins the same way the room row lock does on PostgreSQL/MySQL. All other
transactions use a plain deferred `BEGIN`, and the database runs in WAL
mode, so lookups neither hold nor wait for the write lock.
"""

from contextlib import contextmanager
from contextvars import ContextVar

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from .config import settings

DB_URL = settings.DATABASE_URL
_is_sqlite = DB_URL.startswith("sqlite")
_begin_immediate = ContextVar("pomodoromate_begin_immediate", default=False)

engine = create_engine(
    DB_URL,
    echo=False,
    connect_args={"check_same_thread": False, "timeout": 30} if _is_sqlite else {},
)

if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _configure_sqlite_connection(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE" if _begin_immediate.get() else "BEGIN")


@contextmanager
def immediate_transactions():
    """Start SQLite transactions opened in this block with `BEGIN IMMEDIATE`.

    A no-op on other databases, where the row lock taken by
    `with_for_update()` does the serialising.
    """
    token = _begin_immediate.set(True)
    try:
        yield
    finally:
        _begin_immediate.reset(token)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and tests;
    production deployments should rely on a proper migration tool
    (alembic) instead.
    """
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes. Anything not committed by a service is
    rolled back on close. Instances stay loaded after a commit so
    controllers can serialise them without opening a new transaction.
    """
    with Session(engine, expire_on_commit=False) as session:
        yield session
