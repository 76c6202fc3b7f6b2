from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from folio.config import settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


connect_args = {}
_is_sqlite = settings.database_url.startswith("sqlite")
if _is_sqlite:
    busy_timeout_ms = max(settings.sqlite_busy_timeout_ms, 0)
    connect_args = {
        "check_same_thread": False,
        "timeout": busy_timeout_ms / 1000.0,
    }

engine = create_engine(settings.database_url, connect_args=connect_args, future=True)
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, class_=Session
)

_ALLOWED_JOURNAL_MODES = {
    "DELETE",
    "TRUNCATE",
    "PERSIST",
    "MEMORY",
    "WAL",
    "OFF",
}


def enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    """Turn on FK enforcement so asset deletes cascade to transactions."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


if _is_sqlite:

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
        busy_timeout_ms = max(settings.sqlite_busy_timeout_ms, 0)
        journal_mode = settings.sqlite_journal_mode.strip().upper() or "WAL"
        if journal_mode not in _ALLOWED_JOURNAL_MODES:
            journal_mode = "WAL"

        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.execute(f"PRAGMA journal_mode={journal_mode}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()
        enable_sqlite_foreign_keys(dbapi_connection, _connection_record)


def init_db() -> None:
    """Create all configured tables if they do not exist."""
    from folio import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped SQLAlchemy session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
