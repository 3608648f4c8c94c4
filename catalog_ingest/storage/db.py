"""Database connectivity helpers."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from .models_sql import Base


LOGGER = logging.getLogger(__name__)


def _apply_sqlite_pragmas(engine: Engine, timeout_value: float) -> None:
    """Enable WAL mode so API reads do not block while an ingestion writes."""

    busy_ms = int(timeout_value * 1000)

    @event.listens_for(engine, "connect")
    def _set_busy_timeout(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"PRAGMA busy_timeout = {busy_ms}")
        finally:
            cursor.close()

    try:
        with engine.connect() as connection:
            connection.execute(text("PRAGMA journal_mode=WAL"))
            connection.execute(text("PRAGMA synchronous=NORMAL"))
    except Exception as exc:  # pragma: no cover - best-effort tuning
        LOGGER.warning("Unable to configure SQLite pragmas: %s", exc)


def get_engine(database_url: str, *, busy_timeout: int | float | None = None) -> Engine:
    """Create a SQLAlchemy engine for *database_url*.

    SQLite file databases get a busy timeout and WAL journaling; other
    backends are created with connection pre-ping only.
    """

    timeout_value = float(busy_timeout) if busy_timeout is not None else 30.0
    url = make_url(database_url)

    if url.get_backend_name() != "sqlite":
        return create_engine(url, future=True, pool_pre_ping=True)

    engine = create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False, "timeout": timeout_value},
    )
    if url.database and url.database != ":memory:":
        _apply_sqlite_pragmas(engine, timeout_value)
    return engine


def make_session(engine: Engine) -> sessionmaker[Session]:
    """Create a configured session factory bound to *engine*."""

    return sessionmaker(engine, expire_on_commit=False, future=True)


def init_db_safe(engine: Engine) -> None:
    """Initialise database schema, creating only missing tables."""

    Base.metadata.create_all(engine, checkfirst=True)


init_db = init_db_safe
