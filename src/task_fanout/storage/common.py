"""SQLite engine and timestamp conversions shared by the task store."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

TASK_STORE_PRAGMAS: tuple[tuple[str, str], ...] = (
    ("journal_mode", "WAL"),
    ("synchronous", "NORMAL"),
    ("foreign_keys", "ON"),
)


def sqlite_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_db_datetime(value: datetime) -> datetime:
    """Naive UTC: task and project timestamps are stored without tzinfo."""

    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def from_db_datetime(value: datetime) -> datetime:
    """Reattach UTC to a timestamp read back from the task tables."""

    if value.tzinfo is not None:
        return value.astimezone(UTC)
    return value.replace(tzinfo=UTC)


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """Engine for one CLI invocation against the shared task store.

    Connections are not pooled; each waits up to ``busy_timeout_ms`` for a
    competing writer.
    """

    engine = create_engine(
        sqlite_url(db_path),
        connect_args={"timeout": max(1.0, busy_timeout_ms / 1000.0)},
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            for name, value in TASK_STORE_PRAGMAS:
                cursor.execute(f"PRAGMA {name} = {value}")
            cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
        finally:
            cursor.close()

    return engine
