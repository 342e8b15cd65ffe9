"""SQL persistence adapter for favorites and kill history."""

import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from unbind.errors import StorageFailure

logger = logging.getLogger(__name__)

Params = Mapping[str, Any]
Row = dict[str, Any]

# UTC, millisecond resolution keeps killed_at ordering meaningful within a second.
NOW = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"

SCHEMA = (
    f"""
    CREATE TABLE IF NOT EXISTS favorites (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        port INTEGER UNIQUE NOT NULL,
        label TEXT NOT NULL,
        created_at DATETIME NOT NULL DEFAULT {NOW}
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS kill_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        port INTEGER NOT NULL,
        pid INTEGER NOT NULL,
        process_name TEXT NOT NULL,
        killed_at DATETIME NOT NULL DEFAULT {NOW}
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_kill_history_killed_at
    ON kill_history(killed_at DESC)
    """,
)


class PersistenceAdapter(Protocol):
    """Whole-row execute/query access to the ``favorites`` and ``kill_history`` tables."""

    def execute(self, statement: str, params: Params | None = None) -> None: ...

    def execute_batch(self, steps: Iterable[tuple[str, Params | None]]) -> None: ...

    def query(self, statement: str, params: Params | None = None) -> list[Row]: ...


def utcnow() -> datetime:
    """Current UTC time, truncated to the stored millisecond resolution."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime the way SQLite's ``NOW`` default stores it."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def parse_timestamp(value: Any) -> datetime:
    """Convert a stored timestamp into an aware UTC datetime."""
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        # Stored timestamps are UTC.
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SqlStorage:
    """
    Persistence adapter on top of a SQLAlchemy engine.

    Statements are plain SQL with ``:name`` parameters. Every call runs in
    its own transaction; ``execute_batch`` runs all of its statements in one.
    Access is serialized with a lock since SQLite allows a single writer and
    in-memory databases share one connection.
    """

    def __init__(self, url: str) -> None:
        self._url = make_url(url)
        self._lock = threading.Lock()
        self._engine = create_engine(self._url, **self._engine_options())

    def _engine_options(self) -> dict[str, Any]:
        if self._url.get_backend_name() != "sqlite":
            return {}
        database = self._url.database
        if not database or database == ":memory:":
            return {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            }
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return {"connect_args": {"check_same_thread": False}}

    @property
    def url(self) -> str:
        return self._url.render_as_string(hide_password=True)

    def initialize(self) -> None:
        """Create the tables and indexes if they do not exist yet."""
        self.execute_batch((statement, None) for statement in SCHEMA)
        logger.debug("Storage ready at %s", self.url)

    def execute(self, statement: str, params: Params | None = None) -> None:
        self.execute_batch([(statement, params)])

    def execute_batch(self, steps: Iterable[tuple[str, Params | None]]) -> None:
        with self._lock:
            try:
                with self._engine.begin() as conn:
                    for statement, params in steps:
                        conn.execute(text(statement), dict(params or {}))
            except SQLAlchemyError as exc:
                raise StorageFailure(f"Storage write failed: {exc}") from exc

    def query(self, statement: str, params: Params | None = None) -> list[Row]:
        with self._lock:
            try:
                with self._engine.connect() as conn:
                    result = conn.execute(text(statement), dict(params or {}))
                    return [dict(row) for row in result.mappings()]
            except SQLAlchemyError as exc:
                raise StorageFailure(f"Storage read failed: {exc}") from exc

    def close(self) -> None:
        self._engine.dispose()
