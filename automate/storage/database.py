"""
Automate - Database Module

SQLite wrapper with one connection per thread.
"""
import sqlite3
import threading
import json
from datetime import datetime, date, timezone
from pathlib import Path
from typing import Any, Optional, List, Union

from ..config.logging import get_logger
from .schema import init_schema

logger = get_logger("database")

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Database:
    """
    SQLite database shared by the run logger and the schedule store.

    Connections are thread-local; the asyncio scheduler uses a single one.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Open (and create if needed) the database.

        Args:
            db_path: Database file, ":memory:" for tests. Defaults to settings.
        """
        from ..config.settings import settings
        if db_path is None:
            db_path = settings.database.path
        self._wal_mode = settings.database.wal_mode
        self._busy_timeout_ms = settings.database.busy_timeout_ms

        self._memory = str(db_path) == ":memory:"
        self._db_path = Path(db_path) if not self._memory else None
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        init_schema(self._get_connection())
        logger.debug(f"Database ready at {db_path}")

    @property
    def path(self) -> Optional[Path]:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            target = ":memory:" if self._memory else str(self._db_path)
            conn = sqlite3.connect(
                target,
                check_same_thread=False,
                timeout=self._busy_timeout_ms / 1000.0,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if not self._memory:
                conn.execute(f"PRAGMA journal_mode = {'WAL' if self._wal_mode else 'DELETE'}")
            conn.execute(f"PRAGMA busy_timeout = {self._busy_timeout_ms}")
            self._local.connection = conn
        return conn

    def execute(self, sql: str, params: tuple = ()) -> int:
        """
        Execute a statement.

        Returns:
            Last inserted row id
        """
        conn = self._get_connection()
        cursor = conn.execute(sql, params)
        conn.commit()
        return cursor.lastrowid

    def execute_rowcount(self, sql: str, params: tuple = ()) -> int:
        """Execute a statement and return the number of affected rows."""
        conn = self._get_connection()
        cursor = conn.execute(sql, params)
        conn.commit()
        return cursor.rowcount

    def fetch_one(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        return self._get_connection().execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        return self._get_connection().execute(sql, params).fetchall()

    def close(self) -> None:
        """Close current thread's connection."""
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


# JSON / time helpers

def to_json(obj: Any) -> str:
    """Serialize to JSON; datetimes become ISO strings."""
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

    return json.dumps(obj, default=default, ensure_ascii=False)


def from_json(s: Optional[str]) -> Any:
    """Parse JSON; None for None or empty string."""
    if not s:
        return None
    return json.loads(s)


def to_iso(dt: datetime) -> str:
    """
    Fixed-width UTC timestamp.

    Stored timestamps are compared as strings (next_run_at <= ?), so every
    writer must go through this function.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


def from_iso(s: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp written by to_iso (or SQLite datetime('now'))."""
    if not s:
        return None
    if s.endswith("Z"):
        return datetime.strptime(s, ISO_FORMAT).replace(tzinfo=timezone.utc)
    dt = datetime.fromisoformat(s.replace(" ", "T"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def now_iso() -> str:
    """Current UTC time as a stored timestamp."""
    return to_iso(datetime.now(timezone.utc))
