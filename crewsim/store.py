"""Persistence ports for crew memory snapshots.

A snapshot is one opaque JSON document stored under a fixed key. Stores are a
best-effort cache: loading missing or malformed data yields ``None``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import closing
from pathlib import Path
from typing import Any, Callable, Protocol, TypeVar

from crewsim.errors import with_retry
from crewsim.policies import DEFAULT_STORAGE_KEY, CrewPolicy, RetryConfig, db_path_from_environment

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Only lock contention is retried; other operational errors fail fast.
LOCK_RETRY = RetryConfig(max_retries=3, base_delay_seconds=0.05, max_delay_seconds=1.0)


class MemoryStore(Protocol):
    """Port for persisting a memory snapshot."""

    def load(self) -> dict[str, Any] | None: ...

    def save(self, snapshot: dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class NullStore:
    """Store that keeps nothing."""

    def load(self) -> dict[str, Any] | None:
        return None

    def save(self, snapshot: dict[str, Any]) -> None:
        pass

    def clear(self) -> None:
        pass


class InMemoryStore:
    """Store that keeps the serialized snapshot in process memory."""

    def __init__(self, raw: str | None = None):
        self.raw = raw

    def load(self) -> dict[str, Any] | None:
        return _decode(self.raw)

    def save(self, snapshot: dict[str, Any]) -> None:
        self.raw = json.dumps(snapshot)

    def clear(self) -> None:
        self.raw = None


class SQLiteMemoryStore:
    """Key/value snapshot store with SQLite backend."""

    def __init__(
        self,
        db_path: Path | str | None = None,
        key: str = DEFAULT_STORAGE_KEY,
        retry: RetryConfig | None = None,
    ):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            key: Key the snapshot is stored under
            retry: Backoff for "database is locked" errors
        """
        self.db_path = Path(db_path) if db_path else db_path_from_environment()
        self.key = key
        self.retry = retry or LOCK_RETRY
        self._lock = threading.Lock()

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @classmethod
    def for_policy(cls, policy: CrewPolicy, db_path: Path | str | None = None) -> SQLiteMemoryStore:
        """Store keyed and retried the way ``policy`` says."""
        return cls(db_path, key=policy.memory.storage_key, retry=policy.retry)

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with closing(self._get_connection()) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """)
            conn.commit()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _run(self, operation: Callable[[], T]) -> T:
        with self._lock:
            return with_retry(
                operation,
                self.retry,
                retry_on=(sqlite3.OperationalError,),
                retry_if=_is_lock_error,
            )

    def load(self) -> dict[str, Any] | None:
        """Read the snapshot, or None if absent or unreadable."""

        def read() -> sqlite3.Row | None:
            with closing(self._get_connection()) as conn:
                return conn.execute(
                    "SELECT value_json FROM snapshots WHERE key = ?",
                    (self.key,),
                ).fetchone()

        row = self._run(read)
        if row is None:
            return None
        return _decode(row["value_json"])

    def save(self, snapshot: dict[str, Any]) -> None:
        """Write the snapshot, replacing any previous one."""
        value_json = json.dumps(snapshot)
        now = int(time.time() * 1000000)  # Microseconds for better precision

        def write() -> None:
            with closing(self._get_connection()) as conn:
                conn.execute(
                    """
                    INSERT INTO snapshots (key, value_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json = excluded.value_json,
                        updated_at = excluded.updated_at
                    """,
                    (self.key, value_json, now),
                )
                conn.commit()

        self._run(write)
        logger.debug(f"Saved memory snapshot under {self.key} ({len(value_json)} bytes)")

    def clear(self) -> None:
        """Delete the snapshot."""

        def delete() -> None:
            with closing(self._get_connection()) as conn:
                conn.execute("DELETE FROM snapshots WHERE key = ?", (self.key,))
                conn.commit()

        self._run(delete)
        logger.info(f"Cleared memory snapshot {self.key}")


def _is_lock_error(error: BaseException) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def _decode(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Memory snapshot is not valid JSON, ignoring it")
        return None
    if not isinstance(data, dict):
        logger.warning("Memory snapshot is not an object, ignoring it")
        return None
    return data
