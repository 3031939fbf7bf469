"""Bucketed key-value storage shared by every subsystem."""

import logging
import os
import sqlite3
import threading
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    bucket TEXT NOT NULL,
    key TEXT NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (bucket, key)
);
"""


class Storage:
    """SQLite-backed key-value store with named buckets.

    One instance is opened at startup and shared by reference; subsystems
    must not close it.
    """

    def __init__(self, connection: sqlite3.Connection, path: Path) -> None:
        self._conn = connection
        self._lock = threading.Lock()
        self.path = path

    @classmethod
    def open(cls, path: Path) -> "Storage":
        """Open (creating if absent) the storage file at ``path``.

        Raises:
            StorageError: If the file cannot be created or opened
        """
        created = not path.exists()
        try:
            conn = sqlite3.connect(path, check_same_thread=False)
            conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"open storage {path}: {e}") from e
        if created:
            os.chmod(path, 0o644)
            logger.info("Created storage at %s", path)
        return cls(conn, path)

    def get(self, bucket: str, key: str) -> bytes | None:
        """Return the value stored under ``bucket/key``, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv WHERE bucket = ? AND key = ?", (bucket, key)
            ).fetchone()
        return None if row is None else bytes(row[0])

    def put(self, bucket: str, key: str, value: bytes) -> None:
        """Store ``value`` under ``bucket/key``, replacing any previous value."""
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (bucket, key, value) VALUES (?, ?, ?)",
                (bucket, key, value),
            )

    def delete(self, bucket: str, key: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM kv WHERE bucket = ? AND key = ?", (bucket, key))

    def keys(self, bucket: str) -> list[str]:
        """List keys in ``bucket`` in sorted order."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM kv WHERE bucket = ? ORDER BY key", (bucket,)
            ).fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        self._conn.close()
