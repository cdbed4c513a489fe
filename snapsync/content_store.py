import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional


def new_ref() -> str:
    """Allocate an opaque content key."""
    return uuid.uuid4().hex


class ContentStore:
    """
    Key -> blob storage for original and derived media.

    Lives in the same SQLite database as the RecordStore so that releasing
    content can happen inside the record store's transactions. The owner
    (RecordStore) passes in its connection and lock.
    """

    def __init__(self, conn: sqlite3.Connection, lock):
        self._conn = conn
        self._lock = lock

    @staticmethod
    def create_table(conn: sqlite3.Connection):
        conn.execute("""
            CREATE TABLE IF NOT EXISTS media (
                ref TEXT PRIMARY KEY,
                data BLOB NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    def put(self, data: bytes, key: Optional[str] = None) -> str:
        """
        Store data under key (overwriting), or under a freshly allocated key.
        Returns the key.
        """
        key = key or new_ref()
        with self._lock, self._conn:
            self.write(key, data)
        return key

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM media WHERE ref = ?", (key,)
            ).fetchone()
        return bytes(row[0]) if row else None

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM media").fetchone()[0]

    # Used by RecordStore inside its own transaction; the caller holds the lock.

    def write(self, key: str, data: bytes):
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            "INSERT OR REPLACE INTO media (ref, data, updated_at) VALUES (?, ?, ?)",
            (key, sqlite3.Binary(data), now),
        )

    def release(self, keys: Iterable[str]):
        refs = [(k,) for k in keys if k]
        if refs:
            self._conn.executemany("DELETE FROM media WHERE ref = ?", refs)
