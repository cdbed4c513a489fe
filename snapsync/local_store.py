"""
Local durable state: media records, the sync intent queue and a small
metadata table, all in one SQLite database.

Each public method is a single transaction. The database is opened in WAL
mode with a busy timeout so that a foreground process and a background
drain (cron, `main.py drain`) can share the file. There is no locking
between processes beyond SQLite's own: two processes upserting the same
intent key simply leave the last write in place.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from snapsync.content_store import ContentStore
from snapsync.errors import RecordNotFound, StorageUnavailable
from snapsync.transform import FilterTransform

logger = logging.getLogger(__name__)

IntentKey = Tuple[Optional[int], str]


@dataclass
class Record:
    """Persisted metadata for one media item."""
    id: Optional[int] = None
    guid: str = ""
    original_ref: Optional[str] = None
    edited_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    transform: FilterTransform = field(default_factory=FilterTransform)
    local_image_changes: bool = False
    local_filter_changes: bool = False
    last_sync_version: int = -1

    @property
    def content_refs(self) -> List[str]:
        return [ref for ref in (self.original_ref, self.edited_ref, self.thumbnail_ref) if ref]

    @property
    def dirty(self) -> bool:
        return self.local_image_changes or self.local_filter_changes


@dataclass
class SyncIntent:
    """
    A unit of pending upload/download work, keyed by (record_id, guid).

    record_id is None for a remote file we have never seen; guid is "" for a
    record that was never uploaded.
    """
    record_id: Optional[int]
    guid: str
    upload: bool
    include_media: bool = True
    queued_at: str = ""
    attempts: int = 0
    last_error: Optional[str] = None

    def __post_init__(self):
        if not self.record_id and not self.guid:
            raise ValueError("A sync intent needs a record id or a guid")
        self.guid = self.guid or ""

    @property
    def key(self) -> IntentKey:
        return (self.record_id or None, self.guid)

    @property
    def direction(self) -> str:
        return "upload" if self.upload else "download"


def _intent_key_params(key: IntentKey) -> Tuple[int, str]:
    record_id, guid = key
    return (record_id or 0, guid or "")


class RecordStore:
    """
    SQLite-backed store for records, sync intents and metadata.

    `content` is the ContentStore sharing this database.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._open()
        self.content = ContentStore(self._conn, self._lock)

    def _open(self):
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            with self._conn:
                self._create_tables()
        except (OSError, sqlite3.Error) as e:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            raise StorageUnavailable(f"Cannot open database {self._db_path}: {e}") from e

    def _create_tables(self):
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guid TEXT NOT NULL DEFAULT '',
                original_ref TEXT,
                edited_ref TEXT,
                thumbnail_ref TEXT,
                transform TEXT NOT NULL DEFAULT '{}',
                local_image_changes INTEGER NOT NULL DEFAULT 0,
                local_filter_changes INTEGER NOT NULL DEFAULT 0,
                last_sync_version INTEGER NOT NULL DEFAULT -1
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_guid ON records(guid)
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS intents (
                record_id INTEGER NOT NULL DEFAULT 0,
                guid TEXT NOT NULL DEFAULT '',
                upload INTEGER NOT NULL,
                include_media INTEGER NOT NULL,
                queued_at TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                PRIMARY KEY (record_id, guid)
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        ContentStore.create_table(self._conn)

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -----------------------------
    # RECORDS
    # -----------------------------

    def put_record(self, record: Record, release: Iterable[str] = ()) -> int:
        """
        Insert or update a record. Content refs in `release` are deleted in
        the same transaction. Assigns and returns record.id.
        """
        params = (
            record.guid or "",
            record.original_ref,
            record.edited_ref,
            record.thumbnail_ref,
            json.dumps(record.transform.to_dict()),
            int(record.local_image_changes),
            int(record.local_filter_changes),
            record.last_sync_version,
        )
        with self._lock, self._conn:
            if record.id is None:
                cursor = self._conn.execute("""
                    INSERT INTO records (guid, original_ref, edited_ref, thumbnail_ref,
                        transform, local_image_changes, local_filter_changes, last_sync_version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, params)
                record.id = cursor.lastrowid
            else:
                self._conn.execute("""
                    INSERT OR REPLACE INTO records (id, guid, original_ref, edited_ref,
                        thumbnail_ref, transform, local_image_changes, local_filter_changes,
                        last_sync_version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (record.id,) + params)
            keep = set(record.content_refs)
            self.content.release(ref for ref in release if ref not in keep)
        return record.id

    def get_record(self, record_id: int) -> Record:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            raise RecordNotFound(record_id)
        return self._row_to_record(row)

    def find_by_guid(self, guid: str) -> Optional[Record]:
        if not guid:
            return None
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM records WHERE guid = ? ORDER BY id LIMIT 1", (guid,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_records(self) -> List[Record]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM records ORDER BY id").fetchall()
        return [self._row_to_record(row) for row in rows]

    def delete_record(self, record_id: int, content_refs: Iterable[str] = ()):
        """Remove the record, its content and any queued intents for it."""
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
            self._conn.execute("DELETE FROM intents WHERE record_id = ?", (record_id,))
            self.content.release(content_refs)

    def _row_to_record(self, row) -> Record:
        (rid, guid, original_ref, edited_ref, thumbnail_ref, transform,
         image_changes, filter_changes, version) = row
        return Record(
            id=rid,
            guid=guid or "",
            original_ref=original_ref,
            edited_ref=edited_ref,
            thumbnail_ref=thumbnail_ref,
            transform=FilterTransform.from_dict(json.loads(transform or "{}")),
            local_image_changes=bool(image_changes),
            local_filter_changes=bool(filter_changes),
            last_sync_version=version,
        )

    # -----------------------------
    # SYNC INTENTS
    # -----------------------------

    def put_intent(self, intent: SyncIntent):
        """Upsert by (record_id, guid). The latest decision replaces any earlier one."""
        intent.queued_at = datetime.now(timezone.utc).isoformat()
        intent.attempts = 0
        intent.last_error = None
        record_id, guid = _intent_key_params(intent.key)
        with self._lock, self._conn:
            self._conn.execute("""
                INSERT OR REPLACE INTO intents
                    (record_id, guid, upload, include_media, queued_at, attempts, last_error)
                VALUES (?, ?, ?, ?, ?, 0, NULL)
            """, (record_id, guid, int(intent.upload), int(intent.include_media),
                  intent.queued_at))
        logger.debug("Queued %s intent %s (media=%s)",
                     intent.direction, intent.key, intent.include_media)

    def list_intents(self) -> List[SyncIntent]:
        """All queued intents, oldest first."""
        with self._lock:
            rows = self._conn.execute("""
                SELECT record_id, guid, upload, include_media, queued_at, attempts, last_error
                FROM intents ORDER BY queued_at, record_id, guid
            """).fetchall()
        return [self._row_to_intent(row) for row in rows]

    def get_intent(self, key: IntentKey) -> Optional[SyncIntent]:
        with self._lock:
            row = self._conn.execute("""
                SELECT record_id, guid, upload, include_media, queued_at, attempts, last_error
                FROM intents WHERE record_id = ? AND guid = ?
            """, _intent_key_params(key)).fetchone()
        return self._row_to_intent(row) if row else None

    def remove_intent(self, key: IntentKey):
        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM intents WHERE record_id = ? AND guid = ?",
                _intent_key_params(key),
            )

    def record_intent_failure(self, key: IntentKey, error: str):
        """Keep the intent queued, noting the failed attempt."""
        with self._lock, self._conn:
            self._conn.execute("""
                UPDATE intents SET attempts = attempts + 1, last_error = ?
                WHERE record_id = ? AND guid = ?
            """, (error,) + _intent_key_params(key))

    @staticmethod
    def _row_to_intent(row) -> SyncIntent:
        record_id, guid, upload, include_media, queued_at, attempts, last_error = row
        return SyncIntent(
            record_id=record_id or None,
            guid=guid,
            upload=bool(upload),
            include_media=bool(include_media),
            queued_at=queued_at,
            attempts=attempts,
            last_error=last_error,
        )

    # -----------------------------
    # METADATA
    # -----------------------------

    def get_meta(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM meta WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row[0]) if row else default

    def set_meta(self, key: str, value: Any):
        with self._lock, self._conn:
            if value is None:
                self._conn.execute("DELETE FROM meta WHERE key = ?", (key,))
            else:
                self._conn.execute(
                    "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                    (key, json.dumps(value)),
                )
