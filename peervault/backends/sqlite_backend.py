"""
Transactional tier: blobs, metadata and settings in SQLite.

Key Features:
- ACID writes, WAL journal
- Blob and metadata rows keyed by content ID
- Metadata records serialized with msgpack
- Small scalar settings (local peer ID, capacity)
- Thread-safe operations (called from worker threads)
"""

import sqlite3
import time
from contextlib import closing
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional
import logging

import msgpack

from peervault.errors import PersistenceError

logger = logging.getLogger(__name__)

TIER_NAME = "warm"


class SQLiteBackend:
    """
    Durable transactional store.

    Every public method either completes its transaction or raises
    PersistenceError; the persistence manager decides what a failure means.
    """

    def __init__(self, db_path: Path, enable_wal: bool = True):
        """
        Args:
            db_path: Path to SQLite database file
            enable_wal: Enable Write-Ahead Logging
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()

        self._init_db(enable_wal)

        logger.info(f"Initialized SQLite backend at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self, enable_wal: bool) -> None:
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    if enable_wal:
                        conn.execute("PRAGMA journal_mode=WAL")

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS file_blobs (
                            content_id TEXT PRIMARY KEY,
                            data BLOB NOT NULL,
                            stored_at REAL NOT NULL
                        )
                    """)
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS file_metadata (
                            content_id TEXT PRIMARY KEY,
                            record BLOB NOT NULL,
                            updated_at REAL NOT NULL
                        )
                    """)
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS settings (
                            key TEXT PRIMARY KEY,
                            value BLOB NOT NULL
                        )
                    """)
                    conn.commit()
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to initialize {self.db_path}: {e}", TIER_NAME) from e

    def put_blob(self, content_id: str, data: bytes) -> bool:
        self._execute(
            "INSERT OR REPLACE INTO file_blobs (content_id, data, stored_at) VALUES (?, ?, ?)",
            (content_id, sqlite3.Binary(data), time.time()),
        )
        logger.debug(f"Stored blob {content_id[:16]}... in SQLite")
        return True

    def get_blob(self, content_id: str) -> Optional[bytes]:
        row = self._fetchone("SELECT data FROM file_blobs WHERE content_id = ?", (content_id,))
        return bytes(row[0]) if row else None

    def put_metadata(self, content_id: str, record: Dict[str, Any]) -> bool:
        self._execute(
            "INSERT OR REPLACE INTO file_metadata (content_id, record, updated_at) VALUES (?, ?, ?)",
            (content_id, msgpack.packb(record), time.time()),
        )
        return True

    def get_metadata(self, content_id: str) -> Optional[Dict[str, Any]]:
        row = self._fetchone("SELECT record FROM file_metadata WHERE content_id = ?", (content_id,))
        return self._unpack(row[0]) if row else None

    def list_metadata(self) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    rows = conn.execute(
                        "SELECT content_id, record FROM file_metadata ORDER BY updated_at ASC"
                    ).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"SQLite metadata scan failed: {e}", TIER_NAME) from e

        records = []
        for content_id, raw in rows:
            try:
                records.append(self._unpack(raw))
            except PersistenceError as e:
                logger.warning(f"Skipping unreadable metadata row {content_id[:16]}...: {e}")
        return records

    def delete(self, content_id: str) -> bool:
        """Delete blob and metadata. Returns True if anything was removed."""
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    removed = conn.execute(
                        "DELETE FROM file_blobs WHERE content_id = ?", (content_id,)
                    ).rowcount
                    removed += conn.execute(
                        "DELETE FROM file_metadata WHERE content_id = ?", (content_id,)
                    ).rowcount
                    conn.commit()
            except sqlite3.Error as e:
                raise PersistenceError(f"SQLite delete failed: {e}", TIER_NAME) from e
        return removed > 0

    def set_setting(self, key: str, value: Any) -> None:
        self._execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, msgpack.packb(value)),
        )

    def get_setting(self, key: str) -> Optional[Any]:
        row = self._fetchone("SELECT value FROM settings WHERE key = ?", (key,))
        return self._unpack(row[0]) if row else None

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    blobs, blob_bytes = conn.execute(
                        "SELECT COUNT(*), COALESCE(SUM(LENGTH(data)), 0) FROM file_blobs"
                    ).fetchone()
                    records = conn.execute("SELECT COUNT(*) FROM file_metadata").fetchone()[0]
                    page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                    page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            except sqlite3.Error as e:
                raise PersistenceError(f"SQLite statistics failed: {e}", TIER_NAME) from e

        return {
            "blobs": blobs,
            "blob_bytes": blob_bytes,
            "records": records,
            "db_size_bytes": page_count * page_size,
        }

    def vacuum(self) -> None:
        """Reclaim space after large deletes."""
        self._execute("VACUUM", ())

    # Internal methods

    def _execute(self, sql: str, params: tuple) -> None:
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    conn.execute(sql, params)
                    conn.commit()
            except sqlite3.Error as e:
                raise PersistenceError(f"SQLite write failed: {e}", TIER_NAME) from e

    def _fetchone(self, sql: str, params: tuple) -> Optional[tuple]:
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    return conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"SQLite read failed: {e}", TIER_NAME) from e

    @staticmethod
    def _unpack(raw: bytes) -> Any:
        try:
            return msgpack.unpackb(raw)
        except (ValueError, TypeError) as e:
            raise PersistenceError(f"Corrupt msgpack record in SQLite: {e}", TIER_NAME) from e
