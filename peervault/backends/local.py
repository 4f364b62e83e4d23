"""
Flat key-value tier on the local filesystem.

One file per key. Blobs above a size ceiling are refused; that is a
capacity decision, and callers record it as degraded durability.
"""

from typing import Any, Dict, List, Optional
from pathlib import Path
import logging
import os

import msgpack

from peervault.errors import PersistenceError

logger = logging.getLogger(__name__)

TIER_NAME = "cold"


class LocalBackend:
    """
    Local filesystem storage backend.

    Directory structure:
    storage_dir/
        blobs/
            AB/
                ABCDEF...123.blob
        meta/
            AB/
                ABCDEF...123.meta
        settings.msgpack

    Uses first 2 characters of content ID as directory prefix
    to avoid having too many files in a single directory.
    """

    def __init__(self, storage_dir: Path, max_blob_size: Optional[int] = 10 * 1024 * 1024):
        """
        Args:
            storage_dir: Base directory for storage
            max_blob_size: Largest blob accepted (None = no limit)
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.max_blob_size = max_blob_size

        logger.info(f"Initialized local backend at {self.storage_dir}")

    def accepts(self, size: int) -> bool:
        return self.max_blob_size is None or size <= self.max_blob_size

    def put_blob(self, content_id: str, data: bytes) -> bool:
        """
        Store blob.

        Returns:
            True if stored, False if refused by the size ceiling
        """
        if not self.accepts(len(data)):
            logger.info(
                f"Refusing {content_id[:16]}... ({len(data)} bytes > "
                f"{self.max_blob_size} byte ceiling)"
            )
            return False

        self._write(self._blob_path(content_id), data)
        logger.debug(f"Stored {content_id[:16]}... to {self.storage_dir}")
        return True

    def get_blob(self, content_id: str) -> Optional[bytes]:
        return self._read(self._blob_path(content_id))

    def put_metadata(self, content_id: str, record: Dict[str, Any]) -> bool:
        self._write(self._meta_path(content_id), msgpack.packb(record))
        return True

    def get_metadata(self, content_id: str) -> Optional[Dict[str, Any]]:
        raw = self._read(self._meta_path(content_id))
        return self._unpack(raw) if raw is not None else None

    def list_metadata(self) -> List[Dict[str, Any]]:
        meta_dir = self.storage_dir / "meta"
        if not meta_dir.exists():
            return []

        records = []
        for file_path in sorted(meta_dir.glob("*/*.meta")):
            try:
                raw = self._read(file_path)
                if raw is not None:
                    records.append(self._unpack(raw))
            except PersistenceError as e:
                logger.warning(f"Skipping unreadable metadata file {file_path.name}: {e}")
        return records

    def delete(self, content_id: str) -> bool:
        """Delete blob and metadata. Returns True if anything was removed."""
        removed = False
        for file_path in (self._blob_path(content_id), self._meta_path(content_id)):
            try:
                if file_path.exists():
                    file_path.unlink()
                    removed = True
                    self._cleanup_empty_dirs(file_path.parent)
            except OSError as e:
                raise PersistenceError(f"Failed to delete {file_path}: {e}", TIER_NAME) from e
        if removed:
            logger.debug(f"Deleted {content_id[:16]}... from {self.storage_dir}")
        return removed

    def exists(self, content_id: str) -> bool:
        return self._blob_path(content_id).exists()

    def set_setting(self, key: str, value: Any) -> None:
        settings = self._load_settings()
        settings[key] = value
        self._write(self._settings_path(), msgpack.packb(settings))

    def get_setting(self, key: str) -> Optional[Any]:
        return self._load_settings().get(key)

    def get_total_size(self) -> int:
        blob_dir = self.storage_dir / "blobs"
        if not blob_dir.exists():
            return 0
        return sum(file_path.stat().st_size for file_path in blob_dir.glob("*/*.blob"))

    def get_statistics(self) -> Dict[str, Any]:
        blob_dir = self.storage_dir / "blobs"
        blobs = len(list(blob_dir.glob("*/*.blob"))) if blob_dir.exists() else 0
        return {
            "blobs": blobs,
            "blob_bytes": self.get_total_size(),
            "records": len(list((self.storage_dir / "meta").glob("*/*.meta"))),
            "max_blob_size": self.max_blob_size,
        }

    # Internal methods

    def _blob_path(self, content_id: str) -> Path:
        return self.storage_dir / "blobs" / content_id[:2] / f"{content_id}.blob"

    def _meta_path(self, content_id: str) -> Path:
        return self.storage_dir / "meta" / content_id[:2] / f"{content_id}.meta"

    def _settings_path(self) -> Path:
        return self.storage_dir / "settings.msgpack"

    def _load_settings(self) -> Dict[str, Any]:
        raw = self._read(self._settings_path())
        return self._unpack(raw) if raw is not None else {}

    def _write(self, file_path: Path, data: bytes) -> None:
        """Write via a temp file and rename so readers never see a torn file."""
        tmp_path = file_path.with_suffix(file_path.suffix + ".tmp")
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, file_path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {file_path}: {e}", TIER_NAME) from e

    def _read(self, file_path: Path) -> Optional[bytes]:
        try:
            with open(file_path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read {file_path}: {e}", TIER_NAME) from e

    def _cleanup_empty_dirs(self, directory: Path) -> None:
        """Remove empty prefix directories up to (not including) storage_dir."""
        if directory == self.storage_dir or self.storage_dir not in directory.parents:
            return
        try:
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()
                logger.debug(f"Cleaned up empty directory {directory}")
                self._cleanup_empty_dirs(directory.parent)
        except OSError as e:
            logger.debug(f"Could not remove {directory}: {e}")

    @staticmethod
    def _unpack(raw: bytes) -> Any:
        try:
            return msgpack.unpackb(raw)
        except (ValueError, TypeError) as e:
            raise PersistenceError(f"Corrupt msgpack file: {e}", TIER_NAME) from e
