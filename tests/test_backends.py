"""
Tests for the memory, SQLite and flat-file backends.
"""

import sqlite3

import pytest

from peervault.backends import LocalBackend, MemoryBackend, SQLiteBackend
from peervault.errors import PersistenceError


CONTENT_ID = "ab" + "0" * 62
RECORD = {"content_id": CONTENT_ID, "name": "notes.txt", "size": 5}


@pytest.mark.unit
class TestMemoryBackend:

    def test_put_get_delete(self):
        backend = MemoryBackend()
        backend.put(CONTENT_ID, b"hello")

        assert backend.get(CONTENT_ID) == b"hello"
        assert backend.contains(CONTENT_ID)
        assert backend.delete(CONTENT_ID)
        assert backend.get(CONTENT_ID) is None
        assert not backend.delete(CONTENT_ID)

    def test_lru_eviction(self):
        backend = MemoryBackend(capacity=2)
        backend.put("a", b"1")
        backend.put("b", b"2")
        backend.get("a")  # a is now most recent
        backend.put("c", b"3")

        assert backend.contains("a")
        assert not backend.contains("b")
        assert backend.contains("c")

    def test_stats(self):
        backend = MemoryBackend(capacity=10)
        backend.put("a", b"123")
        backend.put("b", b"45")

        assert backend.stats() == {"items": 2, "bytes": 5, "capacity": 10}


@pytest.mark.unit
class TestSQLiteBackend:

    @pytest.fixture
    def backend(self, temp_storage_dir):
        return SQLiteBackend(temp_storage_dir / "peervault.db")

    def test_blob_roundtrip(self, backend):
        assert backend.put_blob(CONTENT_ID, b"hello")
        assert backend.get_blob(CONTENT_ID) == b"hello"
        assert backend.get_blob("missing") is None

    def test_metadata_roundtrip(self, backend):
        backend.put_metadata(CONTENT_ID, RECORD)

        assert backend.get_metadata(CONTENT_ID) == RECORD
        assert backend.list_metadata() == [RECORD]

    def test_delete_removes_blob_and_metadata(self, backend):
        backend.put_blob(CONTENT_ID, b"hello")
        backend.put_metadata(CONTENT_ID, RECORD)

        assert backend.delete(CONTENT_ID)
        assert backend.get_blob(CONTENT_ID) is None
        assert backend.get_metadata(CONTENT_ID) is None
        assert not backend.delete(CONTENT_ID)

    def test_settings(self, backend):
        assert backend.get_setting("local_peer_id") is None
        backend.set_setting("local_peer_id", "peer-1")
        backend.set_setting("total_capacity_gb", 2.5)

        assert backend.get_setting("local_peer_id") == "peer-1"
        assert backend.get_setting("total_capacity_gb") == 2.5

    def test_persists_across_instances(self, temp_storage_dir):
        SQLiteBackend(temp_storage_dir / "peervault.db").put_blob(CONTENT_ID, b"durable")

        reopened = SQLiteBackend(temp_storage_dir / "peervault.db")
        assert reopened.get_blob(CONTENT_ID) == b"durable"

    def test_statistics(self, backend):
        backend.put_blob(CONTENT_ID, b"hello")
        backend.put_metadata(CONTENT_ID, RECORD)

        stats = backend.get_statistics()
        assert stats["blobs"] == 1
        assert stats["blob_bytes"] == 5
        assert stats["records"] == 1

    def test_sqlite_error_becomes_persistence_error(self, backend):
        with sqlite3.connect(backend.db_path) as conn:
            conn.execute("DROP TABLE file_blobs")

        with pytest.raises(PersistenceError) as exc_info:
            backend.put_blob(CONTENT_ID, b"hello")
        assert exc_info.value.tier == "warm"

    def test_corrupt_record_becomes_persistence_error(self, backend):
        with sqlite3.connect(backend.db_path) as conn:
            conn.execute(
                "INSERT INTO file_metadata (content_id, record, updated_at) VALUES (?, ?, 0)",
                (CONTENT_ID, b"\xc1"),
            )

        with pytest.raises(PersistenceError):
            backend.get_metadata(CONTENT_ID)

    def test_list_metadata_skips_corrupt_row(self, backend):
        backend.put_metadata(CONTENT_ID, RECORD)
        with sqlite3.connect(backend.db_path) as conn:
            conn.execute(
                "INSERT INTO file_metadata (content_id, record, updated_at) VALUES (?, ?, 0)",
                ("cd" + "0" * 62, b"\xc1"),
            )

        assert backend.list_metadata() == [RECORD]

    def test_vacuum_keeps_rows(self, backend):
        backend.put_blob(CONTENT_ID, b"hello")
        backend.put_blob("cd" + "0" * 62, b"x" * 100_000)
        backend.delete("cd" + "0" * 62)

        backend.vacuum()

        assert backend.get_blob(CONTENT_ID) == b"hello"
        assert backend.get_statistics()["blobs"] == 1


@pytest.mark.unit
class TestLocalBackend:

    @pytest.fixture
    def backend(self, temp_storage_dir):
        return LocalBackend(temp_storage_dir / "flat", max_blob_size=16)

    def test_blob_roundtrip_uses_prefix_dirs(self, backend):
        assert backend.put_blob(CONTENT_ID, b"hello")

        assert (backend.storage_dir / "blobs" / "ab" / f"{CONTENT_ID}.blob").exists()
        assert backend.get_blob(CONTENT_ID) == b"hello"
        assert backend.exists(CONTENT_ID)

    def test_refuses_blob_over_ceiling(self, backend):
        assert not backend.put_blob(CONTENT_ID, b"x" * 17)
        assert backend.get_blob(CONTENT_ID) is None
        assert backend.put_blob(CONTENT_ID, b"x" * 16)

    def test_missing_blob_is_none(self, backend):
        assert backend.get_blob(CONTENT_ID) is None
        assert backend.get_metadata(CONTENT_ID) is None

    def test_metadata_roundtrip(self, backend):
        backend.put_metadata(CONTENT_ID, RECORD)

        assert backend.get_metadata(CONTENT_ID) == RECORD
        assert backend.list_metadata() == [RECORD]

    def test_delete_cleans_up(self, backend):
        backend.put_blob(CONTENT_ID, b"hello")
        backend.put_metadata(CONTENT_ID, RECORD)

        assert backend.delete(CONTENT_ID)
        assert not backend.exists(CONTENT_ID)
        assert backend.get_metadata(CONTENT_ID) is None
        assert not (backend.storage_dir / "blobs" / "ab").exists()
        assert not backend.delete(CONTENT_ID)

    def test_settings(self, backend):
        backend.set_setting("local_peer_id", "peer-1")
        backend.set_setting("total_capacity_gb", 3.0)

        assert backend.get_setting("local_peer_id") == "peer-1"
        assert backend.get_setting("total_capacity_gb") == 3.0
        assert backend.get_setting("other") is None

    def test_no_temp_files_left(self, backend):
        backend.put_blob(CONTENT_ID, b"hello")

        assert not list(backend.storage_dir.rglob("*.tmp"))

    def test_statistics(self, backend):
        backend.put_blob(CONTENT_ID, b"hello")
        backend.put_metadata(CONTENT_ID, RECORD)

        stats = backend.get_statistics()
        assert stats["blobs"] == 1
        assert stats["blob_bytes"] == 5
        assert stats["records"] == 1
        assert stats["max_blob_size"] == 16

    def test_corrupt_metadata_becomes_persistence_error(self, backend):
        path = backend.storage_dir / "meta" / "ab" / f"{CONTENT_ID}.meta"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\xc1")

        with pytest.raises(PersistenceError):
            backend.get_metadata(CONTENT_ID)

    def test_list_metadata_skips_corrupt_file(self, backend):
        other = "cd" + "0" * 62
        backend.put_metadata(CONTENT_ID, RECORD)
        backend.put_metadata(other, {"content_id": other})
        (backend.storage_dir / "meta" / "cd" / f"{other}.meta").write_bytes(b"\xc1")

        assert backend.list_metadata() == [RECORD]
