"""
Tests for the tiered persistence manager.
"""

import time

import pytest

from peervault.backends import LocalBackend, MemoryBackend, SQLiteBackend
from peervault.core.metadata_index import FileMetadata
from peervault.core.tiered_store import (
    CachedBlob,
    FlatBlob,
    StorageTier,
    StoredBlob,
    TieredPersistenceManager,
)
from peervault.errors import PersistenceError


CONTENT_ID = "cd" + "1" * 62


def make_record(content_id: str = CONTENT_ID, name: str = "notes.txt") -> FileMetadata:
    now = time.time()
    return FileMetadata(
        id="id-1",
        content_id=content_id,
        checksum="0" * 64,
        name=name,
        mime_type="text/plain",
        size=5,
        uploaded_at=now,
        last_modified=now,
        indexed=False,
        owner_peer_id="peer-local",
        replicated_on=["peer-local"],
    )


class BrokenMemory(MemoryBackend):
    def put(self, content_id, data):
        raise MemoryError("cache full")


class BrokenSQLite(SQLiteBackend):
    def put_blob(self, content_id, data):
        raise PersistenceError("disk I/O error", "warm")

    def get_blob(self, content_id):
        raise PersistenceError("disk I/O error", "warm")

    def delete(self, content_id):
        raise PersistenceError("disk I/O error", "warm")


@pytest.fixture
def manager(temp_storage_dir):
    return TieredPersistenceManager(
        memory=MemoryBackend(),
        transactional=SQLiteBackend(temp_storage_dir / "peervault.db"),
        flat=LocalBackend(temp_storage_dir / "flat", max_blob_size=16),
    )


@pytest.mark.unit
class TestTieredWrites:

    @pytest.mark.asyncio
    async def test_put_stores_in_all_tiers(self, manager):
        tier_set = await manager.put(CONTENT_ID, b"hello", make_record())

        assert tier_set.stored == {StorageTier.HOT, StorageTier.WARM, StorageTier.COLD}
        assert tier_set.durable
        assert not tier_set.degraded
        assert manager.transactional.get_metadata(CONTENT_ID)["name"] == "notes.txt"
        assert manager.flat.get_metadata(CONTENT_ID)["name"] == "notes.txt"

    @pytest.mark.asyncio
    async def test_flat_tier_refuses_large_blob(self, manager):
        tier_set = await manager.put(CONTENT_ID, b"x" * 17)

        assert tier_set.stored == {StorageTier.HOT, StorageTier.WARM}
        assert tier_set.refused == {StorageTier.COLD}
        assert tier_set.durable
        assert tier_set.degraded

    @pytest.mark.asyncio
    async def test_durable_failure_only_degrades(self, temp_storage_dir):
        manager = TieredPersistenceManager(
            memory=MemoryBackend(),
            transactional=BrokenSQLite(temp_storage_dir / "peervault.db"),
            flat=LocalBackend(temp_storage_dir / "flat"),
        )

        tier_set = await manager.put(CONTENT_ID, b"hello")

        assert StorageTier.WARM in tier_set.failed
        assert tier_set.stored == {StorageTier.HOT, StorageTier.COLD}

    @pytest.mark.asyncio
    async def test_cache_failure_is_fatal(self, temp_storage_dir):
        manager = TieredPersistenceManager(
            memory=BrokenMemory(),
            transactional=SQLiteBackend(temp_storage_dir / "peervault.db"),
            flat=LocalBackend(temp_storage_dir / "flat"),
        )

        with pytest.raises(PersistenceError):
            await manager.put(CONTENT_ID, b"hello")

        assert manager.transactional.get_blob(CONTENT_ID) is None


@pytest.mark.unit
class TestTieredReads:

    @pytest.mark.asyncio
    async def test_read_from_cache(self, manager):
        await manager.put(CONTENT_ID, b"hello")

        blob = await manager.get(CONTENT_ID)

        assert isinstance(blob, CachedBlob)
        assert blob.data == b"hello"
        assert blob.tier == StorageTier.HOT

    @pytest.mark.asyncio
    async def test_fallback_to_transactional_backfills_cache(self, manager):
        await manager.put(CONTENT_ID, b"hello")
        manager.memory.clear()

        blob = await manager.get(CONTENT_ID)

        assert isinstance(blob, StoredBlob)
        assert blob.data == b"hello"
        assert manager.is_cached(CONTENT_ID)

    @pytest.mark.asyncio
    async def test_fallback_to_flat(self, manager):
        await manager.put(CONTENT_ID, b"hello")
        manager.memory.clear()
        manager.transactional.delete(CONTENT_ID)

        blob = await manager.get(CONTENT_ID)

        assert isinstance(blob, FlatBlob)
        assert blob.data == b"hello"
        assert manager.is_cached(CONTENT_ID)

    @pytest.mark.asyncio
    async def test_tier_read_error_is_a_miss(self, temp_storage_dir):
        flat = LocalBackend(temp_storage_dir / "flat")
        flat.put_blob(CONTENT_ID, b"hello")
        manager = TieredPersistenceManager(
            memory=MemoryBackend(),
            transactional=BrokenSQLite(temp_storage_dir / "peervault.db"),
            flat=flat,
        )

        blob = await manager.get(CONTENT_ID)

        assert isinstance(blob, FlatBlob)

    @pytest.mark.asyncio
    async def test_failed_backfill_still_serves_read(self, temp_storage_dir):
        manager = TieredPersistenceManager(
            memory=BrokenMemory(),
            transactional=SQLiteBackend(temp_storage_dir / "peervault.db"),
            flat=LocalBackend(temp_storage_dir / "flat"),
        )
        manager.transactional.put_blob(CONTENT_ID, b"hello")
        other_id = "ef" + "2" * 62
        manager.flat.put_blob(other_id, b"world")

        stored = await manager.get(CONTENT_ID)
        flat = await manager.get(other_id)

        assert isinstance(stored, StoredBlob)
        assert stored.data == b"hello"
        assert isinstance(flat, FlatBlob)
        assert flat.data == b"world"
        assert not manager.is_cached(CONTENT_ID)

    @pytest.mark.asyncio
    async def test_miss_everywhere(self, manager):
        assert await manager.get(CONTENT_ID) is None

    @pytest.mark.asyncio
    async def test_delete_everywhere(self, manager):
        await manager.put(CONTENT_ID, b"hello", make_record())

        await manager.delete(CONTENT_ID)

        assert await manager.get(CONTENT_ID) is None
        assert await manager.load_metadata() == []

    @pytest.mark.asyncio
    async def test_delete_missing_is_fine(self, manager):
        await manager.delete(CONTENT_ID)

    @pytest.mark.asyncio
    async def test_delete_reports_failed_tier(self, temp_storage_dir):
        manager = TieredPersistenceManager(
            memory=MemoryBackend(),
            transactional=BrokenSQLite(temp_storage_dir / "peervault.db"),
            flat=LocalBackend(temp_storage_dir / "flat"),
        )
        await manager.put(CONTENT_ID, b"hello", make_record())

        failed = await manager.delete(CONTENT_ID)

        assert list(failed) == [StorageTier.WARM]
        assert not manager.is_cached(CONTENT_ID)
        assert manager.flat.get_blob(CONTENT_ID) is None

    @pytest.mark.asyncio
    async def test_compact(self, manager):
        await manager.put(CONTENT_ID, b"hello")
        assert await manager.delete(CONTENT_ID) == {}

        await manager.compact()

        assert manager.get_statistics()["warm"]["blobs"] == 0


@pytest.mark.unit
class TestMetadataAndSettings:

    @pytest.mark.asyncio
    async def test_load_prefers_flat_tier(self, manager):
        record = make_record()
        manager.flat.put_metadata(CONTENT_ID, record.to_dict())
        stale = make_record(name="stale.txt")
        manager.transactional.put_metadata(CONTENT_ID, stale.to_dict())

        other_id = "ef" + "2" * 62
        manager.transactional.put_metadata(other_id, make_record(other_id, "only-warm.txt").to_dict())

        loaded = {r.content_id: r for r in await manager.load_metadata()}

        assert loaded[CONTENT_ID].name == "notes.txt"
        assert loaded[other_id].name == "only-warm.txt"

    @pytest.mark.asyncio
    async def test_load_skips_malformed_records(self, manager):
        manager.flat.put_metadata(CONTENT_ID, {"content_id": CONTENT_ID})

        assert await manager.load_metadata() == []

    @pytest.mark.asyncio
    async def test_corrupt_flat_file_does_not_hide_other_records(self, manager):
        other_id = "ef" + "2" * 62
        manager.flat.put_metadata(CONTENT_ID, make_record().to_dict())
        manager.flat.put_metadata(other_id, make_record(other_id, "broken.txt").to_dict())
        (manager.flat.storage_dir / "meta" / "ef" / f"{other_id}.meta").write_bytes(b"\xc1")

        loaded = await manager.load_metadata()

        assert [r.name for r in loaded] == ["notes.txt"]

    @pytest.mark.asyncio
    async def test_settings_roundtrip(self, manager):
        assert await manager.get_setting("local_peer_id") is None

        await manager.set_setting("local_peer_id", "peer-abc")

        assert await manager.get_setting("local_peer_id") == "peer-abc"
        assert manager.flat.get_setting("local_peer_id") == "peer-abc"

    @pytest.mark.asyncio
    async def test_statistics(self, manager):
        await manager.put(CONTENT_ID, b"hello")

        stats = manager.get_statistics()

        assert stats["hot"]["items"] == 1
        assert stats["warm"]["blobs"] == 1
        assert stats["cold"]["blobs"] == 1
