"""
Tiered persistence manager.

Reads and writes blobs across three ordered tiers:

    HOT   volatile in-process cache        (MemoryBackend)
    WARM  durable transactional store      (SQLiteBackend)
    COLD  flat durable key-value store     (LocalBackend)

Reads fall back HOT -> WARM -> COLD and backfill HOT on a lower hit.
Writes go to HOT synchronously; WARM and COLD are attempted concurrently
and their failures only degrade the returned TierSet. The manager stores
bytes; it has no say over which records exist.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union
import logging

from peervault.backends import LocalBackend, MemoryBackend, SQLiteBackend
from peervault.core.metadata_index import FileMetadata
from peervault.errors import PersistenceError

logger = logging.getLogger(__name__)


class StorageTier(Enum):
    """Storage tier classification, in read order."""
    HOT = "hot"      # In-process cache (lost on exit)
    WARM = "warm"    # SQLite (transactional, durable)
    COLD = "cold"    # Flat files (durable, size-capped)


DURABLE_TIERS = (StorageTier.WARM, StorageTier.COLD)


@dataclass(frozen=True)
class CachedBlob:
    """Blob served from the volatile cache."""
    data: bytes
    tier: StorageTier = StorageTier.HOT


@dataclass(frozen=True)
class StoredBlob:
    """Blob served from the transactional store."""
    data: bytes
    tier: StorageTier = StorageTier.WARM


@dataclass(frozen=True)
class FlatBlob:
    """Blob served from the flat key-value store."""
    data: bytes
    tier: StorageTier = StorageTier.COLD


TierBlob = Union[CachedBlob, StoredBlob, FlatBlob]


@dataclass(frozen=True)
class TierSet:
    """Outcome of one put across all tiers."""
    stored: FrozenSet[StorageTier]
    failed: Dict[StorageTier, str] = field(default_factory=dict)
    refused: FrozenSet[StorageTier] = frozenset()

    @property
    def durable(self) -> bool:
        """At least one durable tier holds the blob."""
        return any(tier in self.stored for tier in DURABLE_TIERS)

    @property
    def degraded(self) -> bool:
        """Some durable tier does not hold the blob."""
        return not all(tier in self.stored for tier in DURABLE_TIERS)


class TieredPersistenceManager:
    """Blob and metadata storage across the hot, warm and cold tiers."""

    def __init__(
        self,
        memory: MemoryBackend,
        transactional: SQLiteBackend,
        flat: LocalBackend,
    ):
        self.memory = memory
        self.transactional = transactional
        self.flat = flat

    async def put(
        self,
        content_id: str,
        data: bytes,
        metadata: Optional[FileMetadata] = None,
    ) -> TierSet:
        """
        Write a blob (and optionally its metadata) to every tier.

        Raises:
            PersistenceError: only if the volatile cache write failed
        """
        try:
            self.memory.put(content_id, data)
        except Exception as e:
            raise PersistenceError(
                f"Cache write failed for {content_id[:16]}...: {e}", StorageTier.HOT.value
            ) from e

        record = metadata.to_dict() if metadata is not None else None

        results = await asyncio.gather(
            asyncio.to_thread(self._write_durable, self.transactional, content_id, data, record),
            asyncio.to_thread(self._write_durable, self.flat, content_id, data, record),
            return_exceptions=True,
        )

        stored = {StorageTier.HOT}
        failed: Dict[StorageTier, str] = {}
        refused = set()

        for tier, result in zip(DURABLE_TIERS, results):
            if isinstance(result, BaseException):
                logger.warning(f"{tier.value} tier write failed for {content_id[:16]}...: {result}")
                failed[tier] = str(result)
            elif result:
                stored.add(tier)
            else:
                refused.add(tier)

        tier_set = TierSet(stored=frozenset(stored), failed=failed, refused=frozenset(refused))

        if not tier_set.durable:
            logger.warning(
                f"{content_id[:16]}... is only held in memory; "
                f"it will be lost on exit unless re-ingested"
            )
        elif tier_set.degraded:
            logger.info(
                f"Stored {content_id[:16]}... with degraded durability "
                f"({', '.join(t.value for t in sorted(stored, key=_tier_order))})"
            )
        else:
            logger.debug(f"Stored {content_id[:16]}... in all tiers")

        return tier_set

    async def get(self, content_id: str) -> Optional[TierBlob]:
        """
        Read a blob, first hit wins.

        Tier read errors are logged and treated as misses.
        """
        data = self.memory.get(content_id)
        if data is not None:
            return CachedBlob(data)

        data = await self._read_durable(self.transactional, StorageTier.WARM, content_id)
        if data is not None:
            self._backfill(content_id, data)
            return StoredBlob(data)

        data = await self._read_durable(self.flat, StorageTier.COLD, content_id)
        if data is not None:
            self._backfill(content_id, data)
            return FlatBlob(data)

        return None

    async def delete(self, content_id: str) -> Dict[StorageTier, str]:
        """
        Delete blob and metadata from every tier; absence is fine.

        Returns:
            Durable tiers whose delete failed, with the error
        """
        self.memory.delete(content_id)

        results = await asyncio.gather(
            asyncio.to_thread(self.transactional.delete, content_id),
            asyncio.to_thread(self.flat.delete, content_id),
            return_exceptions=True,
        )
        failed: Dict[StorageTier, str] = {}
        for tier, result in zip(DURABLE_TIERS, results):
            if isinstance(result, BaseException):
                logger.warning(f"{tier.value} tier delete failed for {content_id[:16]}...: {result}")
                failed[tier] = str(result)
        return failed

    async def compact(self) -> None:
        """Reclaim transactional tier space after evictions."""
        try:
            await asyncio.to_thread(self.transactional.vacuum)
        except PersistenceError as e:
            logger.warning(f"Could not compact {StorageTier.WARM.value} tier: {e}")

    def is_cached(self, content_id: str) -> bool:
        return self.memory.contains(content_id)

    async def save_metadata(self, metadata: FileMetadata) -> None:
        """Persist a metadata record to both durable tiers, best effort."""
        record = metadata.to_dict()
        results = await asyncio.gather(
            asyncio.to_thread(self.transactional.put_metadata, metadata.content_id, record),
            asyncio.to_thread(self.flat.put_metadata, metadata.content_id, record),
            return_exceptions=True,
        )
        for tier, result in zip(DURABLE_TIERS, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"{tier.value} tier metadata write failed for "
                    f"{metadata.content_id[:16]}...: {result}"
                )

    async def load_metadata(self) -> List[FileMetadata]:
        """
        Load persisted records.

        The flat tier is read first; the transactional tier only adds
        records the flat tier did not have.
        """
        loaded: Dict[str, FileMetadata] = {}

        for tier, backend in ((StorageTier.COLD, self.flat), (StorageTier.WARM, self.transactional)):
            try:
                records = await asyncio.to_thread(backend.list_metadata)
            except PersistenceError as e:
                logger.warning(f"Could not load metadata from {tier.value} tier: {e}")
                continue

            count = 0
            for raw in records:
                try:
                    record = FileMetadata.from_dict(raw)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed metadata in {tier.value} tier: {e}")
                    continue
                if record.content_id not in loaded:
                    loaded[record.content_id] = record
                    count += 1

            logger.info(f"Loaded {count} records from {tier.value} tier")

        return list(loaded.values())

    async def get_setting(self, key: str) -> Optional[Any]:
        """Read a small persisted value, transactional tier first."""
        for tier, backend in ((StorageTier.WARM, self.transactional), (StorageTier.COLD, self.flat)):
            try:
                value = await asyncio.to_thread(backend.get_setting, key)
            except PersistenceError as e:
                logger.warning(f"Could not read setting {key!r} from {tier.value} tier: {e}")
                continue
            if value is not None:
                return value
        return None

    async def set_setting(self, key: str, value: Any) -> None:
        results = await asyncio.gather(
            asyncio.to_thread(self.transactional.set_setting, key, value),
            asyncio.to_thread(self.flat.set_setting, key, value),
            return_exceptions=True,
        )
        for tier, result in zip(DURABLE_TIERS, results):
            if isinstance(result, BaseException):
                logger.warning(f"Could not persist setting {key!r} to {tier.value} tier: {result}")

    def get_statistics(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {StorageTier.HOT.value: self.memory.stats()}
        for tier, backend in ((StorageTier.WARM, self.transactional), (StorageTier.COLD, self.flat)):
            try:
                stats[tier.value] = backend.get_statistics()
            except PersistenceError as e:
                logger.warning(f"Failed to get {tier.value} tier stats: {e}")
                stats[tier.value] = {"error": str(e)}
        return stats

    # Internal methods

    @staticmethod
    def _write_durable(backend, content_id: str, data: bytes, record: Optional[Dict[str, Any]]) -> bool:
        """Blob first, then metadata. False means the tier refused the blob."""
        stored = backend.put_blob(content_id, data)
        if record is not None:
            backend.put_metadata(content_id, record)
        return stored

    @staticmethod
    async def _read_durable(backend, tier: StorageTier, content_id: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(backend.get_blob, content_id)
        except PersistenceError as e:
            logger.warning(f"{tier.value} tier read failed for {content_id[:16]}...: {e}")
            return None

    def _backfill(self, content_id: str, data: bytes) -> None:
        try:
            self.memory.put(content_id, data)
        except Exception as e:
            logger.warning(f"Cache backfill failed for {content_id[:16]}...: {e}")


def _tier_order(tier: StorageTier) -> int:
    return list(StorageTier).index(tier)
