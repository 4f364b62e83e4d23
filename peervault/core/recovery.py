"""
Validator and recovery sweep.

Per-record state machine:

    Valid --(blob missing from cache)--> Recovering
    Recovering --(found in a durable tier)--> Valid
    Recovering --(not found, retry_count < max)--> Recovering
    Recovering --(retry_count >= max)--> Evicted

Records whose checksum no longer matches their content ID are corrupt
index entries and are evicted on sight.
"""

from dataclasses import dataclass, field
from typing import List
import logging

from peervault.core.content_addressing import ContentAddressingEngine
from peervault.core.metadata_index import MetadataIndex
from peervault.core.tiered_store import StorageTier, TieredPersistenceManager

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """What one sweep did, by content ID."""
    healthy: List[str] = field(default_factory=list)
    recovered: List[str] = field(default_factory=list)
    recovering: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def checked(self) -> int:
        return (
            len(self.healthy) + len(self.recovered) + len(self.recovering)
            + len(self.evicted) + len(self.errors)
        )


class RecoverySweep:
    """Finds records whose blob left the cache and tries to bring it back."""

    def __init__(
        self,
        index: MetadataIndex,
        persistence: TieredPersistenceManager,
        content_addressing: ContentAddressingEngine,
        max_retries: int = 3,
    ):
        self.index = index
        self.persistence = persistence
        self.content_addressing = content_addressing
        self.max_retries = max_retries

    async def run(self) -> SweepReport:
        """Sweep every record currently in the index."""
        report = SweepReport()

        for content_id in list(self.index):
            try:
                await self._check(content_id, report)
            except Exception as e:
                logger.error(f"Recovery of {content_id[:16]}... failed: {e!r}")
                report.errors.append(content_id)

        logger.info(
            f"Recovery sweep: {len(report.healthy)} healthy, {len(report.recovered)} recovered, "
            f"{len(report.recovering)} still missing, {len(report.evicted)} evicted"
        )
        return report

    async def _check(self, content_id: str, report: SweepReport) -> None:
        record = self.index.get(content_id)
        if record is None:
            return  # deleted while the sweep was running

        if not self.content_addressing.verify_checksum(record.content_id, record.checksum):
            logger.error(f"Checksum mismatch for {record.name} ({content_id[:16]}...), evicting")
            await self._evict(content_id)
            report.evicted.append(content_id)
            return

        if self.persistence.is_cached(content_id):
            if not record.is_valid or record.retry_count:
                record.is_valid = True
                record.retry_count = 0
                self.index.upsert(record)
                await self.persistence.save_metadata(record)
            report.healthy.append(content_id)
            return

        logger.warning(f"File data missing for {record.name}, trying to recover...")
        blob = await self.persistence.get(content_id)

        # The record may have been deleted or replaced while we were reading.
        current = self.index.get(content_id)
        if current is None:
            return

        if blob is not None:
            current.is_valid = True
            current.retry_count = 0
            self.index.upsert(current)
            await self.persistence.save_metadata(current)
            report.recovered.append(content_id)
            logger.info(f"Recovered {current.name} from {_tier_label(blob.tier)}")
            return

        current.is_valid = False
        current.retry_count += 1

        if current.retry_count >= self.max_retries:
            logger.warning(
                f"Removing invalid file {current.name} after {current.retry_count} attempts"
            )
            await self._evict(content_id)
            report.evicted.append(content_id)
            return

        self.index.upsert(current)
        await self.persistence.save_metadata(current)
        report.recovering.append(content_id)
        logger.warning(
            f"Could not recover {current.name} "
            f"(attempt {current.retry_count}/{self.max_retries})"
        )

    async def _evict(self, content_id: str) -> None:
        self.index.remove(content_id)
        await self.persistence.delete(content_id)


def _tier_label(tier: StorageTier) -> str:
    return {
        StorageTier.HOT: "memory",
        StorageTier.WARM: "transactional store",
        StorageTier.COLD: "flat store",
    }[tier]
