"""
Storage quota accounting.

The quota is always derived from scratch from the index, never patched
with running totals, so deletes, recoveries and evictions cannot drift it.
"""

from dataclasses import dataclass
from typing import Iterable
import logging

from peervault.core.metadata_index import FileMetadata
from peervault.errors import ValidationError

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3


@dataclass(frozen=True)
class StorageQuota:
    """Capacity and usage snapshot."""
    total_capacity_gb: float
    used_gb: float
    available_gb: float
    monthly_cost: float

    @property
    def usage_percent(self) -> float:
        if self.total_capacity_gb <= 0:
            return 0.0
        return self.used_gb / self.total_capacity_gb * 100


class QuotaAccountant:
    """Computes StorageQuota from a snapshot of the metadata index."""

    def __init__(self, total_capacity_gb: float = 1.0, unit_price_per_gb: float = 1.0):
        self.total_capacity_gb = total_capacity_gb
        self.unit_price_per_gb = unit_price_per_gb

    def set_capacity(self, total_gb: float) -> None:
        if total_gb < 0:
            raise ValidationError(f"Capacity must be non-negative, got {total_gb}")
        self.total_capacity_gb = float(total_gb)
        logger.info(f"Storage capacity set to {self.total_capacity_gb} GB")

    def recompute(self, records: Iterable[FileMetadata]) -> StorageQuota:
        used_bytes = sum(record.size for record in records if record.is_valid)
        used_gb = used_bytes / BYTES_PER_GB

        return StorageQuota(
            total_capacity_gb=self.total_capacity_gb,
            used_gb=used_gb,
            available_gb=max(0.0, self.total_capacity_gb - used_gb),
            monthly_cost=self.total_capacity_gb * self.unit_price_per_gb,
        )
