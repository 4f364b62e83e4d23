"""
Tests for quota accounting.
"""

import pytest

from peervault.core.metadata_index import FileMetadata
from peervault.core.quota import BYTES_PER_GB, QuotaAccountant
from peervault.errors import ValidationError


def make_record(size: int, is_valid: bool = True) -> FileMetadata:
    return FileMetadata(
        id="id",
        content_id=f"{size:064x}",
        checksum="0" * 64,
        name="file.bin",
        mime_type="application/octet-stream",
        size=size,
        uploaded_at=0.0,
        last_modified=0.0,
        indexed=False,
        owner_peer_id="peer-local",
        replicated_on=["peer-local"],
        is_valid=is_valid,
    )


@pytest.mark.unit
class TestQuotaAccountant:

    def test_empty(self):
        quota = QuotaAccountant().recompute([])

        assert quota.used_gb == 0
        assert quota.total_capacity_gb == 1.0
        assert quota.available_gb == 1.0
        assert quota.monthly_cost == 1.0

    def test_used_is_sum_of_sizes(self):
        records = [make_record(BYTES_PER_GB // 4), make_record(BYTES_PER_GB // 4 + 1)]

        quota = QuotaAccountant(total_capacity_gb=2.0).recompute(records)

        assert quota.used_gb == pytest.approx(0.5, abs=1e-9)
        assert quota.available_gb == pytest.approx(1.5, abs=1e-9)
        assert quota.usage_percent == pytest.approx(25.0, abs=1e-6)

    def test_invalid_records_not_counted(self):
        records = [make_record(BYTES_PER_GB // 2), make_record(BYTES_PER_GB // 2 + 1, is_valid=False)]

        quota = QuotaAccountant().recompute(records)

        assert quota.used_gb == pytest.approx(0.5)

    def test_available_never_negative(self):
        quota = QuotaAccountant(total_capacity_gb=0.5).recompute([make_record(BYTES_PER_GB)])

        assert quota.available_gb == 0.0

    def test_cost_follows_capacity(self):
        accountant = QuotaAccountant(unit_price_per_gb=2.0)
        accountant.set_capacity(5)

        assert accountant.recompute([]).monthly_cost == 10.0

    def test_negative_capacity_rejected(self):
        with pytest.raises(ValidationError):
            QuotaAccountant().set_capacity(-1)
