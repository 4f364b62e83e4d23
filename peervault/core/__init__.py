"""
PeerVault Core Module

Core functionality for local content-addressed storage:
- Content addressing (SHA-256 content IDs and checksums)
- Metadata index with change notification
- Tiered persistence (memory, SQLite, flat files)
- Quota accounting, replication ledger, recovery sweep
- Optional encryption envelope
- Storage engine (unified interface)
"""

from peervault.core.content_addressing import ContentAddressingEngine, ContentID
from peervault.core.encryption import EncryptionEnvelope
from peervault.core.metadata_index import FileMetadata, MetadataIndex
from peervault.core.quota import QuotaAccountant, StorageQuota
from peervault.core.recovery import RecoverySweep, SweepReport
from peervault.core.replication import ReplicationLedger
from peervault.core.storage_engine import PeerVault, StorageEngine
from peervault.core.tiered_store import StorageTier, TieredPersistenceManager, TierSet

__all__ = [
    "ContentAddressingEngine",
    "ContentID",
    "EncryptionEnvelope",
    "FileMetadata",
    "MetadataIndex",
    "QuotaAccountant",
    "StorageQuota",
    "RecoverySweep",
    "SweepReport",
    "ReplicationLedger",
    "PeerVault",
    "StorageEngine",
    "StorageTier",
    "TieredPersistenceManager",
    "TierSet",
]
