"""
PeerVault - local storage for a peer-to-peer file browser

Content-addressed, tiered, self-healing storage for one node of a
peer-to-peer file sharing network.

Quick Start:
    >>> import asyncio
    >>> from pathlib import Path
    >>> from peervault import PeerVault, EngineConfig
    >>>
    >>> async def main():
    ...     async with PeerVault(EngineConfig(storage_dir=Path("./vault"))) as vault:
    ...         # Store data (deduplicated by content)
    ...         meta = await vault.add_file(b"Hello, peers!", "hello.txt")
    ...
    ...         # Retrieve data
    ...         data = await vault.get_file(meta.content_id)
    ...
    ...         # Check usage
    ...         quota = vault.get_storage_quota()
    ...         print(f"Used: {quota.used_gb:.6f} GB")
    >>>
    >>> asyncio.run(main())

Features:
    - Content-addressed storage (SHA-256, identical bytes stored once)
    - Three-tier storage (memory/SQLite/flat files)
    - Startup recovery sweep with bounded retries
    - Replication ledger for peer-held copies
    - Quota accounting with monthly cost estimate
    - Optional passphrase encryption (AES-GCM)
"""

from peervault.config import EngineConfig, ServerConfig
from peervault.core.storage_engine import PeerVault, StorageEngine
from peervault.core.tiered_store import StorageTier
from peervault.core.metadata_index import FileMetadata
from peervault.core.quota import StorageQuota
from peervault.errors import (
    DecryptionError,
    HashError,
    PeerVaultError,
    PersistenceError,
    RetrievalError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "PeerVault",
    "StorageEngine",
    "StorageTier",
    "FileMetadata",
    "StorageQuota",
    "EngineConfig",
    "ServerConfig",
    "PeerVaultError",
    "ValidationError",
    "HashError",
    "PersistenceError",
    "RetrievalError",
    "DecryptionError",
]
