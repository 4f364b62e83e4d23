"""
Main PeerVault storage engine orchestrator.

Coordinates content addressing, the metadata index, tiered persistence,
replication bookkeeping, quota accounting, recovery and the optional
encryption envelope. This is the primary API for storing and retrieving
files.
"""

import asyncio
import mimetypes
import time
import uuid
from typing import Any, Dict, List, Optional, Set
import logging

from peervault.backends import LocalBackend, MemoryBackend, SQLiteBackend
from peervault.config import EngineConfig
from peervault.errors import DecryptionError, PeerVaultError, RetrievalError, ValidationError
from peervault.p2p.network import NetworkCollaborator, NullNetwork
from peervault.p2p.peer_registry import PeerRegistry
from .content_addressing import ContentAddressingEngine
from .encryption import EncryptionEnvelope
from .metadata_index import FileMetadata, MetadataIndex
from .quota import QuotaAccountant, StorageQuota
from .recovery import RecoverySweep, SweepReport
from .replication import ReplicationLedger
from .tiered_store import TieredPersistenceManager

logger = logging.getLogger(__name__)

LOCAL_PEER_ID_KEY = "local_peer_id"
CAPACITY_KEY = "total_capacity_gb"
PEERS_KEY = "known_peers"
PENDING_DELETES_KEY = "pending_deletes"
DEFAULT_MIME_TYPE = "application/octet-stream"


class StorageEngine:
    """
    Local content-addressed storage engine.

    One instance per storage directory, constructed and owned by the
    caller:

        engine = StorageEngine(EngineConfig(storage_dir=Path("./vault")))
        await engine.initialize()
        metadata = await engine.add_file(b"...", "notes.txt")
        data = await engine.get_file(metadata.content_id)

    or, to also run the peer heartbeat monitor:

        async with StorageEngine(config) as engine:
            ...
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        network: Optional[NetworkCollaborator] = None,
        envelope: Optional[EncryptionEnvelope] = None,
    ):
        """
        Initialize PeerVault storage engine.

        Args:
            config: Engine configuration (default: EngineConfig())
            network: Network collaborator (default: NullNetwork, no peers)
            envelope: Encryption envelope (default: built from config)
        """
        self.config = config or EngineConfig()
        self.config.storage_dir.mkdir(parents=True, exist_ok=True)

        self.content_addressing = ContentAddressingEngine(self.config.hash_algorithm)
        self.envelope = envelope or EncryptionEnvelope(self.config.kdf_iterations)
        self.network = network or NullNetwork()

        self.persistence = TieredPersistenceManager(
            memory=MemoryBackend(self.config.cache_capacity),
            transactional=SQLiteBackend(self.config.database_path),
            flat=LocalBackend(self.config.flat_dir, self.config.flat_max_blob_size),
        )

        self.index = MetadataIndex()
        self.quota_accountant = QuotaAccountant(
            total_capacity_gb=self.config.default_capacity_gb,
            unit_price_per_gb=self.config.unit_price_per_gb,
        )
        self._quota = self.quota_accountant.recompute([])
        self.index.subscribe(self._on_index_changed)

        self.replication = ReplicationLedger(
            self.index, self.network, peer_timeout=self.config.peer_request_timeout
        )
        self.recovery = RecoverySweep(
            self.index,
            self.persistence,
            self.content_addressing,
            max_retries=self.config.max_retries,
        )
        self.peers = PeerRegistry(
            heartbeat_timeout=self.config.heartbeat_timeout,
            heartbeat_interval=self.config.heartbeat_interval,
        )

        self.local_peer_id: Optional[str] = None
        self.initialized = False
        self._pending_deletes: Set[str] = set()  # deleted, but a durable tier still holds them

        logger.info(
            f"Created storage engine (dir={self.config.storage_dir}, "
            f"hash={self.config.hash_algorithm}, "
            f"flat_ceiling={self.config.flat_max_blob_size} bytes)"
        )

    # Lifecycle

    async def initialize(self) -> SweepReport:
        """
        Load persisted state and run the startup recovery sweep.

        Returns:
            Report of the startup sweep
        """
        self.local_peer_id = await self._load_local_peer_id()
        self.peers.local_peer_id = self.local_peer_id
        self.peers.load(await self.persistence.get_setting(PEERS_KEY) or [])

        capacity = await self.persistence.get_setting(CAPACITY_KEY)
        if capacity is not None:
            self.quota_accountant.set_capacity(float(capacity))

        deleted = await self._purge_pending_deletes()
        for record in await self.persistence.load_metadata():
            if record.content_id in deleted:
                continue
            self.index.upsert(record)

        report = await self._run_sweep()
        self.initialized = True

        logger.info(
            f"Storage initialized with {len(self.index)} files "
            f"(peer={self.local_peer_id}, used={self._quota.used_gb:.4f} GB)"
        )
        return report

    async def start(self) -> None:
        """Initialize (if needed) and start the peer heartbeat monitor."""
        if not self.initialized:
            await self.initialize()
        await self.peers.start()

    async def close(self) -> None:
        await self.peers.stop()
        if self.initialized:
            await self.persistence.set_setting(PEERS_KEY, self.peers.to_records())

    async def __aenter__(self) -> "StorageEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Files

    async def add_file(
        self,
        data: bytes,
        name: str,
        mime_type: Optional[str] = None,
        indexed: bool = False,
        peer_id: Optional[str] = None,
        passphrase: Optional[str] = None,
    ) -> FileMetadata:
        """
        Ingest a file.

        Process:
        1. Validate input
        2. Compute content ID and checksum
        3. Wrap bytes if a passphrase is given
        4. Write to the tiers (only a cache failure is fatal)
        5. Index the record and register the ingesting peer
        6. Push to connected peers, persist metadata, announce if indexed

        Identical bytes land on the same record: the second ingest adds its
        peer to replicated_on and refreshes last_modified.

        Args:
            data: Raw file bytes
            name: File name
            mime_type: MIME type (guessed from name if omitted)
            indexed: Advertise for network-wide discovery
            peer_id: Ingesting peer (default: local peer)
            passphrase: Encrypt the stored blob with this passphrase

        Returns:
            The record as indexed

        Raises:
            ValidationError: empty data or name
            HashError: hashing failed
            PersistenceError: the cache write failed
        """
        self._require_initialized()

        if not data:
            raise ValidationError("Invalid file: file is empty")
        if not name:
            raise ValidationError("Invalid file: name is required")

        logger.info(f"Adding file: {name} ({len(data) / 1024 / 1024:.2f} MB)")

        content_id = self.content_addressing.compute_content_id(data).hex
        checksum = self.content_addressing.checksum(content_id)
        holder = peer_id or self.local_peer_id
        mime_type = mime_type or mimetypes.guess_type(name)[0] or DEFAULT_MIME_TYPE

        if passphrase:
            blob, key_id = self.envelope.wrap(data, passphrase)
        else:
            blob, key_id = data, None

        now = time.time()
        existing = self.index.get(content_id)
        if existing is not None:
            record = existing
            record.last_modified = now
            record.indexed = record.indexed or indexed
            logger.info(f"{name} matches existing content {content_id[:16]}..., re-ingesting")
        else:
            record = FileMetadata(
                id=str(uuid.uuid4()),
                content_id=content_id,
                checksum=checksum,
                name=name,
                mime_type=mime_type,
                size=len(data),
                uploaded_at=now,
                last_modified=now,
                indexed=indexed,
                owner_peer_id=holder,
            )
        record.is_encrypted = key_id is not None
        record.encryption_key_id = key_id
        record.is_valid = True
        record.retry_count = 0

        if content_id in self._pending_deletes:
            self._pending_deletes.discard(content_id)
            await self._save_pending_deletes()

        tier_set = await self.persistence.put(content_id, blob)

        self.index.upsert(record)
        self.replication.register_local(content_id, holder)

        if self.config.replication_enabled:
            targets = await self._reachable_peers()
            current = self.index.get(content_id)
            if targets and current is not None:
                await self.replication.propagate(current, blob, targets)

        current = self.index.get(content_id)
        if current is None:
            logger.warning(f"{name} was deleted while it was being added")
            return record

        await self.persistence.save_metadata(current)

        if current.indexed:
            await self.replication.broadcast_add(current)

        logger.info(
            f"File saved: {name} ({content_id[:16]}..., "
            f"tiers={','.join(sorted(t.value for t in tier_set.stored))})"
        )
        return current

    async def get_file(self, content_id: str, passphrase: Optional[str] = None) -> bytes:
        """
        Retrieve a file's plaintext bytes.

        Process:
        1. Lookup metadata
        2. Read from the tiers (cache, transactional, flat)
        3. Ask connected replica peers if every tier missed
        4. Unwrap if encrypted
        5. Verify content against its ID

        Raises:
            RetrievalError: not indexed, or bytes not found anywhere
            DecryptionError: missing or wrong passphrase, corrupt ciphertext
        """
        record = self.index.get(content_id)
        if record is None:
            logger.warning(f"File not found in index: {content_id[:16]}...")
            raise RetrievalError(f"File not found: {content_id}", content_id)

        blob = await self.persistence.get(content_id)
        if blob is not None:
            data = blob.data
            logger.debug(f"Retrieved {record.name} from {blob.tier.value} tier")
        else:
            data = await self._fetch_from_replicas(record)

        if data is None:
            raise RetrievalError(f"File data not found: {record.name}", content_id)

        if record.is_encrypted:
            data = self._unwrap(record, data, passphrase)

        if not self.content_addressing.verify_content(data, content_id):
            logger.error(f"Content verification failed for {content_id[:16]}...")
            raise RetrievalError(f"Content verification failed: {record.name}", content_id)

        logger.info(f"Retrieved {record.name} ({len(data)} bytes)")
        return data

    async def delete_file(self, content_id: str) -> FileMetadata:
        """
        Delete a file from the index and every tier, then announce it.

        Returns:
            The removed record

        Raises:
            RetrievalError: content ID is not indexed
        """
        record = self.index.remove(content_id)
        if record is None:
            raise RetrievalError(f"File not found: {content_id}", content_id)

        logger.info(f"Deleting file: {record.name}")

        failed = await self.persistence.delete(content_id)
        if failed:
            # Purged again on the next startup; until then it must not be reloaded
            self._pending_deletes.add(content_id)
            await self._save_pending_deletes()

        await self.replication.broadcast_delete(content_id)

        logger.info(f"File deleted: {record.name}")
        return record

    def get_metadata(self, content_id: str) -> Optional[FileMetadata]:
        return self.index.get(content_id)

    def get_file_index(self) -> List[FileMetadata]:
        return self.index.all()

    def search_files(self, query: str) -> List[FileMetadata]:
        return self.index.search(query)

    async def validate_all_files(self) -> SweepReport:
        """Run the recovery sweep on demand."""
        return await self._run_sweep()

    # Quota

    def get_storage_quota(self) -> StorageQuota:
        return self._quota

    async def set_storage_quota(self, total_gb: float) -> StorageQuota:
        self.quota_accountant.set_capacity(total_gb)
        self._recompute_quota()
        await self.persistence.set_setting(CAPACITY_KEY, float(total_gb))
        return self._quota

    # Replication and peers

    async def record_remote_copy(self, content_id: str, peer_id: str) -> bool:
        """Record that a peer claims to hold content."""
        self.peers.register_peer(peer_id)
        await self._save_peers()
        changed = self.replication.record_remote_copy(content_id, peer_id)
        if changed:
            await self._save_record(content_id)
        return changed

    async def forget_remote_copy(self, content_id: str, peer_id: str) -> bool:
        """Drop a peer's claim, e.g. after it announced a deletion."""
        changed = self.replication.forget_peer_copy(content_id, peer_id)
        if changed:
            await self._save_record(content_id)
        return changed

    async def mark_peer_online(self, peer_id: str) -> None:
        """Heartbeat entry point for the network collaborator."""
        self.peers.mark_peer_online(peer_id)
        await self._save_peers()

    async def update_peer_stats(self, peer_id: str, files_count: int, storage_used: int) -> None:
        self.peers.update_peer_stats(peer_id, files_count, storage_used)
        await self._save_peers()

    def get_network_stats(self) -> Dict[str, Any]:
        records = self.index.all()
        total_files = len(records)
        return {
            "peer_id": self.local_peer_id,
            **self.peers.get_stats(),
            "total_files": total_files,
            "average_replication": (
                sum(len(r.replicated_on) for r in records) / total_files
                if total_files > 0 else 0.0
            ),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Engine statistics: records, quota and per-tier usage."""
        records = self.index.all()
        quota = self._quota
        return {
            "files": {
                "total": len(records),
                "valid": sum(1 for r in records if r.is_valid),
                "invalid": sum(1 for r in records if not r.is_valid),
                "encrypted": sum(1 for r in records if r.is_encrypted),
                "indexed": sum(1 for r in records if r.indexed),
                "total_bytes": sum(r.size for r in records if r.is_valid),
            },
            "quota": {
                "total_capacity_gb": quota.total_capacity_gb,
                "used_gb": quota.used_gb,
                "available_gb": quota.available_gb,
                "monthly_cost": quota.monthly_cost,
                "usage_percent": quota.usage_percent,
            },
            "tiers": self.persistence.get_statistics(),
            "network": self.get_network_stats(),
        }

    # Internal methods

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise PeerVaultError("Storage engine not initialized; call initialize() first")

    def _on_index_changed(self, index: MetadataIndex) -> None:
        self._quota = self.quota_accountant.recompute(index.all())

    def _recompute_quota(self) -> None:
        self._quota = self.quota_accountant.recompute(self.index.all())

    async def _load_local_peer_id(self) -> str:
        peer_id = await self.persistence.get_setting(LOCAL_PEER_ID_KEY)
        if not peer_id:
            peer_id = f"peer-{uuid.uuid4()}"
            await self.persistence.set_setting(LOCAL_PEER_ID_KEY, peer_id)
            logger.info(f"Created new Peer ID: {peer_id}")
        return peer_id

    async def _run_sweep(self) -> SweepReport:
        report = await self.recovery.run()
        if report.evicted:
            await self.persistence.compact()
        self._recompute_quota()
        return report

    async def _save_peers(self) -> None:
        if not self.peers.dirty:
            return
        self.peers.dirty = False
        await self.persistence.set_setting(PEERS_KEY, self.peers.to_records())

    async def _save_pending_deletes(self) -> None:
        await self.persistence.set_setting(PENDING_DELETES_KEY, sorted(self._pending_deletes))

    async def _purge_pending_deletes(self) -> Set[str]:
        """
        Retry durable deletes that failed before the last shutdown.

        Returns:
            Every ID that was pending; none of them may be reloaded
        """
        pending = set(await self.persistence.get_setting(PENDING_DELETES_KEY) or [])
        if not pending:
            return pending

        for content_id in sorted(pending):
            if await self.persistence.delete(content_id):
                self._pending_deletes.add(content_id)
            else:
                logger.info(f"Purged deleted file {content_id[:16]}... from durable tiers")

        await self._save_pending_deletes()
        return pending

    async def _save_record(self, content_id: str) -> None:
        record = self.index.get(content_id)
        if record is not None:
            await self.persistence.save_metadata(record)

    async def _reachable_peers(self) -> List[str]:
        """Refresh the registry from the collaborator and list connected remote peers."""
        try:
            infos = await asyncio.wait_for(
                self.network.peer_list(), self.config.peer_request_timeout
            )
        except Exception as e:
            logger.warning(f"Could not fetch peer list: {e!r}")
            return []

        reachable = []
        for info in infos:
            if self.peers.observe(info) is not None and self.peers.is_connected(info.peer_id):
                reachable.append(info.peer_id)
        await self._save_peers()
        return reachable

    async def _fetch_from_replicas(self, record: FileMetadata) -> Optional[bytes]:
        """
        Ask connected replica peers for a blob every local tier missed.

        Each request is bounded by peer_request_timeout. A response counts
        as a heartbeat from that peer. Recovered bytes are written back
        through all tiers.
        """
        reachable = set(await self._reachable_peers())
        candidates = [
            peer_id for peer_id in record.replicated_on
            if peer_id != self.local_peer_id and peer_id in reachable
        ]
        if not candidates:
            logger.warning(f"No reachable replica for {record.name}")
            return None

        for peer_id in candidates:
            try:
                data = await asyncio.wait_for(
                    self.network.request_blob(peer_id, record.content_id),
                    self.config.peer_request_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Peer {peer_id} timed out serving {record.content_id[:16]}...")
                continue
            except Exception as e:
                logger.warning(f"Peer {peer_id} failed serving {record.content_id[:16]}...: {e!r}")
                continue

            if not data:
                continue

            self.peers.mark_peer_online(peer_id)

            if not record.is_encrypted and not self.content_addressing.verify_content(
                data, record.content_id
            ):
                logger.warning(f"Peer {peer_id} returned mismatching bytes for {record.name}")
                continue

            logger.info(f"Retrieved {record.name} from peer {peer_id}")
            await self.persistence.put(record.content_id, data, self.index.get(record.content_id))
            return data

        return None

    def _unwrap(self, record: FileMetadata, data: bytes, passphrase: Optional[str]) -> bytes:
        if not passphrase:
            raise DecryptionError(f"{record.name} is encrypted; a passphrase is required")
        if record.encryption_key_id and not self.envelope.matches_key_id(
            passphrase, record.encryption_key_id
        ):
            raise DecryptionError(f"Passphrase does not match the key used for {record.name}")
        return self.envelope.unwrap(data, passphrase)


# Convenience alias
PeerVault = StorageEngine
