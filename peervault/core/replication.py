"""
Replication ledger.

Tracks which peers claim to hold each piece of content. These are
advisory, unverified claims; nothing here proves a peer still has the
bytes. The broadcast calls are the only way this module talks to the
network collaborator, and their failures are logged, never raised.
"""

import asyncio
from typing import Iterable, List
import logging

from peervault.core.metadata_index import FileMetadata, MetadataIndex
from peervault.p2p.network import NetworkCollaborator

logger = logging.getLogger(__name__)


class ReplicationLedger:
    """Maintains FileMetadata.replicated_on through the metadata index."""

    def __init__(
        self,
        index: MetadataIndex,
        network: NetworkCollaborator,
        peer_timeout: float = 10.0,
    ):
        """
        Args:
            index: Metadata index holding the records
            network: Network collaborator used for pushes and notifications
            peer_timeout: Bound on any single collaborator call
        """
        self.index = index
        self.network = network
        self.peer_timeout = peer_timeout

    def register_local(self, content_id: str, owner_peer_id: str) -> bool:
        """Add the ingesting peer to replicated_on (idempotent)."""
        return self._add_holder(content_id, owner_peer_id)

    def record_remote_copy(self, content_id: str, peer_id: str) -> bool:
        """Record a peer's claim to hold a copy (idempotent, unverified)."""
        return self._add_holder(content_id, peer_id)

    def forget_peer_copy(self, content_id: str, peer_id: str) -> bool:
        """Drop a peer's claim. The last holder of a record is kept."""
        record = self.index.get(content_id)
        if record is None or peer_id not in record.replicated_on:
            return False
        if len(record.replicated_on) == 1:
            logger.warning(f"Not removing last holder {peer_id} of {content_id[:16]}...")
            return False

        record.replicated_on.remove(peer_id)
        self.index.upsert(record)
        return True

    def holders(self, content_id: str) -> List[str]:
        record = self.index.get(content_id)
        return list(record.replicated_on) if record else []

    async def propagate(
        self,
        metadata: FileMetadata,
        data: bytes,
        peer_ids: Iterable[str],
    ) -> List[str]:
        """
        Push a blob to peers and record every acknowledged copy.

        Returns:
            IDs of peers that acknowledged
        """
        targets = [peer_id for peer_id in peer_ids if peer_id not in metadata.replicated_on]
        if not targets:
            return []

        results = await asyncio.gather(
            *(self._send(peer_id, metadata, data) for peer_id in targets)
        )

        acked = [peer_id for peer_id, ok in zip(targets, results) if ok]
        for peer_id in acked:
            self.record_remote_copy(metadata.content_id, peer_id)

        logger.info(
            f"Replicated {metadata.content_id[:16]}... to {len(acked)}/{len(targets)} peer(s)"
        )
        return acked

    async def broadcast_add(self, metadata: FileMetadata) -> None:
        """Announce a file to the network. Fire-and-forget."""
        try:
            await asyncio.wait_for(self.network.on_file_added(metadata), self.peer_timeout)
        except Exception as e:
            logger.warning(f"Broadcast of {metadata.content_id[:16]}... failed: {e!r}")

    async def broadcast_delete(self, content_id: str) -> None:
        """Announce a deletion to the network. Fire-and-forget."""
        try:
            await asyncio.wait_for(self.network.on_file_deleted(content_id), self.peer_timeout)
        except Exception as e:
            logger.warning(f"Deletion broadcast of {content_id[:16]}... failed: {e!r}")

    # Internal methods

    def _add_holder(self, content_id: str, peer_id: str) -> bool:
        record = self.index.get(content_id)
        if record is None:
            logger.warning(f"Cannot record holder {peer_id} for unknown {content_id[:16]}...")
            return False
        if peer_id in record.replicated_on:
            return False

        record.replicated_on.append(peer_id)
        self.index.upsert(record)
        logger.debug(f"{peer_id} now holds {content_id[:16]}...")
        return True

    async def _send(self, peer_id: str, metadata: FileMetadata, data: bytes) -> bool:
        try:
            ack = await asyncio.wait_for(
                self.network.send_blob(peer_id, metadata.content_id, data, metadata),
                self.peer_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Peer {peer_id} timed out receiving {metadata.content_id[:16]}...")
            return False
        except Exception as e:
            logger.warning(f"Sending {metadata.content_id[:16]}... to {peer_id} failed: {e!r}")
            return False
        return bool(ack)
