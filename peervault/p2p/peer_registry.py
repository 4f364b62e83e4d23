"""
Peer registry with heartbeat-based liveness.

The network collaborator calls mark_peer_online() whenever it hears from a
peer. A background loop marks peers offline once they have been silent for
heartbeat_timeout seconds. Peers are never removed, only disconnected.

The table survives restarts: the owner persists to_records() whenever
`dirty` is set and hands the saved list back to load() on startup.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional
import logging

from peervault.p2p.network import PeerInfo

logger = logging.getLogger(__name__)


class PeerRegistry:
    """Known remote peers and their connection state."""

    def __init__(
        self,
        local_peer_id: Optional[str] = None,
        heartbeat_timeout: float = 30.0,
        heartbeat_interval: float = 10.0,
    ):
        """
        Args:
            local_peer_id: This node's ID (never registered as a remote peer)
            heartbeat_timeout: Seconds of silence before a peer goes offline
            heartbeat_interval: Seconds between liveness checks
        """
        self.local_peer_id = local_peer_id
        self.heartbeat_timeout = heartbeat_timeout
        self.heartbeat_interval = heartbeat_interval
        self.peers: Dict[str, PeerInfo] = {}
        self.dirty = False  # peers added or stats changed since last save
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def register_peer(self, peer_id: str, now: Optional[float] = None) -> Optional[PeerInfo]:
        """Register a peer on first contact. Returns None for the local peer."""
        if peer_id == self.local_peer_id:
            return None

        peer = self.peers.get(peer_id)
        if peer is None:
            peer = PeerInfo(peer_id=peer_id, last_seen=time.time() if now is None else now)
            self.peers[peer_id] = peer
            self.dirty = True
            logger.info(f"Peer registered: {peer_id}")
        return peer

    def observe(self, info: PeerInfo) -> Optional[PeerInfo]:
        """Merge a peer reported by the network collaborator."""
        peer = self.register_peer(info.peer_id, now=info.last_seen)
        if peer is None:
            return None
        if (peer.files_count, peer.storage_used) != (info.files_count, info.storage_used):
            peer.files_count = info.files_count
            peer.storage_used = info.storage_used
            self.dirty = True
        if info.is_connected and info.last_seen >= peer.last_seen:
            self.mark_peer_online(info.peer_id, now=info.last_seen)
        return peer

    def mark_peer_online(self, peer_id: str, now: Optional[float] = None) -> None:
        """Heartbeat from a peer."""
        peer = self.register_peer(peer_id, now=now)
        if peer is None:
            return

        was_offline = not peer.is_connected
        peer.is_connected = True
        peer.last_seen = time.time() if now is None else now
        if was_offline:
            logger.info(f"Peer {peer_id} came back online")

    def update_peer_stats(self, peer_id: str, files_count: int, storage_used: int) -> None:
        peer = self.peers.get(peer_id)
        if peer is None:
            logger.warning(f"Stats for unknown peer {peer_id} ignored")
            return
        peer.files_count = files_count
        peer.storage_used = storage_used
        peer.last_seen = time.time()
        self.dirty = True
        logger.debug(
            f"Updated stats for {peer_id}: {files_count} files, "
            f"{storage_used / 1024 ** 3:.2f} GB"
        )

    def check_heartbeats(self, now: Optional[float] = None) -> List[str]:
        """
        Mark silent peers offline.

        Returns:
            IDs of peers that went offline in this check
        """
        now = time.time() if now is None else now
        went_offline = []

        for peer_id, peer in self.peers.items():
            if peer.is_connected and not peer.is_alive(self.heartbeat_timeout, now):
                peer.is_connected = False
                went_offline.append(peer_id)
                logger.warning(f"Peer {peer_id} went offline")

        return went_offline

    def is_connected(self, peer_id: str) -> bool:
        peer = self.peers.get(peer_id)
        return peer is not None and peer.is_connected

    def get_peer(self, peer_id: str) -> Optional[PeerInfo]:
        return self.peers.get(peer_id)

    def get_connected_peers(self) -> List[PeerInfo]:
        return [peer for peer in self.peers.values() if peer.is_connected]

    def get_all_peers(self) -> List[PeerInfo]:
        return list(self.peers.values())

    def load(self, records: List[Dict[str, Any]]) -> int:
        """
        Restore persisted peers, all disconnected until heard from again.

        Returns:
            Number of peers restored
        """
        restored = 0
        for raw in records:
            try:
                peer = PeerInfo.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed peer record: {e}")
                continue
            if peer.peer_id == self.local_peer_id or peer.peer_id in self.peers:
                continue
            peer.is_connected = False
            self.peers[peer.peer_id] = peer
            restored += 1

        logger.info(f"Restored {restored} known peers")
        return restored

    def to_records(self) -> List[Dict[str, Any]]:
        return [peer.to_dict() for peer in self.peers.values()]

    def get_stats(self) -> Dict[str, Any]:
        online = self.get_connected_peers()
        return {
            "online_peers": len(online),
            "total_peers": len(self.peers),
            "total_storage": sum(peer.storage_used for peer in online),
        }

    async def start(self) -> None:
        """Start the background heartbeat check."""
        if self.running:
            logger.warning("Heartbeat monitor already running")
            return
        self.running = True
        self._task = asyncio.create_task(self._heartbeat_loop())
        logger.info(
            f"Heartbeat monitor started (timeout={self.heartbeat_timeout}s, "
            f"interval={self.heartbeat_interval}s)"
        )

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Heartbeat monitor stopped")

    async def _heartbeat_loop(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.heartbeat_interval)
                self.check_heartbeats()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in heartbeat loop: {e}")
