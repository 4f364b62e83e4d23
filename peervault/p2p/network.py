"""
Network collaborator interface.

The real peer transport lives outside this package. The engine only needs
the narrow surface below: who is reachable, push a blob, pull a blob, and
two fire-and-forget notifications.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable
import logging

if TYPE_CHECKING:
    from peervault.core.metadata_index import FileMetadata

logger = logging.getLogger(__name__)


@dataclass
class PeerInfo:
    """Information about a remote peer."""
    peer_id: str
    last_seen: float = field(default_factory=time.time)
    files_count: int = 0
    storage_used: int = 0  # bytes
    is_connected: bool = True

    def is_alive(self, timeout: float = 30.0, now: Optional[float] = None) -> bool:
        """Check if peer was heard from within timeout seconds."""
        now = time.time() if now is None else now
        return (now - self.last_seen) <= timeout

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PeerInfo":
        return cls(
            peer_id=data["peer_id"],
            last_seen=float(data.get("last_seen", 0.0)),
            files_count=int(data.get("files_count", 0)),
            storage_used=int(data.get("storage_used", 0)),
            is_connected=bool(data.get("is_connected", False)),
        )


@runtime_checkable
class NetworkCollaborator(Protocol):
    """What the storage engine consumes from, and notifies, the network layer."""

    async def peer_list(self) -> List[PeerInfo]:
        ...

    async def send_blob(
        self,
        peer_id: str,
        content_id: str,
        data: bytes,
        metadata: "FileMetadata",
    ) -> bool:
        ...

    async def request_blob(self, peer_id: str, content_id: str) -> Optional[bytes]:
        ...

    async def on_file_added(self, metadata: "FileMetadata") -> None:
        ...

    async def on_file_deleted(self, content_id: str) -> None:
        ...


class NullNetwork:
    """
    Stand-in collaborator for a node with no transport.

    Knows no peers, holds no blobs, and only logs notifications.
    """

    async def peer_list(self) -> List[PeerInfo]:
        return []

    async def send_blob(self, peer_id, content_id, data, metadata) -> bool:
        return False

    async def request_blob(self, peer_id: str, content_id: str) -> Optional[bytes]:
        return None

    async def on_file_added(self, metadata) -> None:
        logger.info(f"Broadcasting file to network: {metadata.name} ({metadata.content_id[:16]}...)")

    async def on_file_deleted(self, content_id: str) -> None:
        logger.info(f"Broadcasting file deletion to network: {content_id[:16]}...")
