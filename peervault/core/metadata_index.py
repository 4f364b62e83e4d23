"""
Metadata index: content ID -> FileMetadata.

The index is the single source of truth for which files the engine holds.
It only ever hands out copies, so the one way to change a record is to
upsert it back.
"""

from dataclasses import dataclass, field, asdict, replace
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class FileMetadata:
    """Metadata for one distinct piece of content."""
    id: str
    content_id: str
    checksum: str
    name: str
    mime_type: str
    size: int  # plaintext bytes, even when the blob is encrypted
    uploaded_at: float
    last_modified: float
    indexed: bool
    owner_peer_id: str
    replicated_on: List[str] = field(default_factory=list)
    is_encrypted: bool = False
    encryption_key_id: Optional[str] = None
    is_valid: bool = True
    retry_count: int = 0

    def copy(self) -> "FileMetadata":
        return replace(self, replicated_on=list(self.replicated_on))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileMetadata":
        return cls(
            id=data["id"],
            content_id=data["content_id"],
            checksum=data["checksum"],
            name=data["name"],
            mime_type=data.get("mime_type", "application/octet-stream"),
            size=int(data["size"]),
            uploaded_at=float(data["uploaded_at"]),
            last_modified=float(data.get("last_modified", data["uploaded_at"])),
            indexed=bool(data.get("indexed", False)),
            owner_peer_id=data["owner_peer_id"],
            replicated_on=list(data.get("replicated_on", [])),
            is_encrypted=bool(data.get("is_encrypted", False)),
            encryption_key_id=data.get("encryption_key_id"),
            is_valid=bool(data.get("is_valid", True)),
            retry_count=int(data.get("retry_count", 0)),
        )


IndexListener = Callable[["MetadataIndex"], None]


class MetadataIndex:
    """
    In-memory map of content ID to FileMetadata.

    Listeners registered with subscribe() run after every upsert/remove;
    the storage engine uses this to recompute the quota.
    """

    def __init__(self):
        self._records: Dict[str, FileMetadata] = {}
        self._listeners: List[IndexListener] = []

    def subscribe(self, listener: IndexListener) -> None:
        self._listeners.append(listener)

    def upsert(self, metadata: FileMetadata) -> None:
        self._records[metadata.content_id] = metadata.copy()
        self._notify()

    def get(self, content_id: str) -> Optional[FileMetadata]:
        record = self._records.get(content_id)
        return record.copy() if record else None

    def remove(self, content_id: str) -> Optional[FileMetadata]:
        record = self._records.pop(content_id, None)
        if record is not None:
            self._notify()
        return record

    def all(self) -> List[FileMetadata]:
        return [record.copy() for record in self._records.values()]

    def find(self, predicate: Callable[[FileMetadata], bool]) -> List[FileMetadata]:
        return [record.copy() for record in self._records.values() if predicate(record)]

    def search(self, query: str) -> List[FileMetadata]:
        """Case-insensitive match on name, or substring match on content ID."""
        lower_query = query.lower()
        return self.find(
            lambda record: lower_query in record.name.lower() or query in record.content_id
        )

    def __contains__(self, content_id: str) -> bool:
        return content_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self)
