"""
Volatile in-process cache (hot tier).

Nothing here survives the process. Blobs that fall out of the cache are
restored from the durable tiers on the next read or recovery sweep.
"""

from collections import OrderedDict
from threading import RLock
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


class MemoryBackend:
    """LRU cache of content ID -> blob bytes."""

    def __init__(self, capacity: Optional[int] = None):
        """
        Args:
            capacity: Max number of blobs to keep (None = unbounded)
        """
        self.capacity = capacity
        self.cache: "OrderedDict[str, bytes]" = OrderedDict()
        self._lock = RLock()

    def get(self, content_id: str) -> Optional[bytes]:
        """Get blob, marking it most recently used."""
        with self._lock:
            if content_id not in self.cache:
                return None
            self.cache.move_to_end(content_id)
            return self.cache[content_id]

    def put(self, content_id: str, data: bytes) -> None:
        """Put blob, evicting the oldest entry if over capacity."""
        with self._lock:
            if content_id in self.cache:
                self.cache.move_to_end(content_id)
            self.cache[content_id] = bytes(data)
            if self.capacity is not None and len(self.cache) > self.capacity:
                evicted, _ = self.cache.popitem(last=False)
                logger.debug(f"Evicted {evicted[:16]}... from memory cache")

    def delete(self, content_id: str) -> bool:
        with self._lock:
            return self.cache.pop(content_id, None) is not None

    def contains(self, content_id: str) -> bool:
        with self._lock:
            return content_id in self.cache

    def clear(self) -> None:
        with self._lock:
            self.cache.clear()

    def stats(self) -> Dict[str, Optional[int]]:
        with self._lock:
            return {
                "items": len(self.cache),
                "bytes": sum(len(blob) for blob in self.cache.values()),
                "capacity": self.capacity,
            }
