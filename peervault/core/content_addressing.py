"""
Content addressing for PeerVault.

Every file is identified by the cryptographic hash of its plaintext bytes
(content ID). Identical bytes always produce the same ID, which is what
makes deduplication work. A second digest over the ID itself (checksum)
lets the recovery sweep spot corrupted index entries.
"""

import hashlib
from dataclasses import dataclass
import logging

from peervault.errors import HashError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentID:
    """Content identifier (hash of data)."""
    hash_algorithm: str  # e.g., "sha256"
    hash_value: bytes    # Binary hash

    @property
    def hex(self) -> str:
        """Get hex representation of hash."""
        return self.hash_value.hex()

    def __str__(self) -> str:
        return self.hex

    def __repr__(self) -> str:
        return f"ContentID({self.hash_algorithm}:{self.hex[:16]}...)"


class ContentAddressingEngine:
    """
    Derives content IDs and index checksums.

    Both functions are pure and deterministic. Content equality is assumed
    equivalent to ID equality, up to the strength of the digest.
    """

    def __init__(self, hash_algorithm: str = "sha256"):
        """
        Initialize content addressing engine.

        Args:
            hash_algorithm: Hash algorithm to use (sha256, sha3_256, blake2b, sha512)
        """
        self.hash_algorithm = hash_algorithm

        self.hash_functions = {
            "sha256": hashlib.sha256,
            "sha3_256": hashlib.sha3_256,
            "blake2b": hashlib.blake2b,
            "sha512": hashlib.sha512,
        }

        if hash_algorithm not in self.hash_functions:
            raise ValueError(f"Unsupported hash algorithm: {hash_algorithm}")

        logger.info(f"Initialized content addressing with {hash_algorithm}")

    def compute_content_id(self, data: bytes) -> ContentID:
        """
        Compute content ID for data.

        Callers reject empty input before getting here.

        Raises:
            HashError: if the hash function produced no digest
        """
        hash_func = self.hash_functions[self.hash_algorithm]
        hash_value = hash_func(data).digest()

        if not hash_value:
            raise HashError(f"{self.hash_algorithm} produced an empty digest")

        return ContentID(
            hash_algorithm=self.hash_algorithm,
            hash_value=hash_value
        )

    def checksum(self, content_id: str) -> str:
        """
        Digest of the content ID's own bytes.

        Independent of the content hash algorithm so that a record can be
        checked without re-reading its blob.
        """
        try:
            id_bytes = bytes.fromhex(content_id)
        except ValueError as e:
            raise HashError(f"Content ID is not valid hex: {content_id[:16]}...") from e
        return hashlib.sha256(id_bytes).hexdigest()

    def verify_content(self, data: bytes, content_id: str) -> bool:
        """True if data hashes to content_id."""
        return self.compute_content_id(data).hex == content_id

    def verify_checksum(self, content_id: str, checksum: str) -> bool:
        """True if checksum still matches content_id."""
        try:
            return self.checksum(content_id) == checksum
        except HashError:
            return False
