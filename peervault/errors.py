"""
Exception hierarchy for PeerVault.

Tier-level failures (PersistenceError) are absorbed inside the tiered
persistence manager. Everything else propagates to the caller of the
storage engine operation that raised it.
"""

from typing import Optional


class PeerVaultError(Exception):
    """Base class for all storage engine errors."""
    pass


class ValidationError(PeerVaultError):
    """
    Raised for empty or malformed input.

    Rejected before hashing; nothing enters the index.
    """
    pass


class HashError(PeerVaultError):
    """Raised when hashing produced no usable digest."""
    pass


class PersistenceError(PeerVaultError):
    """
    Raised when a single storage tier failed to read or write.

    Only the volatile cache write lets this escape the persistence manager.
    """

    def __init__(self, message: str, tier: Optional[str] = None):
        super().__init__(message)
        self.tier = tier


class RetrievalError(PeerVaultError):
    """
    Raised when content is not in the index, any tier, or any reachable
    replica peer. A definite miss.
    """

    def __init__(self, message: str, content_id: Optional[str] = None):
        super().__init__(message)
        self.content_id = content_id


class DecryptionError(PeerVaultError):
    """Raised for a wrong passphrase or corrupt ciphertext."""
    pass
