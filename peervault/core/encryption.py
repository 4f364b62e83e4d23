"""
Passphrase encryption envelope.

Blobs are wrapped before they reach any storage tier. The passphrase is
never stored; only a one-way fingerprint (key ID) goes into metadata so a
later download can tell the user whether their passphrase is plausible.

Envelope layout:
    MAGIC (4) | salt (16) | nonce (12) | AES-256-GCM ciphertext + tag
"""

import hashlib
import hmac
import os
import logging
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from peervault.errors import DecryptionError, ValidationError

logger = logging.getLogger(__name__)

MAGIC = b"PVE1"
SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
TAG_SIZE = 16
HEADER_SIZE = len(MAGIC) + SALT_SIZE + NONCE_SIZE


class EncryptionEnvelope:
    """AES-256-GCM envelope keyed by a PBKDF2-derived passphrase key."""

    def __init__(self, kdf_iterations: int = 200_000):
        self.kdf_iterations = kdf_iterations

    @staticmethod
    def key_id(passphrase: str) -> str:
        """One-way fingerprint of the passphrase."""
        return hashlib.sha256(passphrase.encode("utf-8")).hexdigest()

    def matches_key_id(self, passphrase: str, key_id: str) -> bool:
        return hmac.compare_digest(self.key_id(passphrase), key_id)

    def wrap(self, data: bytes, passphrase: str) -> Tuple[bytes, str]:
        """
        Encrypt data.

        Returns:
            (cipher_bytes, key_id)
        """
        self._check_passphrase(passphrase)

        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        key = self._derive_key(passphrase, salt)
        ciphertext = AESGCM(key).encrypt(nonce, data, MAGIC)

        logger.debug(f"Wrapped {len(data)} bytes -> {HEADER_SIZE + len(ciphertext)} bytes")

        return MAGIC + salt + nonce + ciphertext, self.key_id(passphrase)

    def unwrap(self, cipher_bytes: bytes, passphrase: str) -> bytes:
        """
        Decrypt an envelope.

        Raises:
            DecryptionError: wrong passphrase, or the envelope is malformed
                or has been tampered with
        """
        self._check_passphrase(passphrase)

        if len(cipher_bytes) < HEADER_SIZE + TAG_SIZE or not cipher_bytes.startswith(MAGIC):
            raise DecryptionError("Not a PeerVault encryption envelope")

        offset = len(MAGIC)
        salt = cipher_bytes[offset:offset + SALT_SIZE]
        offset += SALT_SIZE
        nonce = cipher_bytes[offset:offset + NONCE_SIZE]
        ciphertext = cipher_bytes[HEADER_SIZE:]

        key = self._derive_key(passphrase, salt)
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, MAGIC)
        except InvalidTag as e:
            raise DecryptionError("Wrong passphrase or corrupt ciphertext") from e

    def _derive_key(self, passphrase: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self.kdf_iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))

    @staticmethod
    def _check_passphrase(passphrase: str) -> None:
        if not passphrase:
            raise ValidationError("Passphrase must not be empty")
