"""Encryption utilities for credential management."""

import base64
import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shared.config import get_encryption_key

logger = logging.getLogger(__name__)

# 96-bit nonce, the size recommended for GCM
IV_LENGTH = 12


@dataclass(frozen=True)
class EncryptedValue:
    """Ciphertext and initialization vector, both base64-encoded."""
    ciphertext: str
    iv: str


class EncryptionService:
    """Handles AES-256-GCM encryption and decryption of access tokens."""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialize encryption service.

        Args:
            encryption_key: Base64-encoded 256-bit key. If not provided,
                          will attempt to load from TOKEN_ENCRYPTION_KEY env var
                          or generate a new key (not recommended for production)
        """
        key = encryption_key or get_encryption_key()
        if key:
            self.key = base64.b64decode(key)
        else:
            # Generate a key (only for development/testing)
            logger.warning("TOKEN_ENCRYPTION_KEY is not set, using a generated key")
            self.key = AESGCM.generate_key(bit_length=256)

        if len(self.key) != 32:
            raise ValueError("Encryption key must decode to 32 bytes (AES-256)")

        self.cipher = AESGCM(self.key)

    def encrypt(self, plaintext: str, associated_data: Optional[str] = None) -> EncryptedValue:
        """
        Encrypt a plaintext string with a freshly generated IV.

        Args:
            plaintext: The string to encrypt
            associated_data: Optional context (e.g. the owning user id) that
                           must be supplied again to decrypt

        Returns:
            EncryptedValue holding base64 ciphertext and IV
        """
        iv = os.urandom(IV_LENGTH)
        aad = associated_data.encode() if associated_data else None
        encrypted_bytes = self.cipher.encrypt(iv, plaintext.encode(), aad)
        return EncryptedValue(
            ciphertext=base64.b64encode(encrypted_bytes).decode(),
            iv=base64.b64encode(iv).decode()
        )

    def decrypt(
        self,
        ciphertext: str,
        iv: str,
        associated_data: Optional[str] = None
    ) -> str:
        """
        Decrypt and authenticate an encrypted string.

        Args:
            ciphertext: Base64-encoded ciphertext (including the GCM tag)
            iv: Base64-encoded initialization vector
            associated_data: The context given at encryption time

        Returns:
            Decrypted plaintext string

        Raises:
            cryptography.exceptions.InvalidTag: If the ciphertext, IV, key or
                associated data do not match
        """
        aad = associated_data.encode() if associated_data else None
        decrypted_bytes = self.cipher.decrypt(
            base64.b64decode(iv),
            base64.b64decode(ciphertext),
            aad
        )
        return decrypted_bytes.decode()

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new encryption key.

        Returns:
            Base64-encoded 256-bit key
        """
        return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode()
