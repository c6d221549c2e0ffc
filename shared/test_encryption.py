"""
Unit tests for encryption utilities.

Tests the EncryptionService class which handles AES-256-GCM encryption
and decryption of Notion access tokens.
"""

import base64
import os
import pytest
from unittest.mock import patch
from cryptography.exceptions import InvalidTag

from shared.encryption import EncryptedValue, EncryptionService, IV_LENGTH


class TestEncryptionService:
    """Test suite for EncryptionService."""

    def test_initialization_with_provided_key(self):
        """Test that EncryptionService initializes with a provided key."""
        test_key = EncryptionService.generate_key()

        service = EncryptionService(encryption_key=test_key)

        assert service.key == base64.b64decode(test_key)
        assert service.cipher is not None

    def test_initialization_with_env_key(self):
        """Test that EncryptionService loads key from environment variable."""
        test_key = EncryptionService.generate_key()

        with patch.dict(os.environ, {'TOKEN_ENCRYPTION_KEY': test_key}):
            service = EncryptionService()
            assert service.key == base64.b64decode(test_key)

    def test_initialization_generates_key_if_none_provided(self):
        """Test that EncryptionService generates a key if none provided."""
        with patch.dict(os.environ, {}, clear=True):
            service = EncryptionService()

            assert len(service.key) == 32
            assert service.cipher is not None

    def test_initialization_rejects_short_key(self):
        """Test that keys other than 256 bits are refused."""
        short_key = base64.b64encode(b"x" * 16).decode()

        with pytest.raises(ValueError):
            EncryptionService(encryption_key=short_key)

    def test_encrypt_returns_base64_ciphertext_and_iv(self):
        """Test encrypting a plaintext string."""
        service = EncryptionService()
        plaintext = "secret_notion_token_12345"

        encrypted = service.encrypt(plaintext)

        assert isinstance(encrypted, EncryptedValue)
        assert plaintext not in encrypted.ciphertext
        assert len(base64.b64decode(encrypted.iv)) == IV_LENGTH
        # GCM appends a 16 byte tag
        assert len(base64.b64decode(encrypted.ciphertext)) == len(plaintext.encode()) + 16

    def test_encrypt_decrypt_round_trip(self):
        """Test that encrypt/decrypt round trip preserves data."""
        service = EncryptionService()

        test_cases = [
            "simple_token",
            "token_with_special_chars!@#$%^&*()",
            "very_long_token_" + "x" * 1000,
            "unicode_token_🔐🔑",
            "",
        ]

        for plaintext in test_cases:
            encrypted = service.encrypt(plaintext)
            assert service.decrypt(encrypted.ciphertext, encrypted.iv) == plaintext

    def test_each_encryption_uses_a_fresh_iv(self):
        """Test that encrypting the same value twice gives different IVs and ciphertexts."""
        service = EncryptionService()

        first = service.encrypt("same_plaintext")
        second = service.encrypt("same_plaintext")

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_same_key_produces_consistent_decryption(self):
        """Test that the same key can decrypt ciphertext across instances."""
        key = EncryptionService.generate_key()

        encrypted = EncryptionService(encryption_key=key).encrypt("consistent_token")

        assert EncryptionService(encryption_key=key).decrypt(encrypted.ciphertext, encrypted.iv) == "consistent_token"

    def test_decrypt_with_wrong_key_raises_error(self):
        """Test that decrypting with wrong key raises an error."""
        encrypted = EncryptionService().encrypt("secret_token")

        with pytest.raises(InvalidTag):
            EncryptionService().decrypt(encrypted.ciphertext, encrypted.iv)

    def test_decrypt_with_wrong_associated_data_raises_error(self):
        """Test that a token bound to one user cannot be decrypted for another."""
        service = EncryptionService()
        encrypted = service.encrypt("secret_token", associated_data="user_a")

        assert service.decrypt(encrypted.ciphertext, encrypted.iv, associated_data="user_a") == "secret_token"
        with pytest.raises(InvalidTag):
            service.decrypt(encrypted.ciphertext, encrypted.iv, associated_data="user_b")

    def test_decrypt_tampered_ciphertext_raises_error(self):
        """Test that modified ciphertext fails authentication."""
        service = EncryptionService()
        encrypted = service.encrypt("secret_token")

        raw = bytearray(base64.b64decode(encrypted.ciphertext))
        raw[0] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode()

        with pytest.raises(InvalidTag):
            service.decrypt(tampered, encrypted.iv)

    def test_generate_key_produces_unique_256_bit_keys(self):
        """Test that generate_key returns distinct 32 byte keys."""
        key1 = EncryptionService.generate_key()
        key2 = EncryptionService.generate_key()

        assert len(base64.b64decode(key1)) == 32
        assert key1 != key2


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
