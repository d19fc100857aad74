"""
Crypto Provider

DESIGN DECISION: Cryptographic primitives are an injected capability.
The envelope layer only composes them (derive -> encrypt -> encode), so it
can be exercised with a fake provider in tests, and swapped for a platform
implementation (HSM, OS keychain, WebCrypto bridge) without touching
ledger logic.

The default provider uses the `cryptography` package:
- Key derivation: PBKDF2-HMAC-SHA256
- AEAD: AES-GCM (the 16-byte tag is appended to the ciphertext)
- Digest: SHA-256
"""

import os
from abc import ABC, abstractmethod

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sealed_ledger.crypto.exceptions import CryptoError, DecryptionError


class CryptoProvider(ABC):
    """
    Abstract interface for the primitives the envelope layer needs.

    Implementations must raise CryptoError (or a subclass) on failure,
    never a library-specific exception.
    """

    @abstractmethod
    def derive_key(self, secret: bytes, salt: bytes, iterations: int, length: int) -> bytes:
        """Password-based key derivation."""
        pass

    @abstractmethod
    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        """AEAD encryption; returns ciphertext with the tag appended."""
        pass

    @abstractmethod
    def decrypt(self, key: bytes, nonce: bytes, data: bytes) -> bytes:
        """
        AEAD decryption of ciphertext-with-tag.

        Raises:
            DecryptionError: Wrong key, wrong nonce or tampered data
        """
        pass

    @abstractmethod
    def digest(self, data: bytes) -> bytes:
        """Cryptographic hash of `data`."""
        pass

    def random_bytes(self, length: int) -> bytes:
        """Cryptographically secure random bytes."""
        return os.urandom(length)


class CryptographyProvider(CryptoProvider):
    """CryptoProvider backed by the `cryptography` package."""

    def derive_key(self, secret: bytes, salt: bytes, iterations: int, length: int) -> bytes:
        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=length,
                salt=salt,
                iterations=iterations,
            )
            return kdf.derive(secret)
        except Exception as e:
            raise CryptoError(f"Key derivation failed: {e}") from e

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        try:
            return AESGCM(key).encrypt(nonce, plaintext, None)
        except Exception as e:
            raise CryptoError(f"Encryption failed: {e}") from e

    def decrypt(self, key: bytes, nonce: bytes, data: bytes) -> bytes:
        try:
            return AESGCM(key).decrypt(nonce, data, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch") from e
        except Exception as e:
            raise DecryptionError(f"Decryption failed: {e}") from e

    def digest(self, data: bytes) -> bytes:
        try:
            h = hashes.Hash(hashes.SHA256())
            h.update(data)
            return h.finalize()
        except Exception as e:
            raise CryptoError(f"Digest failed: {e}") from e
