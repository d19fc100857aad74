"""
Field Envelope Encryption

Every sensitive field is encrypted on its own into a self-contained
envelope:

    base64(nonce) + ":" + base64(ciphertext || tag)

DESIGN DECISIONS:
1. Keys are derived, never stored. PBKDF2 over the owner id with a fixed
   application salt gives every device the same key for the same owner.
   The KDF parameters below are part of the data format: changing any of
   them orphans every existing ciphertext.
2. A fresh random 96-bit nonce per call. AES-GCM with a repeated
   (key, nonce) pair leaks plaintext and the authentication key.
3. Decryption never raises. A value that cannot be decrypted is returned
   unchanged, so callers detect "still encrypted" by comparing output to
   input and keep rendering the rest of the ledger.
4. Encryption failure is an explicit, counted, logged event. By default the
   plaintext is returned (availability over confidentiality); strict
   callers get EncryptionUnavailableError instead.
"""

import asyncio
import base64
import binascii
from typing import Any, Optional

import structlog

from sealed_ledger.config import CryptoSettings, get_settings
from sealed_ledger.crypto.exceptions import CryptoError, EncryptionUnavailableError
from sealed_ledger.crypto.legacy import LegacyKeySource
from sealed_ledger.crypto.provider import CryptographyProvider, CryptoProvider
from sealed_ledger.models.ledger import KeyMaterial


logger = structlog.get_logger(__name__)

# Key derivation parameters (part of the data format - do not change)
APP_SALT = b"sealed-ledger:field-encryption:v1"
KDF_ITERATIONS = 100_000
KEY_LENGTH = 32

# Envelope format
NONCE_LENGTH = 12
TAG_LENGTH = 16
SEPARATOR = ":"


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def parse_envelope(value: Any) -> Optional[tuple[bytes, bytes]]:
    """
    Split an envelope into (nonce, ciphertext-with-tag).

    Returns None for anything that is not structurally an envelope.
    """
    if not isinstance(value, str) or value.count(SEPARATOR) != 1:
        return None

    nonce_b64, data_b64 = value.split(SEPARATOR)
    try:
        nonce = base64.b64decode(nonce_b64, validate=True)
        data = base64.b64decode(data_b64, validate=True)
    except (binascii.Error, ValueError):
        return None

    if len(nonce) != NONCE_LENGTH or len(data) < TAG_LENGTH:
        return None
    return nonce, data


class CryptoEnvelope:
    """
    Per-owner field encryption.

    Stateless apart from a derived-key cache keyed by the exact owner id,
    and a counter of plaintext fallbacks for operators and tests.
    """

    def __init__(
        self,
        provider: Optional[CryptoProvider] = None,
        legacy_keys: Optional[LegacyKeySource] = None,
        settings: Optional[CryptoSettings] = None,
    ):
        self._provider = provider or CryptographyProvider()
        self._legacy_keys = legacy_keys
        self._settings = settings or get_settings().crypto
        self._keys: dict[str, KeyMaterial] = {}
        self.plaintext_fallbacks = 0

    @property
    def has_legacy_source(self) -> bool:
        return self._legacy_keys is not None

    async def derive_key(self, owner_id: str) -> KeyMaterial:
        """
        Derive (or fetch from cache) the owner's field key.

        The KDF runs in a worker thread so it never blocks the event loop.

        Raises:
            ValueError: Empty owner id
            CryptoError: The provider failed
        """
        if not owner_id:
            raise ValueError("owner_id is required for key derivation")

        cached = self._keys.get(owner_id)
        if cached is not None:
            return cached

        raw = await asyncio.to_thread(
            self._provider.derive_key,
            owner_id.encode("utf-8"),
            APP_SALT,
            KDF_ITERATIONS,
            KEY_LENGTH,
        )
        key = KeyMaterial(owner_id=owner_id, raw=raw)
        self._keys[owner_id] = key
        return key

    async def encrypt_field(self, plaintext: Any, owner_id: str, strict: bool = False) -> str:
        """
        Encrypt one field value.

        Non-string values (Decimal, int) are encrypted as their string form.

        Args:
            plaintext: Value to encrypt
            owner_id: Owner whose key is used
            strict: Raise instead of falling back to plaintext

        Returns:
            The envelope, or the plaintext string on an allowed fallback

        Raises:
            EncryptionUnavailableError: Encryption failed and fallback is not allowed
        """
        text = plaintext if isinstance(plaintext, str) else str(plaintext)

        try:
            key = await self.derive_key(owner_id)
            nonce = self._provider.random_bytes(NONCE_LENGTH)
            data = self._provider.encrypt(key.secret(), nonce, text.encode("utf-8"))
        except CryptoError as e:
            if strict or not self._settings.allow_plaintext_fallback:
                raise EncryptionUnavailableError(str(e)) from e
            self.plaintext_fallbacks += 1
            logger.warning(
                "encryption_fallback_plaintext",
                owner_id=owner_id,
                error=str(e),
                fallbacks=self.plaintext_fallbacks,
            )
            return text

        return f"{_b64encode(nonce)}{SEPARATOR}{_b64encode(data)}"

    async def decrypt_field(self, envelope: Any, owner_id: str) -> Any:
        """
        Decrypt one field value.

        Never raises: malformed envelopes, wrong keys and tampered data all
        return `envelope` unchanged.
        """
        parsed = parse_envelope(envelope)
        if parsed is None:
            return envelope

        nonce, data = parsed
        try:
            key = await self.derive_key(owner_id)
            return self._provider.decrypt(key.secret(), nonce, data).decode("utf-8")
        except (CryptoError, UnicodeDecodeError, ValueError):
            return envelope

    async def legacy_decrypt(self, envelope: Any, owner_id: str) -> Optional[str]:
        """
        Try to decrypt with the owner's device-local legacy key.

        Returns:
            The plaintext, or None when there is no legacy source, no key
            for this owner, or the value does not decrypt with it
        """
        if self._legacy_keys is None:
            return None

        parsed = parse_envelope(envelope)
        if parsed is None:
            return None

        legacy_key = await self._legacy_keys.try_get_legacy_key(owner_id)
        if legacy_key is None:
            return None

        nonce, data = parsed
        try:
            return self._provider.decrypt(legacy_key, nonce, data).decode("utf-8")
        except (CryptoError, UnicodeDecodeError):
            return None

    async def fingerprint(self, owner_id: str) -> str:
        """
        Short hex digest of the owner's derived key, for display.

        Two devices showing the same fingerprint can read each other's data.
        """
        key = await self.derive_key(owner_id)
        digest = self._provider.digest(key.secret())
        return digest.hex()[: self._settings.fingerprint_length]

    @staticmethod
    def is_envelope(value: Any) -> bool:
        """True if `value` is structurally a ciphertext envelope."""
        return parse_envelope(value) is not None
