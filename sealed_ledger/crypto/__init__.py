"""
Crypto Package

Field-level envelope encryption with deterministic per-owner keys and a
legacy-key path used only by the migration sweep.
"""

from sealed_ledger.crypto.envelope import (
    APP_SALT,
    KDF_ITERATIONS,
    KEY_LENGTH,
    NONCE_LENGTH,
    CryptoEnvelope,
    parse_envelope,
)
from sealed_ledger.crypto.exceptions import (
    CryptoError,
    DecryptionError,
    EncryptionUnavailableError,
)
from sealed_ledger.crypto.legacy import (
    DirectoryLegacyKeySource,
    InMemoryLegacyKeySource,
    LegacyKeySource,
)
from sealed_ledger.crypto.provider import CryptographyProvider, CryptoProvider

__all__ = [
    "APP_SALT",
    "KDF_ITERATIONS",
    "KEY_LENGTH",
    "NONCE_LENGTH",
    "CryptoEnvelope",
    "parse_envelope",
    # Exceptions
    "CryptoError",
    "DecryptionError",
    "EncryptionUnavailableError",
    # Capabilities
    "CryptoProvider",
    "CryptographyProvider",
    "LegacyKeySource",
    "InMemoryLegacyKeySource",
    "DirectoryLegacyKeySource",
]
