"""
Shared test fixtures.

Everything runs against the in-memory store and the real `cryptography`
provider; no external services are touched.
"""

import base64
import datetime as dt
import os
from decimal import Decimal

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sealed_ledger.audit import AuditLogger
from sealed_ledger.config import CryptoSettings, LedgerSettings, Settings
from sealed_ledger.crypto import (
    CryptoEnvelope,
    CryptoError,
    CryptographyProvider,
    InMemoryLegacyKeySource,
)
from sealed_ledger.ledger import GroupMutationCoordinator, LedgerEntryCodec
from sealed_ledger.models.ledger import EntryKind, PaymentMethod, TransactionRequest
from sealed_ledger.orchestrator import LedgerService
from sealed_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


OWNER = "owner-123"


class BrokenEncryptProvider(CryptographyProvider):
    """Provider whose AEAD encryption always fails (platform crypto missing)."""

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        raise CryptoError("AES-GCM unavailable")


class FlakyEncryptProvider(CryptographyProvider):
    """Provider whose first AEAD encryption fails, then recovers."""

    def __init__(self, failures: int = 1):
        self.failures = failures

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        if self.failures > 0:
            self.failures -= 1
            raise CryptoError("AES-GCM temporarily unavailable")
        return super().encrypt(key, nonce, plaintext)


@pytest.fixture
def owner_id() -> str:
    return OWNER


@pytest.fixture
def crypto_settings() -> CryptoSettings:
    return CryptoSettings()


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings()


@pytest.fixture
def envelope(crypto_settings) -> CryptoEnvelope:
    return CryptoEnvelope(settings=crypto_settings)


@pytest.fixture
def broken_provider() -> BrokenEncryptProvider:
    return BrokenEncryptProvider()


@pytest.fixture
def broken_envelope(broken_provider, crypto_settings) -> CryptoEnvelope:
    return CryptoEnvelope(provider=broken_provider, settings=crypto_settings)


@pytest.fixture
def flaky_envelope(crypto_settings) -> CryptoEnvelope:
    return CryptoEnvelope(provider=FlakyEncryptProvider(), settings=crypto_settings)


@pytest.fixture
def legacy_key() -> bytes:
    return os.urandom(32)


@pytest.fixture
def legacy_keys(legacy_key) -> InMemoryLegacyKeySource:
    return InMemoryLegacyKeySource({OWNER: legacy_key})


@pytest.fixture
def legacy_envelope(legacy_keys, crypto_settings) -> CryptoEnvelope:
    return CryptoEnvelope(legacy_keys=legacy_keys, settings=crypto_settings)


@pytest.fixture
def legacy_encrypt(legacy_key):
    """Encrypt a value the way the old device-local key scheme did."""
    def encrypt(plaintext: str, key: bytes = None) -> str:
        nonce = os.urandom(12)
        data = AESGCM(key or legacy_key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return f"{base64.b64encode(nonce).decode()}:{base64.b64encode(data).decode()}"
    return encrypt


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def codec(envelope, crypto_settings) -> LedgerEntryCodec:
    return LedgerEntryCodec(envelope, crypto_settings)


@pytest.fixture
def coordinator(store, codec, audit_logger, ledger_settings) -> GroupMutationCoordinator:
    return GroupMutationCoordinator(store, codec, audit_logger, ledger_settings)


@pytest.fixture
def service(store, legacy_keys, audit_logger) -> LedgerService:
    return LedgerService(
        store=store,
        legacy_keys=legacy_keys,
        audit_logger=audit_logger,
        settings=Settings(),
    )


@pytest.fixture
def card_purchase() -> TransactionRequest:
    """A 3x credit card purchase of 100.00."""
    return TransactionRequest(
        description="Headphones",
        amount=Decimal("100.00"),
        kind=EntryKind.EXPENSE,
        category="Electronics",
        payment_method=PaymentMethod.CREDIT_CARD,
        date=dt.date(2025, 1, 31),
        due_date=dt.date(2025, 2, 10),
        is_installment=True,
        installment_count=3,
    )
