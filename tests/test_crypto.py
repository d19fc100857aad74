"""
Tests for field envelope encryption.
"""

import asyncio
import base64
from decimal import Decimal

import pytest

from sealed_ledger.config import CryptoSettings
from sealed_ledger.crypto import (
    NONCE_LENGTH,
    CryptoEnvelope,
    DirectoryLegacyKeySource,
    EncryptionUnavailableError,
    InMemoryLegacyKeySource,
    parse_envelope,
)


class TestEnvelopeRoundTrip:
    """Encrypt/decrypt behaviour under the derived key."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["Rent", "", "Café ☕ 日本", "x" * 500])
    async def test_string_round_trip(self, envelope, owner_id, value):
        """Test that decrypt(encrypt(v)) == v for strings."""
        ciphertext = await envelope.encrypt_field(value, owner_id)
        assert await envelope.decrypt_field(ciphertext, owner_id) == value

    @pytest.mark.asyncio
    async def test_decimal_round_trip_as_string(self, envelope, owner_id):
        """Test that non-string values are encrypted as their string form."""
        ciphertext = await envelope.encrypt_field(Decimal("1234.56"), owner_id)
        assert await envelope.decrypt_field(ciphertext, owner_id) == "1234.56"

    @pytest.mark.asyncio
    async def test_wire_format(self, envelope, owner_id):
        """Test the base64(nonce):base64(ciphertext||tag) layout."""
        ciphertext = await envelope.encrypt_field("Rent", owner_id)
        nonce_b64, data_b64 = ciphertext.split(":")
        assert len(base64.b64decode(nonce_b64)) == NONCE_LENGTH
        # 4 bytes of plaintext plus the 16-byte tag
        assert len(base64.b64decode(data_b64)) == 4 + 16
        assert CryptoEnvelope.is_envelope(ciphertext)

    @pytest.mark.asyncio
    async def test_fresh_nonce_per_call(self, envelope, owner_id):
        """Test that encrypting the same value twice gives different envelopes."""
        first = await envelope.encrypt_field("Rent", owner_id)
        second = await envelope.encrypt_field("Rent", owner_id)
        assert first != second

    @pytest.mark.asyncio
    async def test_keys_are_deterministic_across_instances(self, owner_id):
        """Test that a second device derives an interchangeable key."""
        device_a = CryptoEnvelope(settings=CryptoSettings())
        device_b = CryptoEnvelope(settings=CryptoSettings())

        ciphertext = await device_a.encrypt_field("Salary", owner_id)
        assert await device_b.decrypt_field(ciphertext, owner_id) == "Salary"

        key_a = await device_a.derive_key(owner_id)
        key_b = await device_b.derive_key(owner_id)
        assert key_a.secret() == key_b.secret()

    @pytest.mark.asyncio
    async def test_key_cache_is_per_owner(self, envelope):
        """Test that a cached key is never served for another owner."""
        key_a = await envelope.derive_key("alice")
        key_b = await envelope.derive_key("bob")
        assert key_a.secret() != key_b.secret()
        assert (await envelope.derive_key("alice")).secret() == key_a.secret()

    @pytest.mark.asyncio
    async def test_empty_owner_rejected(self, envelope):
        """Test that key derivation needs an owner id."""
        with pytest.raises(ValueError):
            await envelope.derive_key("")


class TestDecryptNeverRaises:
    """Decryption failures degrade to the unchanged input."""

    @pytest.mark.asyncio
    async def test_wrong_owner_returns_input(self, envelope):
        """Test that another owner's ciphertext comes back unchanged."""
        ciphertext = await envelope.encrypt_field("Secret", "alice")
        assert await envelope.decrypt_field(ciphertext, "bob") == ciphertext

    @pytest.mark.asyncio
    async def test_tampered_ciphertext_returns_input(self, envelope, owner_id):
        """Test that a modified tag fails authentication quietly."""
        ciphertext = await envelope.encrypt_field("Secret", owner_id)
        nonce_b64, data_b64 = ciphertext.split(":")
        data = bytearray(base64.b64decode(data_b64))
        data[-1] ^= 0x01
        tampered = f"{nonce_b64}:{base64.b64encode(bytes(data)).decode()}"

        assert await envelope.decrypt_field(tampered, owner_id) == tampered

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["plain text", "a:b", "::", "", None, 42])
    async def test_non_envelopes_pass_through(self, envelope, owner_id, value):
        """Test that plaintext and junk are returned as-is."""
        assert await envelope.decrypt_field(value, owner_id) == value

    def test_parse_envelope_rejects_short_nonce(self):
        """Test that an envelope needs a 12-byte nonce and a full tag."""
        short_nonce = base64.b64encode(b"\x00" * 8).decode()
        data = base64.b64encode(b"\x00" * 20).decode()
        assert parse_envelope(f"{short_nonce}:{data}") is None

        nonce = base64.b64encode(b"\x00" * 12).decode()
        short_data = base64.b64encode(b"\x00" * 4).decode()
        assert parse_envelope(f"{nonce}:{short_data}") is None


class TestEncryptionFallback:
    """Encryption failure is explicit: fallback is logged and counted, or raised."""

    @pytest.mark.asyncio
    async def test_fallback_returns_plaintext_and_counts(self, broken_envelope, owner_id):
        """Test the availability-over-confidentiality fallback."""
        result = await broken_envelope.encrypt_field("Rent", owner_id)
        assert result == "Rent"
        assert broken_envelope.plaintext_fallbacks == 1

    @pytest.mark.asyncio
    async def test_strict_mode_raises(self, broken_envelope, owner_id):
        """Test that strict callers never get plaintext back."""
        with pytest.raises(EncryptionUnavailableError):
            await broken_envelope.encrypt_field("Rent", owner_id, strict=True)
        assert broken_envelope.plaintext_fallbacks == 0

    @pytest.mark.asyncio
    async def test_fallback_disabled_by_settings(self, broken_provider, owner_id):
        """Test that disabling the fallback makes every failure raise."""
        envelope = CryptoEnvelope(
            provider=broken_provider,
            settings=CryptoSettings(allow_plaintext_fallback=False),
        )
        with pytest.raises(EncryptionUnavailableError):
            await envelope.encrypt_field("Rent", owner_id)


class TestFingerprint:
    """Key fingerprints for cross-device comparison."""

    @pytest.mark.asyncio
    async def test_fingerprint_is_stable_and_short(self, envelope, owner_id):
        """Test that the fingerprint is deterministic truncated hex."""
        first = await envelope.fingerprint(owner_id)
        second = await CryptoEnvelope(settings=CryptoSettings()).fingerprint(owner_id)
        assert first == second
        assert len(first) == 16
        int(first, 16)

    @pytest.mark.asyncio
    async def test_fingerprint_differs_per_owner(self, envelope):
        """Test that owners get different fingerprints."""
        assert await envelope.fingerprint("alice") != await envelope.fingerprint("bob")

    @pytest.mark.asyncio
    async def test_fingerprint_does_not_expose_key(self, envelope, owner_id):
        """Test that the fingerprint is not a prefix of the raw key."""
        key = await envelope.derive_key(owner_id)
        assert key.secret().hex()[:16] != await envelope.fingerprint(owner_id)


class TestLegacyKeys:
    """Legacy device-key decryption."""

    @pytest.mark.asyncio
    async def test_legacy_decrypt(self, legacy_envelope, legacy_encrypt, owner_id):
        """Test that old-scheme ciphertext decrypts with the legacy key."""
        assert await legacy_envelope.legacy_decrypt(legacy_encrypt("Old rent"), owner_id) == "Old rent"

    @pytest.mark.asyncio
    async def test_legacy_decrypt_without_source(self, envelope, legacy_encrypt, owner_id):
        """Test that an envelope without a legacy source returns None."""
        assert envelope.has_legacy_source is False
        assert await envelope.legacy_decrypt(legacy_encrypt("Old rent"), owner_id) is None

    @pytest.mark.asyncio
    async def test_legacy_decrypt_rejects_current_scheme(self, legacy_envelope, owner_id):
        """Test that current-scheme ciphertext is not a legacy hit."""
        ciphertext = await legacy_envelope.encrypt_field("New rent", owner_id)
        assert await legacy_envelope.legacy_decrypt(ciphertext, owner_id) is None

    @pytest.mark.asyncio
    async def test_legacy_decrypt_unknown_owner(self, legacy_envelope, legacy_encrypt):
        """Test that an owner without a legacy key returns None."""
        assert await legacy_envelope.legacy_decrypt(legacy_encrypt("x"), "stranger") is None

    @pytest.mark.asyncio
    async def test_in_memory_source_add(self):
        """Test adding keys to the in-memory source."""
        source = InMemoryLegacyKeySource()
        source.add("alice", b"k" * 32)
        assert await source.try_get_legacy_key("alice") == b"k" * 32
        assert await source.try_get_legacy_key("bob") is None

    @pytest.mark.asyncio
    async def test_directory_source(self, tmp_path, legacy_key):
        """Test reading base64 key files from a directory."""
        (tmp_path / "legacy_key_alice").write_text(base64.b64encode(legacy_key).decode())
        (tmp_path / "legacy_key_short").write_text(base64.b64encode(b"abc").decode())
        (tmp_path / "legacy_key_junk").write_text("not base64 !!")

        source = DirectoryLegacyKeySource(str(tmp_path))
        assert await source.try_get_legacy_key("alice") == legacy_key
        assert await source.try_get_legacy_key("short") is None
        assert await source.try_get_legacy_key("junk") is None
        assert await source.try_get_legacy_key("missing") is None

    @pytest.mark.asyncio
    async def test_directory_source_reads_in_worker_thread(self, tmp_path, legacy_key, monkeypatch):
        """Test that key files are read off the event loop."""
        (tmp_path / "legacy_key_alice").write_text(base64.b64encode(legacy_key).decode())
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr("sealed_ledger.crypto.legacy.asyncio.to_thread", recording_to_thread)

        source = DirectoryLegacyKeySource(str(tmp_path))
        assert await source.try_get_legacy_key("alice") == legacy_key
        assert len(offloaded) == 1

    @pytest.mark.asyncio
    async def test_directory_source_rejects_path_traversal(self, tmp_path, legacy_key):
        """Test that owner ids cannot escape the key directory."""
        (tmp_path / "legacy_key_alice").write_text(base64.b64encode(legacy_key).decode())
        source = DirectoryLegacyKeySource(str(tmp_path / "sub"))
        assert await source.try_get_legacy_key("../legacy_key_alice") is None
