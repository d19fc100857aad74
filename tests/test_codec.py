"""
Tests for the ledger entry codec.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from sealed_ledger.crypto import CryptoEnvelope
from sealed_ledger.ledger import LedgerEntryCodec, format_amount, parse_amount
from sealed_ledger.models.ledger import EntryKind, EntryStatus, LedgerEntry, PaymentMethod


PLACEHOLDER = "🔒 Protected data (migration required)"


def make_entry(owner_id: str, **overrides) -> LedgerEntry:
    fields = dict(
        owner_id=owner_id,
        description="Phone bill",
        amount=Decimal("89.9"),
        kind=EntryKind.EXPENSE,
        category="Utilities",
        payment_method=PaymentMethod.BOLETO,
        date=date(2025, 5, 2),
        due_date=date(2025, 5, 15),
    )
    fields.update(overrides)
    return LedgerEntry(**fields)


class TestAmountHelpers:
    """Amount formatting and parsing."""

    def test_format_amount_two_decimals(self):
        """Test that amounts are stored as plain two-decimal strings."""
        assert format_amount(Decimal("89.9")) == "89.90"
        assert format_amount(Decimal("1E+2")) == "100.00"
        assert format_amount(Decimal("0.005")) == "0.01"

    @pytest.mark.parametrize("value", ["abc", "", None, "NaN", "Infinity", True])
    def test_parse_amount_coerces_garbage_to_zero(self, value):
        """Test that unreadable amounts become zero instead of raising."""
        assert parse_amount(value) == Decimal("0")

    def test_parse_amount_accepts_numbers(self):
        """Test parsing of valid amounts."""
        assert parse_amount(" 12.50 ") == Decimal("12.50")
        assert parse_amount(7) == Decimal("7")


class TestToStorage:
    """Logical entry -> persisted record."""

    @pytest.mark.asyncio
    async def test_record_shape(self, codec, envelope, owner_id):
        """Test persisted field names and encrypted values."""
        record = await codec.to_storage(make_entry(owner_id))

        assert record["ownerId"] == owner_id
        assert record["type"] == "expense"
        assert record["paymentMethod"] == "boleto"
        assert record["status"] == "pending"
        assert record["date"] == "2025-05-02"
        assert record["dueDate"] == "2025-05-15"
        assert record["isEncrypted"] is True
        assert "groupId" not in record

        assert CryptoEnvelope.is_envelope(record["description"])
        assert await envelope.decrypt_field(record["description"], owner_id) == "Phone bill"
        assert await envelope.decrypt_field(record["amount"], owner_id) == "89.90"

    @pytest.mark.asyncio
    async def test_group_fields_included(self, codec, owner_id):
        """Test that installment fields are persisted for grouped entries."""
        entry = make_entry(owner_id, group_id="g1", installment_current=2, installment_total=3)
        record = await codec.to_storage(entry)
        assert record["groupId"] == "g1"
        assert record["installmentCurrent"] == 2
        assert record["installmentTotal"] == 3

    @pytest.mark.asyncio
    async def test_fallback_leaves_flag_unset(self, broken_envelope, crypto_settings, owner_id):
        """Test that a plaintext fallback is not flagged as encrypted."""
        codec = LedgerEntryCodec(broken_envelope, crypto_settings)
        record = await codec.to_storage(make_entry(owner_id))

        assert record["isEncrypted"] is False
        assert record["description"] == "Phone bill"
        assert record["amount"] == "89.90"
        assert broken_envelope.plaintext_fallbacks == 2


class TestFromStorage:
    """Persisted record -> logical entry."""

    @pytest.mark.asyncio
    async def test_round_trip(self, codec, owner_id):
        """Test that decode(encode(entry)) restores the logical entry."""
        entry = make_entry(owner_id, group_id="g1", installment_current=1, installment_total=2)
        record = await codec.to_storage(entry)
        record["id"] = "e1"
        record["createdAt"] = datetime(2025, 5, 2, tzinfo=timezone.utc)

        decoded = await codec.from_storage(record)

        assert decoded.id == "e1"
        assert decoded.description == "Phone bill"
        assert decoded.amount == Decimal("89.90")
        assert decoded.due_date == date(2025, 5, 15)
        assert decoded.group_id == "g1"
        assert decoded.is_encrypted is True
        assert decoded.created_at.year == 2025

    @pytest.mark.asyncio
    async def test_half_encrypted_record_reads_clean(
        self, codec, flaky_envelope, crypto_settings, owner_id
    ):
        """Test that an unflagged record holding one envelope decodes both fields."""
        record = await LedgerEntryCodec(flaky_envelope, crypto_settings).to_storage(
            make_entry(owner_id)
        )
        assert record["isEncrypted"] is False

        decoded = await codec.from_storage(record)

        assert decoded.description == "Phone bill"
        assert decoded.amount == Decimal("89.90")
        assert decoded.is_encrypted is False

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_round_trips(self, codec, owner_id):
        """Test that descriptions come back exactly as stored."""
        record = await codec.to_storage(make_entry(owner_id, description="  Phone bill "))
        decoded = await codec.from_storage(record)
        assert decoded.description == "  Phone bill "

    @pytest.mark.asyncio
    async def test_income_with_split_dates_uses_credit_date(self, codec, owner_id):
        """Test that income stored with date != dueDate decodes on the credit date."""
        record = await codec.to_storage(make_entry(
            owner_id,
            kind=EntryKind.INCOME,
            payment_method=PaymentMethod.TRANSFER,
            date=date(2025, 4, 5),
            due_date=date(2025, 4, 5),
        ))
        record["date"] = "2025-03-05"

        decoded = await codec.from_storage(record)

        assert decoded.date == decoded.due_date == date(2025, 4, 5)

    @pytest.mark.asyncio
    async def test_plaintext_record_passes_through(self, codec, owner_id):
        """Test that unflagged records are read as plaintext."""
        record = {
            "id": "e1",
            "ownerId": owner_id,
            "description": "Old entry",
            "amount": "15.5",
            "type": "income",
            "category": "Salary",
            "paymentMethod": "transfer",
            "status": "paid",
            "date": "2024-12-05",
            "dueDate": "2024-12-05",
            "isEncrypted": False,
        }
        decoded = await codec.from_storage(record)
        assert decoded.description == "Old entry"
        assert decoded.amount == Decimal("15.5")
        assert decoded.status == EntryStatus.PAID
        assert decoded.is_encrypted is False

    @pytest.mark.asyncio
    async def test_undecryptable_description_gets_placeholder(self, codec, crypto_settings, owner_id):
        """Test that foreign ciphertext is shown as protected, not raw."""
        foreign = CryptoEnvelope(settings=crypto_settings)
        record = await LedgerEntryCodec(foreign, crypto_settings).to_storage(make_entry("someone-else"))
        record.update({"id": "e1", "ownerId": owner_id})

        decoded = await codec.from_storage(record)

        assert decoded.description == PLACEHOLDER
        # Amount ciphertext does not parse either, so it degrades to zero
        assert decoded.amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_short_unchanged_value_is_not_placeholder(self, codec, owner_id):
        """Test that short values below the threshold are shown as-is."""
        record = {
            "id": "e1",
            "ownerId": owner_id,
            "description": "Short plain",
            "amount": "10.00",
            "type": "expense",
            "category": "Food",
            "paymentMethod": "cash",
            "date": "2025-01-01",
            "dueDate": "2025-01-01",
            "isEncrypted": True,
        }
        decoded = await codec.from_storage(record)
        assert decoded.description == "Short plain"
        assert decoded.amount == Decimal("10.00")
        assert decoded.status == EntryStatus.PENDING

    @pytest.mark.asyncio
    async def test_corrupt_amount_becomes_zero(self, codec, envelope, owner_id):
        """Test that an encrypted non-number amount decodes to zero."""
        record = await codec.to_storage(make_entry(owner_id))
        record["id"] = "e1"
        record["amount"] = await envelope.encrypt_field("not-a-number", owner_id)

        decoded = await codec.from_storage(record)
        assert decoded.amount == Decimal("0")
        assert decoded.description == "Phone bill"


class TestSerializeChanges:
    """Non-sensitive partial updates."""

    def test_maps_names_and_values(self):
        """Test logical -> persisted names, enum values and ISO dates."""
        fields = LedgerEntryCodec.serialize_changes({
            "category": "Travel",
            "payment_method": PaymentMethod.PIX,
            "status": EntryStatus.PAID,
            "due_date": date(2025, 6, 1),
            "description": "skipped",
            "amount": Decimal("1"),
        })
        assert fields == {
            "category": "Travel",
            "paymentMethod": "pix",
            "status": "paid",
            "dueDate": "2025-06-01",
        }

    @pytest.mark.asyncio
    async def test_encrypt_fields(self, codec, envelope, owner_id):
        """Test that only the requested sensitive fields are encrypted."""
        fields = await codec.encrypt_fields(owner_id, {"amount": Decimal("3.333")})
        assert set(fields) == {"amount"}
        assert await envelope.decrypt_field(fields["amount"], owner_id) == "3.33"
