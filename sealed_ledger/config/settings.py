"""
Configuration Management for Sealed Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Key-derivation parameters are NOT configuration: they live as constants in
the crypto package, because changing them would make every existing
ciphertext unreadable on every device.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CryptoSettings(BaseSettings):
    """Field-encryption behaviour (operational knobs only)."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_CRYPTO_",
        extra="ignore"
    )

    allow_plaintext_fallback: bool = Field(
        default=True,
        description="Store plaintext when the crypto provider fails (logged and counted)"
    )
    fingerprint_length: int = Field(
        default=16,
        ge=8,
        le=32,
        description="Hex characters of the key digest shown as fingerprint"
    )
    decryption_failure_threshold: int = Field(
        default=50,
        ge=0,
        description="Stored values longer than this that fail to decrypt get the placeholder"
    )
    protected_placeholder: str = Field(
        default="🔒 Protected data (migration required)",
        description="Description shown when a stored value cannot be decrypted"
    )
    legacy_key_dir: Optional[str] = Field(
        default=None,
        description="Directory holding device-local legacy keys, if any"
    )

    @field_validator('legacy_key_dir')
    @classmethod
    def validate_legacy_key_dir(cls, v: Optional[str]) -> Optional[str]:
        """Warn if the legacy key directory doesn't exist (migration will find no keys)."""
        if v and not Path(v).is_dir():
            import warnings
            warnings.warn(
                f"Legacy key directory not found at {v}. "
                "Migration will only encrypt plaintext entries."
            )
        return v


class LedgerSettings(BaseSettings):
    """Installment, recurrence and store-interaction settings."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    # Categories whose installments repeat the full amount instead of splitting it
    recurring_categories: str = Field(
        default="Streaming",
        description="Comma-separated list of recurring (non-divisible) categories"
    )
    due_date_payment_methods: str = Field(
        default="credit_card,boleto",
        description="Comma-separated payment methods that carry a distinct due date"
    )
    decode_concurrency: int = Field(
        default=16,
        ge=1,
        le=256,
        description="Maximum concurrent record decodes per snapshot"
    )
    commit_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a batch commit that hits a transient connection error"
    )

    @property
    def recurring_categories_set(self) -> frozenset[str]:
        """Get recurring categories as a set."""
        return frozenset(
            c.strip() for c in self.recurring_categories.split(",") if c.strip()
        )

    @property
    def due_date_payment_methods_set(self) -> frozenset[str]:
        """Get due-date payment methods as a set."""
        return frozenset(
            m.strip().lower() for m in self.due_date_payment_methods.split(",") if m.strip()
        )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def crypto(self) -> CryptoSettings:
        return CryptoSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus "<name>_error"
    entries for the ones that failed. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("crypto", "ledger", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
