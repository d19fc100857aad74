"""Configuration package."""

from sealed_ledger.config.settings import (
    AppSettings,
    CryptoSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CryptoSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
