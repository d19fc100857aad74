"""
Legacy Key Sources

Before keys were derived deterministically, each device generated a random
AES-256 key and kept it locally. Data encrypted with such a key can only be
read on that device. A LegacyKeySource hands those keys to the migration
sweep so the data can be re-encrypted under the derived key.

Only the migration path is given a LegacyKeySource.
"""

import asyncio
import base64
import binascii
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import structlog


logger = structlog.get_logger(__name__)

LEGACY_KEY_LENGTH = 32


class LegacyKeySource(ABC):
    """Capability for fetching an owner's device-local legacy key."""

    @abstractmethod
    async def try_get_legacy_key(self, owner_id: str) -> Optional[bytes]:
        """
        Fetch the legacy key for an owner.

        Returns:
            The raw key bytes, or None if this device has no legacy key
        """
        pass


class InMemoryLegacyKeySource(LegacyKeySource):
    """Legacy keys held in a dict (tests, or keys handed over by a client)."""

    def __init__(self, keys: Optional[dict[str, bytes]] = None):
        self._keys = dict(keys or {})

    def add(self, owner_id: str, key: bytes) -> None:
        self._keys[owner_id] = key

    async def try_get_legacy_key(self, owner_id: str) -> Optional[bytes]:
        return self._keys.get(owner_id)


class DirectoryLegacyKeySource(LegacyKeySource):
    """
    Legacy keys stored one per file as base64 text.

    File layout: <directory>/legacy_key_<owner_id>
    A missing, unreadable or malformed file means "no legacy key".
    """

    FILE_PREFIX = "legacy_key_"

    def __init__(self, directory: str):
        self._directory = Path(directory)

    def _path_for(self, owner_id: str) -> Optional[Path]:
        if not owner_id or "/" in owner_id or "\\" in owner_id or owner_id in (".", ".."):
            return None
        return self._directory / f"{self.FILE_PREFIX}{owner_id}"

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    async def try_get_legacy_key(self, owner_id: str) -> Optional[bytes]:
        path = self._path_for(owner_id)
        if path is None:
            return None

        try:
            # File I/O runs in a worker thread, off the event loop
            text = await asyncio.to_thread(self._read, path)
            if text is None:
                return None
            key = base64.b64decode(text.strip(), validate=True)
        except (OSError, binascii.Error, ValueError) as e:
            logger.warning("legacy_key_unreadable", owner_id=owner_id, error=str(e))
            return None

        if len(key) != LEGACY_KEY_LENGTH:
            logger.warning("legacy_key_wrong_length", owner_id=owner_id, length=len(key))
            return None
        return key
