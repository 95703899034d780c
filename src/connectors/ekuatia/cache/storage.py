"""Persistent store implementations for the configuration cache.

This module provides different storage backends for cached issuer
configurations:
- InMemoryStore: Temporary storage in memory (mainly for testing)
- EncryptedFileStore: Persistent storage with encryption on disk

Both backends store :class:`CacheEntry` objects by key. Expiration is decided
by the cache layer, not by the stores.
"""

import json
import os
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from cryptography.fernet import Fernet

from ..interfaces import CacheEntry, IPersistentStore, IssuerConfiguration

logger = structlog.get_logger()

PLAIN_KEY_PATTERN = re.compile(r"[A-Za-z0-9_]+")


def serialize_entry(entry: CacheEntry[IssuerConfiguration]) -> Dict[str, Any]:
    """Convert a cache entry to a JSON-compatible dictionary."""
    return {
        "value": entry.value.to_dict(),
        "stored_at": entry.stored_at.isoformat(),
        "ttl_seconds": entry.ttl.total_seconds(),
        "invalidation_triggers": list(entry.invalidation_triggers),
    }


def deserialize_entry(data: Dict[str, Any]) -> CacheEntry[IssuerConfiguration]:
    """Rebuild a cache entry from :func:`serialize_entry` output."""
    return CacheEntry(
        value=IssuerConfiguration.from_dict(data["value"]),
        stored_at=datetime.fromisoformat(data["stored_at"]),
        ttl=timedelta(seconds=data["ttl_seconds"]),
        invalidation_triggers=list(data.get("invalidation_triggers", [])),
    )


class InMemoryStore(IPersistentStore):
    """In-memory store implementation.

    Keeps entries in a dictionary. Intended for tests and short-lived
    processes; everything is lost when the process terminates.
    """

    def __init__(self):
        self._entries: Dict[str, CacheEntry[IssuerConfiguration]] = {}
        self.logger = logger.bind(storage="memory")

    async def load(self, key: str) -> Optional[CacheEntry[IssuerConfiguration]]:
        entry = self._entries.get(key)

        if entry:
            self.logger.debug("cache_entry_loaded", key=key)
        else:
            self.logger.debug("cache_entry_not_found", key=key)

        return entry

    async def save(self, key: str, entry: CacheEntry[IssuerConfiguration]) -> bool:
        self._entries[key] = entry
        self.logger.debug("cache_entry_saved", key=key)
        return True

    async def delete(self, key: str) -> bool:
        if key in self._entries:
            del self._entries[key]
            self.logger.debug("cache_entry_deleted", key=key)
            return True

        return False


class EncryptedFileStore(IPersistentStore):
    """Encrypted file store for persistent cache entries.

    Entries are serialized to JSON and encrypted with Fernet before being
    written to disk, since a configuration contains the taxpayer's security
    code (CSC).

    Security features:
    - All entry data is encrypted using Fernet
    - Files are created with restrictive permissions (0o600)
    - The generated key is stored in a hidden file readable only by the owner
    - Keys are encoded before use in filenames

    Attributes:
        storage_path: Directory holding the encrypted entries
        fernet: Fernet encryption instance
        logger: Structured logger bound with the storage context
    """

    KEY_FILENAME = ".encryption_key"

    def __init__(self, storage_path: str, encryption_key: Optional[str] = None):
        """Initialize the encrypted store.

        Creates the storage directory if needed. Without an explicit key, the
        key saved by a previous run is reused; otherwise a new one is
        generated and saved.

        Args:
            storage_path: Directory where encrypted entries are stored
            encryption_key: Optional Fernet key, as string or bytes
        """
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)

        self.logger = logger.bind(storage="encrypted", path=str(self.storage_path))

        if encryption_key:
            self.fernet = Fernet(
                encryption_key.encode() if isinstance(encryption_key, str) else encryption_key
            )
        else:
            self.fernet = Fernet(self._load_or_create_key())

    def _load_or_create_key(self) -> bytes:
        key_path = self.storage_path / self.KEY_FILENAME
        if key_path.exists():
            return key_path.read_bytes()

        key = Fernet.generate_key()
        key_path.write_bytes(key)
        # Read/write for owner only
        os.chmod(key_path, 0o600)

        self.logger.info("encryption_key_saved")
        return key

    def _get_entry_path(self, key: str) -> Path:
        """Map a cache key to a file path.

        Keys made only of ASCII letters, digits and underscores are used as
        they are. Any other key is hex encoded, so distinct keys never share a
        file and no key can escape the storage directory.
        """
        if PLAIN_KEY_PATTERN.fullmatch(key):
            return self.storage_path / f"{key}.enc"
        return self.storage_path / f"{key.encode('utf-8').hex()}.hex.enc"

    async def load(self, key: str) -> Optional[CacheEntry[IssuerConfiguration]]:
        """Load and decrypt an entry.

        A missing, tampered or corrupted file yields None rather than an
        exception; the cache then refetches from the service.
        """
        try:
            entry_path = self._get_entry_path(key)

            if not entry_path.exists():
                self.logger.debug("cache_file_not_found", key=key)
                return None

            # Raises if tampered or encrypted with another key
            decrypted_data = self.fernet.decrypt(entry_path.read_bytes())
            entry = deserialize_entry(json.loads(decrypted_data.decode()))

            self.logger.debug("cache_entry_loaded_decrypted", key=key)
            return entry

        except Exception as e:
            self.logger.error(
                "cache_load_error",
                error=str(e),
                key=key,
                exc_info=True
            )
            return None

    async def save(self, key: str, entry: CacheEntry[IssuerConfiguration]) -> bool:
        """Encrypt and write an entry with owner-only permissions."""
        try:
            json_data = json.dumps(serialize_entry(entry))
            encrypted_data = self.fernet.encrypt(json_data.encode())

            entry_path = self._get_entry_path(key)
            entry_path.write_bytes(encrypted_data)
            os.chmod(entry_path, 0o600)

            self.logger.info("cache_entry_saved_encrypted", key=key, path=str(entry_path))
            return True

        except Exception as e:
            self.logger.error(
                "cache_save_error",
                error=str(e),
                key=key,
                exc_info=True
            )
            return False

    async def delete(self, key: str) -> bool:
        try:
            entry_path = self._get_entry_path(key)

            if entry_path.exists():
                entry_path.unlink()
                self.logger.info("cache_entry_deleted", key=key)
                return True

            return False

        except Exception as e:
            self.logger.error("cache_delete_error", error=str(e), key=key)
            return False
