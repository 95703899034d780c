"""Configuration cache module for Ekuatia.

This module provides the two-level cache for issuer configurations and the
persistent stores behind it.

Available components:
- ConfigurationCache: Persistent level, reconciled against the service on every read
- SessionScopedCache: In-memory level cleared when the session ends
- EncryptedFileStore: Production-ready store with encryption on disk
- InMemoryStore: Simple in-memory store for testing and development
"""

from .configuration import ConfigurationCache, SessionScopedCache, cache_key
from .storage import EncryptedFileStore, InMemoryStore

__all__ = [
    "ConfigurationCache",
    "SessionScopedCache",
    "cache_key",
    "EncryptedFileStore",
    "InMemoryStore",
]
