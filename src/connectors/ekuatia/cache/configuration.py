"""Two-level configuration cache.

Level 1 (:class:`SessionScopedCache`) holds what only makes sense while a
session is alive: the token, the taxpayer profile and the resolved modality.
It lives in memory and is cleared whenever the session ends.

Level 2 (:class:`ConfigurationCache`) keeps the issuer configuration in a
persistent store for 90 days. A persisted configuration is never returned
unverified: every lookup is reconciled against the authoritative copy held
by the Ekuatia service, so the cache saves a configuration round trip (login,
proposal, confirmation, save) but never replaces the source of truth.
"""

from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from config.logger import logger
from ..errors import ConfigurationFailure, ConfigurationRetrievalFailure, EkuatiaError, ErrorKind
from ..interfaces import (
    CacheEntry,
    CacheInvalidationTrigger,
    EstablishmentData,
    IPersistentStore,
    IssuerConfiguration,
    ModalityType,
    Profile,
)
from ..validation import validate_issuer_configuration

DEFAULT_TTL = timedelta(days=90)

# Fetches the authoritative configuration for a taxpayer, None if unset
ConfigurationSource = Callable[[str], Awaitable[Optional[IssuerConfiguration]]]


def cache_key(taxpayer_id: str) -> str:
    """Cache key for a taxpayer; the session is not part of the key."""
    return f"ekuatia_config_{taxpayer_id}"


class SessionScopedCache:
    """Level-1 cache tied to a single session.

    Never written to durable storage.
    """

    def __init__(self):
        self.session_token: Optional[str] = None
        self.profile: Optional[Profile] = None
        self.establishment: Optional[EstablishmentData] = None
        self.modality: Optional[ModalityType] = None

    @property
    def is_empty(self) -> bool:
        return self.session_token is None and self.profile is None and self.modality is None

    def clear(self) -> None:
        self.session_token = None
        self.profile = None
        self.establishment = None
        self.modality = None


class ConfigurationCache:
    """Persistent, always-reconciled cache of issuer configurations.

    Attributes:
        store: Durable key/value store holding the entries.
        ttl: Default lifetime of a new entry.
    """

    def __init__(
        self,
        store: IPersistentStore,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.ttl = ttl
        self._clock = clock
        self.logger = logger.bind(component="configuration_cache")

    async def get(
        self, taxpayer_id: str, source: ConfigurationSource
    ) -> Optional[IssuerConfiguration]:
        """Return the current configuration for a taxpayer.

        Steps:
        1. Load the persisted entry; an expired entry is deleted and ignored.
        2. Fetch the authoritative copy from ``source``.
        3. Without a cached entry, store and return the authoritative copy.
        4. With a cached entry, compare both copies. On mismatch the
           authoritative copy wins and replaces the cached one.

        Args:
            taxpayer_id: RUC without verification digit.
            source: Coroutine function returning the authoritative
                    configuration, or None if the taxpayer has none.

        Returns:
            The verified configuration, or None if none exists remotely.

        Raises:
            ConfigurationRetrievalFailure: If the source is unreachable.
            EkuatiaError: Non-transport errors from the source, unchanged.
            ConfigurationFailure: If the authoritative copy is invalid.
        """
        key = cache_key(taxpayer_id)
        cached = await self._load_unexpired(key, taxpayer_id)

        authoritative = await self._fetch(taxpayer_id, source, has_cached=cached is not None)

        if cached is None:
            if authoritative is None:
                self.logger.info("configuration_not_found", taxpayer_id=taxpayer_id)
                return None
            self.logger.info("configuration_cache_miss", taxpayer_id=taxpayer_id)
            await self.set(taxpayer_id, authoritative)
            return authoritative

        if authoritative is None:
            self.logger.warning(
                "configuration_mismatch",
                taxpayer_id=taxpayer_id,
                reason="missing_remotely",
            )
            await self.store.delete(key)
            return None

        if cached.value != authoritative:
            self.logger.warning(
                "configuration_mismatch",
                taxpayer_id=taxpayer_id,
                reason="differs_from_remote",
                cached_stored_at=cached.stored_at.isoformat(),
            )
            await self.set(taxpayer_id, authoritative)
            return authoritative

        self.logger.info("configuration_cache_hit", taxpayer_id=taxpayer_id)
        return cached.value

    async def set(
        self,
        taxpayer_id: str,
        config: IssuerConfiguration,
        ttl: Optional[timedelta] = None,
    ) -> None:
        """Store a configuration, overwriting any previous entry.

        Raises:
            ConfigurationFailure: If the configuration violates a constraint.
        """
        validate_issuer_configuration(config)

        entry = CacheEntry(value=config, stored_at=self._clock(), ttl=ttl or self.ttl)
        saved = await self.store.save(cache_key(taxpayer_id), entry)

        if saved:
            self.logger.info(
                "configuration_cached",
                taxpayer_id=taxpayer_id,
                expires_at=entry.expires_at.isoformat(),
            )
        else:
            # The service still holds the authoritative copy
            self.logger.warning("configuration_cache_write_failed", taxpayer_id=taxpayer_id)

    async def invalidate(
        self,
        taxpayer_id: str,
        trigger: Union[CacheInvalidationTrigger, str],
    ) -> bool:
        """Evict a taxpayer's configuration regardless of its TTL.

        The trigger is recorded for audit only.

        Returns:
            True if an entry was removed, False if the cache was already empty.

        Raises:
            ConfigurationFailure: ``INVALID_CONFIGURATION`` for an unknown
                trigger. Nothing is evicted in that case.
        """
        try:
            trigger = CacheInvalidationTrigger(trigger)
        except ValueError:
            raise ConfigurationFailure(
                f"Disparador de invalidación desconocido: {trigger}",
                code="INVALID_CONFIGURATION",
                context={"taxpayer_id": taxpayer_id, "trigger": str(trigger)},
            ) from None

        removed = await self.store.delete(cache_key(taxpayer_id))

        self.logger.info(
            "configuration_invalidated",
            taxpayer_id=taxpayer_id,
            trigger=trigger.value,
            removed=removed,
        )
        return removed

    async def peek(self, taxpayer_id: str) -> Optional[CacheEntry[IssuerConfiguration]]:
        """Return the unexpired persisted entry without reconciling it."""
        return await self._load_unexpired(cache_key(taxpayer_id), taxpayer_id)

    async def _load_unexpired(
        self, key: str, taxpayer_id: str
    ) -> Optional[CacheEntry[IssuerConfiguration]]:
        entry = await self.store.load(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            self.logger.info(
                "configuration_cache_expired",
                taxpayer_id=taxpayer_id,
                expired_at=entry.expires_at.isoformat(),
            )
            await self.store.delete(key)
            return None

        return entry

    async def _fetch(
        self, taxpayer_id: str, source: ConfigurationSource, has_cached: bool
    ) -> Optional[IssuerConfiguration]:
        try:
            return await source(taxpayer_id)
        except EkuatiaError as e:
            if e.kind not in (ErrorKind.TRANSPORT, ErrorKind.CONFIGURATION_RETRIEVAL):
                raise
            failure = e
        except Exception as e:
            failure = e

        self.logger.error(
            "configuration_retrieval_failed",
            taxpayer_id=taxpayer_id,
            has_cached=has_cached,
            error=str(failure),
        )
        if isinstance(failure, ConfigurationRetrievalFailure):
            raise failure
        raise ConfigurationRetrievalFailure(
            "No se pudo verificar la configuración con Ekuatia",
            context={"ruc": taxpayer_id, "cache_key": cache_key(taxpayer_id)},
        ) from failure
