"""Environment-driven settings for the invoice agent.

Values are read from the process environment after loading an optional
``.env`` file with python-dotenv.
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float, cast=float):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass
class Settings:
    """Runtime settings.

    Attributes:
        cache_path: Directory for the encrypted configuration cache.
        cache_key: Fernet key for the cache files. Generated when missing.
        cache_ttl_days: Lifetime of a cached issuer configuration.
        retry_attempts: Total submission attempts, including the first.
        retry_initial_delay: Delay in seconds before the first retry.
        retry_multiplier: Backoff factor applied after each retry.
        log_level: Minimum log level.
        log_json: Render logs as JSON lines.
    """
    cache_path: str = "/tmp/ekuatia_cache"
    cache_key: Optional[str] = None
    cache_ttl_days: int = 90
    retry_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_multiplier: float = 2.0
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(days=self.cache_ttl_days)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from ``EKUATIA_*`` environment variables."""
        load_dotenv(dotenv_path)

        settings = cls(
            cache_path=os.getenv("EKUATIA_CACHE_PATH", cls.cache_path),
            cache_key=os.getenv("EKUATIA_CACHE_KEY") or None,
            cache_ttl_days=_env_number("EKUATIA_CACHE_TTL_DAYS", cls.cache_ttl_days, int),
            retry_attempts=_env_number("EKUATIA_RETRY_ATTEMPTS", cls.retry_attempts, int),
            retry_initial_delay=_env_number(
                "EKUATIA_RETRY_INITIAL_DELAY", cls.retry_initial_delay
            ),
            retry_multiplier=_env_number("EKUATIA_RETRY_MULTIPLIER", cls.retry_multiplier),
            log_level=os.getenv("EKUATIA_LOG_LEVEL", cls.log_level),
            log_json=_env_bool("EKUATIA_LOG_JSON", cls.log_json),
        )

        if settings.cache_ttl_days <= 0:
            raise ValueError("EKUATIA_CACHE_TTL_DAYS must be positive")
        if settings.retry_attempts < 1:
            raise ValueError("EKUATIA_RETRY_ATTEMPTS must be at least 1")

        return settings
