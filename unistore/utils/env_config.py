"""
Environment-based configuration for the unified storage layer.

Settings come from environment variables, optionally seeded from a ``.env``
file at the project root.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
import logging

logger = logging.getLogger(__name__)

# Load environment variables from .env file
env_file = Path(__file__).parent.parent.parent / ".env"
if env_file.exists():
    load_dotenv(env_file, override=True)
    logger.info(f"Loaded environment variables from: {env_file}")
else:
    logger.debug(f"No .env file found at: {env_file}")


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(key, "").lower()
    return value in ("true", "1", "yes", "on") if value else default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer value from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float value from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@dataclass
class StorageSettings:
    """Storage settings from environment variables."""

    # Backend selection
    connection_string: Optional[str] = field(default_factory=lambda: os.getenv("STORAGE_CONNECTION_STRING"), repr=False)
    root_prefix: str = field(default_factory=lambda: os.getenv("STORAGE_ROOT_PREFIX", ""))

    # Timeouts and retries
    backend_timeout: float = field(default_factory=lambda: get_env_float("STORAGE_BACKEND_TIMEOUT", 30.0))
    bulk_retry_attempts: int = field(default_factory=lambda: get_env_int("STORAGE_BULK_RETRY_ATTEMPTS", 3))
    retry_backoff: float = field(default_factory=lambda: get_env_float("STORAGE_RETRY_BACKOFF", 0.5))
    retry_backoff_max: float = field(default_factory=lambda: get_env_float("STORAGE_RETRY_BACKOFF_MAX", 10.0))
    max_concurrency: int = field(default_factory=lambda: get_env_int("STORAGE_MAX_CONCURRENCY", 10))

    # Metadata cache
    cache_ttl: float = field(default_factory=lambda: get_env_float("STORAGE_CACHE_TTL", 5.0))
    cache_max_entries: int = field(default_factory=lambda: get_env_int("STORAGE_CACHE_MAX_ENTRIES", 10000))

    # Chunked uploads
    upload_idle_timeout: int = field(default_factory=lambda: get_env_int("STORAGE_UPLOAD_IDLE_TIMEOUT", 900))
    session_sweep_interval: float = field(default_factory=lambda: get_env_float("STORAGE_SESSION_SWEEP_INTERVAL", 60.0))

    # Static website and CDN
    public_base_url: Optional[str] = field(default_factory=lambda: os.getenv("STORAGE_PUBLIC_BASE_URL"))
    static_website_index_document: str = field(default_factory=lambda: os.getenv("STATIC_WEBSITE_INDEX_DOCUMENT", "index.html"))
    static_website_error_document: str = field(default_factory=lambda: os.getenv("STATIC_WEBSITE_ERROR_DOCUMENT", "404.html"))
    cdn_api_token: Optional[str] = field(default_factory=lambda: os.getenv("CDN_API_TOKEN"), repr=False)
    cdn_zone_id: Optional[str] = field(default_factory=lambda: os.getenv("CDN_ZONE_ID"))
    cdn_timeout: float = field(default_factory=lambda: get_env_float("CDN_TIMEOUT", 10.0))

    # Logging Configuration
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json_format: bool = field(default_factory=lambda: get_env_bool("LOG_JSON_FORMAT", False))

    def __post_init__(self):
        """Clamp values that must stay positive."""
        if self.cache_ttl <= 0:
            logger.warning("STORAGE_CACHE_TTL must be positive, using 5 seconds")
            self.cache_ttl = 5.0
        if self.backend_timeout <= 0:
            logger.warning("STORAGE_BACKEND_TIMEOUT must be positive, using 30 seconds")
            self.backend_timeout = 30.0
        if self.bulk_retry_attempts < 0:
            self.bulk_retry_attempts = 0
        if self.cache_ttl > 60:
            logger.warning(f"Metadata cache TTL of {self.cache_ttl}s risks serving stale metadata")

    @property
    def cdn_enabled(self) -> bool:
        return bool(self.cdn_api_token and self.cdn_zone_id)

    def get_cdn_config(self) -> dict:
        """Get CDN configuration as a dictionary."""
        return {
            "api_token": self.cdn_api_token,
            "zone_id": self.cdn_zone_id,
            "timeout": self.cdn_timeout,
        }


# Global settings instance
_settings: Optional[StorageSettings] = None


def get_settings() -> StorageSettings:
    """Get the global storage settings instance."""
    global _settings
    if _settings is None:
        _settings = StorageSettings()
        logger.info("Loaded storage settings")
    return _settings


def reload_settings() -> StorageSettings:
    """Reload the global storage settings."""
    global _settings
    if env_file.exists():
        load_dotenv(env_file, override=True)
    _settings = StorageSettings()
    logger.info("Reloaded storage settings")
    return _settings
