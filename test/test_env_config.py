import os
from unittest.mock import patch

from unistore.utils import env_config
from unistore.utils.env_config import StorageSettings, get_env_bool, get_env_float, get_env_int, get_settings


class TestStorageSettings:
    """Test suite for StorageSettings class."""

    def test_storage_settings_default_values(self) -> None:
        """Test that StorageSettings has correct default values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = StorageSettings()

        assert settings.connection_string is None
        assert settings.root_prefix == ""
        assert settings.cache_ttl == 5.0
        assert settings.backend_timeout == 30.0
        assert settings.upload_idle_timeout == 900
        assert settings.session_sweep_interval == 60.0
        assert settings.bulk_retry_attempts == 3
        assert settings.retry_backoff == 0.5
        assert settings.retry_backoff_max == 10.0
        assert settings.max_concurrency == 10
        assert settings.static_website_index_document == "index.html"
        assert settings.static_website_error_document == "404.html"
        assert settings.log_level == "INFO"
        assert settings.log_json_format is False
        assert not settings.cdn_enabled

    def test_storage_settings_from_environment(self) -> None:
        """Test that StorageSettings reads environment variables."""
        env = {
            "STORAGE_CONNECTION_STRING": "Bucket=assets;KeyId=id;Key=secret",
            "STORAGE_CACHE_TTL": "2.5",
            "STORAGE_UPLOAD_IDLE_TIMEOUT": "60",
            "STORAGE_PUBLIC_BASE_URL": "https://cdn.example.com",
            "CDN_API_TOKEN": "token",
            "CDN_ZONE_ID": "zone",
            "LOG_JSON_FORMAT": "true",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = StorageSettings()

        assert settings.connection_string == "Bucket=assets;KeyId=id;Key=secret"
        assert settings.cache_ttl == 2.5
        assert settings.upload_idle_timeout == 60
        assert settings.public_base_url == "https://cdn.example.com"
        assert settings.log_json_format is True
        assert settings.cdn_enabled
        assert settings.get_cdn_config() == {"api_token": "token", "zone_id": "zone", "timeout": 10.0}

    def test_storage_settings_clamps_invalid_values(self) -> None:
        """Test that non-positive timeouts fall back to defaults."""
        settings = StorageSettings(cache_ttl=0, backend_timeout=-1, bulk_retry_attempts=-3)

        assert settings.cache_ttl == 5.0
        assert settings.backend_timeout == 30.0
        assert settings.bulk_retry_attempts == 0


class TestEnvHelpers:
    """Test suite for environment parsing helpers."""

    def test_get_env_bool(self) -> None:
        """Test boolean parsing with defaults."""
        with patch.dict(os.environ, {"FLAG_ON": "yes", "FLAG_OFF": "0"}, clear=True):
            assert get_env_bool("FLAG_ON") is True
            assert get_env_bool("FLAG_OFF", default=True) is False
            assert get_env_bool("FLAG_MISSING", default=True) is True

    def test_get_env_numbers_fall_back_on_garbage(self) -> None:
        """Test that unparsable numbers use the default."""
        with patch.dict(os.environ, {"NUM": "abc", "FLOAT": "1.5"}, clear=True):
            assert get_env_int("NUM", 7) == 7
            assert get_env_float("NUM", 2.0) == 2.0
            assert get_env_float("FLOAT") == 1.5


def test_get_settings_singleton() -> None:
    """Test that get_settings returns the same instance."""
    with patch.object(env_config, "_settings", None):
        settings1 = get_settings()
        settings2 = get_settings()
        assert settings1 is settings2, "get_settings should return singleton instance"
