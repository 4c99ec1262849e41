"""Unit tests for config.py — AppConfig and load_config()."""

import os
from unittest.mock import patch

import pytest

from permission_mirror.config import AppConfig, load_config

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Minimal set of required environment variables for load_config()
_REQUIRED_ENV = {
    "PM_CLIENT_ID": "test-client-id",
    "PM_CLIENT_SECRET": "test-secret",
    "AzureWebJobsStorage": "DefaultEndpointsProtocol=https;AccountName=test",
    "PM_PLATFORM_API_KEY": "platform-key",
    "PM_PLATFORM_API_BASE_URL": "https://platform.example.com",
    "PM_PLATFORM_SOURCE_ID": "source-1",
    "PM_WEBHOOK_BASE_URL": "https://mirror.example.com",
}


def _make_config(**overrides: object) -> AppConfig:
    values: dict[str, object] = {
        "client_id": "cid",
        "client_secret": "cs",
        "storage_connection_string": "conn",
        "platform_api_key": "key",
        "platform_api_base_url": "https://platform.example.com",
        "platform_source_id": "source",
        "webhook_base_url": "https://mirror.example.com",
    }
    values.update(overrides)
    return AppConfig(**values)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# AppConfig tests
# ---------------------------------------------------------------------------


class TestAppConfig:
    def test_sync_tuning_defaults(self) -> None:
        config = _make_config()
        assert config.items_page_size == 15
        assert config.permissions_chunk_size == 15
        assert config.sync_concurrency == 5
        assert config.items_sync_concurrency == 5
        assert config.wait_timeout_hours == 24
        assert config.subscription_expiration_days == 25
        assert config.subscription_renewal_threshold_days == 5

    def test_organisation_slot_defaults(self) -> None:
        config = _make_config()
        assert config.object_concurrency == 10
        assert config.slot_lease_minutes == 60
        assert config.slot_poll_seconds == 30

    def test_activity_retry_defaults(self) -> None:
        config = _make_config()
        assert config.activity_max_attempts == 5
        assert config.activity_retry_interval_ms == 5000

    def test_is_frozen(self) -> None:
        config = _make_config()
        with pytest.raises(AttributeError):
            config.client_id = "other"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# load_config tests
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_reads_required_values_from_env(self) -> None:
        with patch.dict(os.environ, _REQUIRED_ENV, clear=False):
            config = load_config()
        assert config.client_id == "test-client-id"
        assert config.client_secret == "test-secret"
        assert config.storage_connection_string.startswith("DefaultEndpointsProtocol")
        assert config.platform_api_key == "platform-key"
        assert config.platform_source_id == "source-1"
        assert config.webhook_base_url == "https://mirror.example.com"

    def test_missing_required_variable_raises_key_error(self) -> None:
        env = {k: v for k, v in _REQUIRED_ENV.items() if k != "PM_PLATFORM_API_KEY"}
        with patch.dict(os.environ, env, clear=True), pytest.raises(KeyError):
            load_config()

    def test_optional_values_fall_back_to_defaults(self) -> None:
        with patch.dict(os.environ, _REQUIRED_ENV, clear=True):
            config = load_config()
        assert config.state_container == "permission-mirror-state"
        assert config.delta_page_size == 100
        assert config.max_folder_depth == 64

    def test_optional_values_can_be_overridden(self) -> None:
        env = {
            **_REQUIRED_ENV,
            "PM_ITEMS_PAGE_SIZE": "30",
            "PM_SYNC_CONCURRENCY": "2",
            "PM_SUBSCRIPTION_RENEWAL_THRESHOLD_DAYS": "3",
            "PM_STATE_CONTAINER": "custom",
            "PM_OBJECT_CONCURRENCY": "4",
            "PM_SLOT_POLL_SECONDS": "10",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_config()
        assert config.items_page_size == 30
        assert config.sync_concurrency == 2
        assert config.subscription_renewal_threshold_days == 3
        assert config.state_container == "custom"
        assert config.object_concurrency == 4
        assert config.slot_poll_seconds == 10
