"""
Tests for centralized configuration system.
Verifies environment variable loading and default values.
"""
import pytest
from shopbridge.config import DEFAULT_CATEGORIES, Settings, get_settings


class TestConfigurationSystem:
    """Test suite for configuration management."""

    def test_default_values(self):
        """Verify delivery defaults."""
        get_settings.cache_clear()

        settings = Settings(_env_file=None)

        # Queue
        assert settings.queue_poll_interval_seconds == 30.0
        assert settings.queue_batch_size == 10
        assert settings.queue_default_max_attempts == 3
        assert settings.queue_delivery_timeout_seconds == 10.0
        assert settings.queue_retention_days == 30
        assert settings.order_notification_priority == 2

        # Engagement
        assert settings.auto_dm_delay_minutes == 65
        assert settings.auto_dm_max_per_sweep == 20

        # Reconciliation
        assert settings.sync_window_hours == 24
        assert settings.sync_inter_order_delay_seconds == 2.0

        assert settings.log_level == "INFO"
        assert settings.enable_structured_logging is False
        assert settings.product_categories == DEFAULT_CATEGORIES

    def test_environment_variable_override(self, monkeypatch):
        """Verify environment variables override defaults."""
        get_settings.cache_clear()

        monkeypatch.setenv("NOTIFICATION_CHANNEL_ID", "1234")
        monkeypatch.setenv("QUEUE_BATCH_SIZE", "25")
        monkeypatch.setenv("AUTO_DM_DELAY_MINUTES", "5")
        monkeypatch.setenv("STORAGE_BACKEND", "memory")
        monkeypatch.setenv("ENVIRONMENT", "staging")

        settings = get_settings()

        assert settings.notification_channel_id == "1234"
        assert settings.queue_batch_size == 25
        assert settings.auto_dm_delay_minutes == 5
        assert settings.storage_backend == "memory"
        assert settings.environment == "staging"

        get_settings.cache_clear()

    def test_settings_singleton(self):
        """Verify get_settings returns the same instance."""
        get_settings.cache_clear()

        assert get_settings() is get_settings()

    def test_unsigned_webhooks_never_allowed_in_production(self):
        dev = Settings(_env_file=None, environment="development", webhook_allow_unsigned=True)
        prod = Settings(_env_file=None, environment="production", webhook_allow_unsigned=True)

        assert dev.unsigned_webhooks_permitted is True
        assert prod.unsigned_webhooks_permitted is False
        assert prod.is_production is True

    def test_invalid_storage_backend_rejected(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, storage_backend="redis")

    def test_stale_env_keys_ignored(self, monkeypatch):
        """Keys for removed settings do not break startup."""
        monkeypatch.setenv("ADMIN_CHANNEL_ID", "999")

        settings = Settings(_env_file=None)

        assert not hasattr(settings, "admin_channel_id")
