"""Tests for configuration loading and management."""

from unittest.mock import patch

import pytest

from billing_sync.__main__ import check_config, main
from billing_sync.config import Config, ConfigurationError, get_config


@pytest.fixture
def config(monkeypatch):
    """Create a Config instance for testing."""
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
    return Config()


class TestConfigurationLoading:
    """Test basic configuration loading."""

    def test_config_loads_successfully(self, config):
        assert config.config_path.exists()
        assert str(config.config_path).endswith("settings.yaml")

    def test_provider_settings(self, config):
        assert config.provider.timeout_seconds == 10
        assert config.provider.signature_tolerance_seconds == 300
        assert config.provider.api_key is None

    def test_cache_ttl_is_twelve_hours(self, config):
        assert config.cache.ttl_seconds == 12 * 60 * 60

    def test_reconciler_settings(self, config):
        assert config.reconciler.subscription_list_limit == 10
        assert config.reconciler.freshness_seconds == 300

    def test_webhook_dedup_window_covers_redelivery(self, config):
        assert config.webhook.dedup_window_seconds >= 3 * 24 * 60 * 60

    def test_admin_coupon(self, config):
        assert config.admin.grant_coupon_id == "admin-grant-100-off"
        assert config.admin.grant_coupon_name


class TestEnvironmentOverrides:
    def test_secrets_from_environment(self, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_env")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_env")
        config = Config()
        assert config.provider.api_key == "sk_test_env"
        assert config.provider.webhook_secret == "whsec_env"

    def test_config_path_from_environment(self, monkeypatch, tmp_path):
        settings = tmp_path / "custom.yaml"
        settings.write_text("reconciler:\n  freshness_seconds: 60\n", encoding="utf-8")
        monkeypatch.setenv("CONFIG_PATH", str(settings))
        config = Config()
        assert config.config_path == settings
        assert config.reconciler.freshness_seconds == 60
        assert config.cache.ttl_seconds == 12 * 60 * 60


class TestInvalidConfiguration:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            Config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="empty"):
            Config(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("cache: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="parse"):
            Config(str(path))

    @pytest.mark.parametrize(
        "content",
        [
            "reconciler:\n  subscription_list_limit: 5\n",
            "cache:\n  ttl_seconds: 0\n",
            "webhook:\n  dedup_window_seconds: -1\n",
        ],
    )
    def test_out_of_range_values(self, tmp_path, content):
        path = tmp_path / "bad.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigurationError, match="validation failed"):
            Config(str(path))


class TestGlobalConfig:
    def test_get_config_returns_same_instance(self):
        assert get_config() is get_config()

    def test_reload_does_not_raise_error(self, config):
        config.reload()
        assert config.reconciler.subscription_list_limit == 10


class TestCheckConfigCommand:
    """Test the startup preflight of the command line entry point."""

    @pytest.fixture
    def secrets(self, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_123")

    @pytest.fixture
    def no_secrets(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
        monkeypatch.delenv("ALLOW_MISSING_SECRETS", raising=False)

    def test_summary_never_prints_secrets(self, secrets, capsys):
        assert check_config("config/settings.yaml", require_secrets=True) == 0
        out = capsys.readouterr().out
        assert "Stripe API key: set" in out
        assert "Webhook secret: set" in out
        assert "sk_test_123" not in out
        assert "whsec_123" not in out

    def test_missing_secrets_fail_when_required(self, no_secrets, capsys):
        assert check_config("config/settings.yaml", require_secrets=True) == 2
        assert "must both be set" in capsys.readouterr().err

    def test_missing_secrets_allowed(self, no_secrets, capsys):
        assert check_config("config/settings.yaml") == 0
        assert "Stripe API key: missing" in capsys.readouterr().out

    def test_invalid_settings_file(self, tmp_path, capsys):
        assert check_config(str(tmp_path / "missing.yaml")) == 2
        assert "Invalid configuration" in capsys.readouterr().err

    def test_check_config_flag_exits_without_serving(self, secrets):
        with patch("billing_sync.__main__.uvicorn.run") as run:
            with pytest.raises(SystemExit) as exc_info:
                main(["--check-config", "--config", "config/settings.yaml"])
        assert exc_info.value.code == 0
        run.assert_not_called()

    def test_refuses_to_start_without_secrets(self, no_secrets):
        with patch("billing_sync.__main__.uvicorn.run") as run:
            with pytest.raises(SystemExit) as exc_info:
                main(["--config", "config/settings.yaml"])
        assert exc_info.value.code == 2
        run.assert_not_called()

    def test_starts_server_when_settings_are_valid(self, secrets, monkeypatch):
        for name, value in (("LOG_LEVEL", "INFO"), ("LOG_FORMAT", "json"), ("CONFIG_PATH", "config/settings.yaml")):
            monkeypatch.setenv(name, value)
        with patch("billing_sync.__main__.uvicorn.run") as run:
            main(["--config", "config/settings.yaml", "--port", "9000"])
        run.assert_called_once()
        assert run.call_args.kwargs["port"] == 9000
