"""Configuration management - loads settings.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from billing_sync.models.settings import (
    AdminConfig,
    CacheConfig,
    DedupConfig,
    ProviderConfig,
    ReconcilerConfig,
    SettingsConfig,
    WebhookConfig,
)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads settings.yaml and provides validated access to:
    - Provider credentials and timeouts (secrets overridden from env vars)
    - Cache, reconciler, webhook, dedup and admin settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to settings.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/settings.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._settings: Optional[SettingsConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/settings.yaml")

    def _load_config(self) -> None:
        """Load and validate settings.yaml configuration."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/settings.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}")

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")
        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self._config_path}")

        try:
            settings = SettingsConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}")

        # Secrets never have to live in the YAML file
        api_key = os.getenv("STRIPE_SECRET_KEY")
        if api_key:
            settings.provider.api_key = api_key
        webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        if webhook_secret:
            settings.provider.webhook_secret = webhook_secret

        self._settings = settings

    @property
    def settings(self) -> SettingsConfig:
        """Get validated settings."""
        if self._settings is None:
            raise ConfigurationError("Configuration not loaded")
        return self._settings

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def provider(self) -> ProviderConfig:
        return self.settings.provider

    @property
    def cache(self) -> CacheConfig:
        return self.settings.cache

    @property
    def reconciler(self) -> ReconcilerConfig:
        return self.settings.reconciler

    @property
    def webhook(self) -> WebhookConfig:
        return self.settings.webhook

    @property
    def dedup(self) -> DedupConfig:
        return self.settings.dedup

    @property
    def admin(self) -> AdminConfig:
        return self.settings.admin

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()
