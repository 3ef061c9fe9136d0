"""
Configuration management for the freight settlement core.

Handles loading and accessing:
- Business configuration (config.yaml)
- Environment variables
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from freightcore.core.errors import ConfigurationError


class EnvironmentSettings(BaseSettings):
    """Environment variables configuration."""

    # Database
    database_url: str = Field("sqlite:///./freightcore.db", alias="DATABASE_URL")

    # External shipment source
    shipment_api_url: str = Field(
        "https://api.fourkites.com/shipments", alias="SHIPMENT_API_URL"
    )
    shipment_api_key: Optional[str] = Field(None, alias="SHIPMENT_API_KEY")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("json", alias="LOG_FORMAT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class ConfigManager:
    """
    Central configuration manager for the settlement core.

    Loads and provides access to:
    - Business configuration from config/config.yaml
    - Environment variables from .env
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_dir: Optional path to config directory. Defaults to project root/config.
        """
        if config_dir is None:
            # Default to config/ directory in project root
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = Path(config_dir)
        self._business_config: Optional[dict[str, Any]] = None
        self._env_settings: Optional[EnvironmentSettings] = None

    @property
    def business_config(self) -> dict[str, Any]:
        """Load and return business configuration from config.yaml."""
        if self._business_config is None:
            config_path = self.config_dir / "config.yaml"
            if not config_path.exists():
                # Accessors fall back to their built-in defaults
                self._business_config = {}
                return self._business_config
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    self._business_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        return self._business_config

    @property
    def env(self) -> EnvironmentSettings:
        """Load and return environment settings."""
        if self._env_settings is None:
            self._env_settings = EnvironmentSettings()
        return self._env_settings

    def get_api_key(self, provider: str) -> Optional[str]:
        """
        Get API key for a specific provider.

        Args:
            provider: Provider name ("fourkites", "shipments")

        Returns:
            API key or None if not set
        """
        provider_map = {
            "fourkites": self.env.shipment_api_key,
            "shipments": self.env.shipment_api_key,
        }
        return provider_map.get(provider.lower())

    def get_settlement_config(self) -> dict[str, Any]:
        """Get pay calculation settings from business config."""
        defaults = {
            "no_profile_description": "No Pay Profile",
            "no_profile_warning": "{subject} has no pay profile assigned. Pay calculated as $0.",
        }
        return {**defaults, **self.business_config.get("settlement", {})}

    def get_invoicing_config(self) -> dict[str, Any]:
        """Get invoice calculation settings from business config."""
        defaults = {
            "meters_to_miles": 0.000621371,
            "default_currency": "USD",
        }
        return {**defaults, **self.business_config.get("invoicing", {})}

    def get_sync_config(self) -> dict[str, Any]:
        """Get shipment sync settings from business config."""
        defaults = {
            "default_lookback_hours": 24,
            "default_interval_minutes": 60,
            "page_size": 100,
            "max_pages": 100,
            "chunk_size": 500,
            "failure_sample_limit": 5,
            "request_timeout_seconds": 30,
        }
        return {**defaults, **self.business_config.get("sync", {})}

    def get_stats_config(self) -> dict[str, Any]:
        """Get aggregate stats settings from business config."""
        defaults = {"chunk_size": 500}
        return {**defaults, **self.business_config.get("stats", {})}


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """
    Get the global configuration manager instance.

    Returns:
        ConfigManager singleton instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
