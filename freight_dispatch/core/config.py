"""
Configuration management for the dispatch engine.

Handles loading and accessing:
- Business configuration (config.yaml): matching radii, pagination defaults,
  notification templates
- Environment variables (.env): database URL, logging
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MatchingConfig(BaseModel):
    """Truck/load matching parameters."""

    radius_miles: float = Field(25.0, gt=0, description="Strict-pass radius R1 in miles")
    fallback_multiplier: float = Field(2.0, ge=1, description="Relaxed radius = R1 * multiplier")


class PaginationConfig(BaseModel):
    """Listing defaults applied when request values are missing or invalid."""

    default_page: int = Field(1, ge=1)
    default_limit: int = Field(10, ge=1)


class NotificationConfig(BaseModel):
    """Notification templates and toggles."""

    status_template: str = "loadStatusNotification"
    match_template: str = "loadMatchNotification"
    match_found: bool = False


class BusinessConfig(BaseModel):
    """Validated contents of config/config.yaml."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)


class EnvironmentSettings(BaseSettings):
    """Environment variables configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field("sqlite:///./freight_dispatch.db", alias="DATABASE_URL")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(True, alias="LOG_JSON")


class ConfigManager:
    """
    Central configuration manager for the dispatch engine.

    Loads and provides access to:
    - Business configuration from config/config.yaml
    - Environment variables from .env
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        business_config: Optional[BusinessConfig] = None,
    ) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_dir: Optional path to config directory. Defaults to project root/config.
            business_config: Optional pre-built business config (skips the YAML file).
        """
        if config_dir is None:
            # Default to config/ directory in project root
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = config_dir
        self._business_config: Optional[BusinessConfig] = business_config
        self._env_settings: Optional[EnvironmentSettings] = None

    @property
    def raw_business_config(self) -> dict[str, Any]:
        """Load config.yaml as a plain dict (empty when the file is absent)."""
        config_path = self.config_dir / "config.yaml"
        if not config_path.exists():
            return {}
        with open(config_path, "r") as f:
            return yaml.safe_load(f) or {}

    @property
    def business_config(self) -> BusinessConfig:
        """Load and return validated business configuration."""
        if self._business_config is None:
            self._business_config = BusinessConfig.model_validate(self.raw_business_config)
        return self._business_config

    @property
    def env(self) -> EnvironmentSettings:
        """Load and return environment settings."""
        if self._env_settings is None:
            self._env_settings = EnvironmentSettings()
        return self._env_settings

    def get_matching_config(self) -> MatchingConfig:
        """Get matching configuration from business config."""
        return self.business_config.matching

    def get_pagination_config(self) -> PaginationConfig:
        """Get pagination defaults from business config."""
        return self.business_config.pagination

    def get_notification_config(self) -> NotificationConfig:
        """Get notification configuration from business config."""
        return self.business_config.notifications


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
