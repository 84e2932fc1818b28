"""
Configuration management for the Azure DevOps branch source.

Non-secret configuration loaded from YAML file, secrets from environment variables.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path("/etc/adosource/config.yaml")
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


# --- Remote Configuration ---


class AzureDevOpsConfig(BaseModel):
    """Azure DevOps REST API connection settings."""

    server_url: str = Field(
        default="https://dev.azure.com",
        description="Collection URL, e.g. https://dev.azure.com/<organization>",
    )
    api_version: str = Field(default="5.0", description="REST api-version query parameter")
    timeout_seconds: float = Field(default=30.0)
    personal_access_token: str = Field(
        default="",
        description="PAT used for Basic auth. Set via ADOSOURCE_AZURE__PERSONAL_ACCESS_TOKEN.",
    )


# --- Discovery Configuration ---


class DiscoveryConfig(BaseModel):
    """Branch/PR/tag discovery tuning."""

    max_changelog_commits: int = Field(
        default=1024, description="Upper bound on commits written per changelog"
    )
    default_branch_fallback: str = Field(
        default="master",
        description="Branch treated as primary when the repository reports none",
    )


# --- Notification Configuration ---


class NotificationConfig(BaseModel):
    """Commit status notification configuration."""

    disabled: bool = Field(default=False, description="Disable all status notifications")
    context_genre: str = Field(
        default="jenkins",
        description="Status context genre. Kept stable so branch policies survive job renames.",
    )
    queue_workers: int = Field(
        default=4, description="Max concurrent queue-time PENDING notifications"
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ADOSOURCE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="adosource")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    azure: AzureDevOpsConfig = Field(default_factory=AzureDevOpsConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
