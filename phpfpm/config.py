"""Configuration management with environment variable overrides."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .interface import OSFamily, ProviderType


class Settings(BaseSettings):
    """
    Configuration for the pool manager.

    All settings can be overridden via environment variables with PHPFPM_ prefix.
    Example: PHPFPM_DB_PATH=/tmp/pools.db to use a scratch registry.
    """
    model_config = SettingsConfigDict(
        env_prefix="PHPFPM_",
        env_file=".env",
        extra="ignore",
    )

    # Persistent registry
    db_path: Path = Field(
        default=Path("/var/lib/lightweight-php/lightweight-php.db"),
        description="SQLite database holding runtime versions and pools",
    )

    # Every provider path is resolved under this prefix
    root: Path = Field(
        default=Path("/"),
        description="Filesystem root for pool configs and sockets",
    )

    os_family: OSFamily | None = Field(
        default=None,
        description="Force the OS family instead of detecting it",
    )
    default_provider: ProviderType = Field(
        default=ProviderType.REMI,
        description="Provider used when a request does not name one",
    )

    # Timeouts (in seconds)
    reload_timeout: float = Field(
        default=10.0,
        description="Timeout for a supervisor reload",
    )
    install_timeout: int = Field(
        default=1800,  # 30 minutes
        description="Timeout for a single package manager command",
    )
    http_timeout: float = Field(
        default=5.0,
        description="Timeout for live version catalogue queries",
    )

    docker_hub_url: str = Field(
        default="https://hub.docker.com/v2/repositories/library/php/tags",
        description="Tag listing endpoint for the official php image",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get pool manager settings."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
