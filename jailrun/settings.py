"""Library settings using pydantic-settings.

Loads process-wide defaults from ``JAILRUN_*`` environment variables with
.env file support. Per-runner behaviour lives in the option maps passed to
``build_runner``; these settings only cover what no option map carries.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runner defaults loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JAILRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Shell used when neither the call nor the runner options name one.
    # Empty means: $SHELL, then /bin/sh.
    default_shell: str = Field(
        default="",
        description="Fallback shell for command execution",
    )

    # Where temporary profiles and scripts are written (None = system default)
    temp_dir: str | None = Field(
        default=None,
        description="Directory for transient profile and script files",
    )

    # Containers
    container_engine: Literal["docker", "podman"] = Field(
        default="docker",
        description="Container engine CLI used by the container backend",
    )
    container_probe_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
        le=60,
        description="Timeout for the daemon reachability probe",
    )
    container_name_prefix: str = Field(
        default="jailrun",
        description="Prefix for ephemeral interactive containers",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
