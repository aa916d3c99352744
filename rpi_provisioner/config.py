"""Configuration settings for rpi_provisioner.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import re
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Official Raspberry Pi OS Lite (armhf) image index
RASPIOS_IMAGES_BASE = "https://downloads.raspberrypi.org/raspios_lite_armhf/images"

LATEST_VERSION = "latest"

_VERSION_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


def _default_cache_dir() -> Path:
    """Return the default image cache directory."""
    return Path.home() / ".cache" / "rpi-provisioner" / "images"


def is_valid_version(version: str) -> bool:
    """Check whether a version specifier is 'latest' or a YYYY-MM-DD date."""
    return version == LATEST_VERSION or bool(_VERSION_PATTERN.match(version))


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RPI_PROV_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RPI_PROV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Image source and cache
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Directory holding compressed, digest and decompressed images",
    )
    base_url: str = Field(
        default=RASPIOS_IMAGES_BASE,
        description="Remote asset index for Raspberry Pi OS images",
    )
    os_version: str = Field(
        default=LATEST_VERSION,
        description="Image version: 'latest' or YYYY-MM-DD",
    )
    keep_compressed: bool = Field(
        default=True,
        description="Keep the compressed image and digest after extraction",
    )
    required_free_bytes: int = Field(
        default=3 * GIB,
        ge=0,
        description="Free space required in the cache before downloading",
    )

    # Target selection
    auto_detect: bool = Field(
        default=True,
        description="Pick the single SD card candidate automatically",
    )
    target_disk: str | None = Field(
        default=None,
        description="Explicit target device (e.g. /dev/disk4 or /dev/sdb)",
    )
    require_confirmation: bool = Field(
        default=True,
        description="Ask the operator to type the confirmation phrase",
    )
    confirmation_phrase: str = Field(
        default="YES",
        min_length=1,
        description="Exact phrase the operator must type to proceed",
    )

    # Flashing and re-enumeration
    block_size: int = Field(
        default=4 * MIB,
        ge=512,
        description="Block size for raw device writes",
    )
    mount_settle_delay: float = Field(
        default=3.0,
        ge=0,
        description="Delay before polling for the boot partition",
    )
    mount_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Interval between boot partition polls",
    )
    mount_timeout: float = Field(
        default=30.0,
        ge=0,
        description="Maximum time to wait for the boot partition to mount",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for image downloads",
    )
    index_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for index and digest requests",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("os_version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not is_valid_version(value):
            raise ValueError("os_version must be 'latest' or in YYYY-MM-DD format")
        return value


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "GIB",
    "LATEST_VERSION",
    "MIB",
    "RASPIOS_IMAGES_BASE",
    "Settings",
    "get_settings",
    "is_valid_version",
    "print_settings_json",
]
