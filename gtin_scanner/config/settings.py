"""
==============================================================================
Application Settings Module
==============================================================================

Configuration management using Pydantic Settings.

A single global configuration instance is shared through ``get_settings()``.

Features:
---------
- Environment variable loading with type validation
- .env file support for local development
- Computed properties for derived values

Configuration Priority (highest to lowest):
------------------------------------------
1. Environment variables
2. .env file
3. Default values

==============================================================================
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Module logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        app_name: Display name for the application
        app_env: Environment mode (development/staging/production)
        debug: Enable debug mode for verbose logging
        host: Server bind address
        port: Server port number
        poll_interval_ms: Delay between live decode attempts
        environment_facing_labels: Label keywords that mark a rear camera
        max_scan_devices: Highest OpenCV index tried when no sysfs exists
        frame_width: Requested capture width (0 = driver default)
        frame_height: Requested capture height (0 = driver default)
        frozen_frame_quality: JPEG quality of frames captured on pause
        transcode_quality: JPEG quality of transcoded uploads
        max_upload_mb: Upload size limit for still images
        cors_origins: Allowed CORS origins (JSON array string)

    Example:
        >>> settings = Settings()
        >>> settings.poll_interval_seconds
        0.05
    """

    # =========================================================================
    # PYDANTIC SETTINGS CONFIGURATION
    # =========================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # APPLICATION SETTINGS
    # =========================================================================
    app_name: str = Field(
        default="GTIN Barcode Scanner",
        description="Display name for the application"
    )

    app_env: str = Field(
        default="development",
        description="Environment mode: development, staging, production"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode for verbose logging"
    )

    # =========================================================================
    # SERVER SETTINGS
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="Server bind address"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Server port number"
    )

    # =========================================================================
    # CAPTURE SETTINGS
    # =========================================================================
    poll_interval_ms: int = Field(
        default=50,
        ge=1,
        le=5000,
        description="Delay between live decode attempts in milliseconds"
    )

    environment_facing_labels: str = Field(
        default='["back", "rear", "environment", "world"]',
        description="Device label keywords identifying a rear camera (JSON array)"
    )

    max_scan_devices: int = Field(
        default=4,
        ge=1,
        le=64,
        description="OpenCV indices tried when no device listing is available"
    )

    frame_width: int = Field(
        default=1280,
        ge=0,
        description="Requested capture width, 0 keeps the driver default"
    )

    frame_height: int = Field(
        default=720,
        ge=0,
        description="Requested capture height, 0 keeps the driver default"
    )

    frozen_frame_quality: int = Field(
        default=80,
        ge=1,
        le=100,
        description="JPEG quality of the frame frozen on pause"
    )

    # =========================================================================
    # STILL IMAGE SETTINGS
    # =========================================================================
    transcode_quality: int = Field(
        default=90,
        ge=1,
        le=100,
        description="JPEG quality used when transcoding HEIC/HEIF uploads"
    )

    max_upload_mb: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Maximum accepted upload size in megabytes"
    )

    # =========================================================================
    # CORS SETTINGS
    # =========================================================================
    cors_origins: str = Field(
        default='["*"]',
        description="Allowed CORS origins as JSON array string"
    )

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, value: str) -> str:
        """
        Validate and normalize application environment.

        Args:
            value: Raw environment value

        Returns:
            Lowercase normalized environment name
        """
        valid_envs = {"development", "staging", "production"}
        normalized = value.lower().strip()

        if normalized not in valid_envs:
            logger.warning(
                f"Unknown environment '{value}', defaulting to 'development'"
            )
            return "development"

        return normalized

    # =========================================================================
    # COMPUTED PROPERTIES
    # =========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def poll_interval_seconds(self) -> float:
        """Poll delay as asyncio expects it."""
        return self.poll_interval_ms / 1000

    @property
    def max_upload_bytes(self) -> int:
        """Upload limit in bytes."""
        return self.max_upload_mb * 1024 * 1024

    @property
    def environment_facing_keywords(self) -> List[str]:
        """
        Parse rear camera keywords from JSON string to a lowercase list.

        Returns:
            List of keywords matched against device labels
        """
        return [k.lower() for k in self._parse_json_list(
            self.environment_facing_labels, ["back", "rear", "environment"]
        )]

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS origins from JSON string to list.

        Returns:
            List of allowed origin strings
        """
        return self._parse_json_list(self.cors_origins, ["*"])

    @staticmethod
    def _parse_json_list(raw: str, fallback: List[str]) -> List[str]:
        try:
            values = json.loads(raw)
            if isinstance(values, list):
                return [str(v) for v in values]
            return fallback
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON list: {raw}, defaulting to {fallback}")
            return fallback

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Settings(app_name={self.app_name!r}, "
            f"app_env={self.app_env!r}, "
            f"debug={self.debug})"
        )


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the global Settings instance.

    Uses lru_cache so only one Settings instance is created
    throughout the application lifecycle.

    Returns:
        Global Settings instance
    """
    settings = Settings()

    if settings.debug:
        logger.info(f"Configuration loaded: {settings}")

    return settings
