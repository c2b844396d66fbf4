"""Configuration management using Pydantic Settings.

Features:
- Environment variable loading
- Type validation
- Default values
- Computed properties
"""

from pathlib import Path
from typing import Any, Optional, Tuple

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SITE_URL = "https://sebelasdpib2smeksa.netlify.app"
DEFAULT_CLOUDINARY_FOLDER = "kelas-11-dpib2"


def parse_box(value: str) -> Tuple[int, int]:
    """Parse a ``WIDTHxHEIGHT`` string into positive integers."""
    parts = str(value).lower().replace(" ", "").split("x")
    if len(parts) != 2:
        raise ValueError("transcode_max_box must look like 1920x1080")
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError("transcode_max_box must look like 1920x1080")
    if width <= 0 or height <= 0:
        raise ValueError("transcode_max_box dimensions must be positive")
    return width, height


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Messaging gateway
    gateway_url: str = Field(..., description="Base URL of the Baileys gateway")
    gateway_session: str = Field(
        "gallerybot", description="Session name used on the gateway"
    )
    gateway_api_token: Optional[SecretStr] = Field(
        None, description="Bearer token sent to the gateway"
    )
    webhook_secret: Optional[SecretStr] = Field(
        None,
        description="Shared secret for HMAC-signed gateway events (unset disables)",
    )

    # Cloudinary
    cloudinary_cloud_name: str = Field(..., description="Cloudinary cloud name")
    cloudinary_upload_preset: Optional[str] = Field(
        None, description="Unsigned upload preset"
    )
    cloudinary_api_key: Optional[str] = Field(
        None, description="API key for signed uploads and deletes"
    )
    cloudinary_api_secret: Optional[SecretStr] = Field(
        None, description="API secret for signed uploads and deletes"
    )
    cloudinary_folder: str = Field(
        DEFAULT_CLOUDINARY_FOLDER, description="Folder uploaded photos land in"
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_key: SecretStr = Field(..., description="Supabase API key")
    supabase_table: str = Field("photos", description="Table for photo metadata")

    # Website
    site_url: str = Field(DEFAULT_SITE_URL, description="Public class website")

    # Album correlation
    recent_cache_max_entries: int = Field(
        500, description="Max tracked image messages", ge=1, le=100000
    )
    recent_cache_ttl_seconds: int = Field(
        86400, description="How long image messages stay tracked", ge=60
    )
    album_fallback_window_seconds: int = Field(
        45,
        description="Window used to group photos sent by one participant",
        ge=1,
        le=3600,
    )
    message_dedupe_ttl_seconds: int = Field(
        300, description="TTL for redelivered message ids", ge=1
    )

    # Pipeline
    download_timeout_seconds: float = Field(
        60.0, description="Timeout for one media download", gt=0
    )
    upload_timeout_seconds: float = Field(
        60.0, description="Timeout for one Cloudinary upload", gt=0
    )
    transcode_max_box: str = Field(
        "1920x1080", description="Bounding box for transcoded photos (WxH)"
    )
    transcode_quality: int = Field(
        85, description="JPEG quality for transcoded photos", ge=1, le=95
    )
    temp_directory: Path = Field(
        Path("data/tmp"), description="Directory for staged uploads"
    )

    # Connection
    reconnect_delay_seconds: float = Field(
        10.0, description="Delay before reconnecting after a drop", ge=0
    )
    credentials_file: Path = Field(
        Path("data/state/whatsapp/creds.json"),
        description="Where linked-device credentials are persisted",
    )

    # Health server
    http_host: str = Field("0.0.0.0", description="Health server bind host")
    http_port: int = Field(3000, description="Health server port")

    # Monitoring
    log_level: str = Field("INFO", description="Logging level")

    # Development
    debug: bool = Field(False, description="Enable debug mode")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @field_validator("transcode_max_box")
    @classmethod
    def validate_transcode_max_box(cls, v: str) -> str:
        """Validate ``1920x1080`` style bounding boxes."""
        parse_box(v)
        return v.lower().replace(" ", "")

    @field_validator("gateway_url", "supabase_url", "site_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()  # type: ignore[no-any-return]

    @model_validator(mode="after")
    def validate_cross_field_dependencies(self) -> "Settings":
        """Validate dependencies between fields."""
        if not self.cloudinary_upload_preset and not self.has_signed_cloudinary:
            raise ValueError(
                "cloudinary_upload_preset or cloudinary_api_key/"
                "cloudinary_api_secret required"
            )
        return self

    @property
    def has_signed_cloudinary(self) -> bool:
        """Whether signed Cloudinary credentials are configured."""
        return bool(self.cloudinary_api_key and self.cloudinary_api_secret)

    @property
    def transcode_box(self) -> Tuple[int, int]:
        """Bounding box as ``(width, height)``."""
        return parse_box(self.transcode_max_box)

    @property
    def gallery_url(self) -> str:
        """Public gallery section of the class website."""
        return f"{self.site_url}/#galeri"

    @property
    def supabase_key_str(self) -> str:
        """Get Supabase key as string."""
        return self.supabase_key.get_secret_value()

    @property
    def cloudinary_api_secret_str(self) -> Optional[str]:
        """Get Cloudinary API secret as string."""
        return (
            self.cloudinary_api_secret.get_secret_value()
            if self.cloudinary_api_secret
            else None
        )

    @property
    def gateway_api_token_str(self) -> Optional[str]:
        """Get gateway token as string."""
        return (
            self.gateway_api_token.get_secret_value()
            if self.gateway_api_token
            else None
        )

    @property
    def webhook_secret_str(self) -> Optional[str]:
        """Get webhook secret as string."""
        return self.webhook_secret.get_secret_value() if self.webhook_secret else None
