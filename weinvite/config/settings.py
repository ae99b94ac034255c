"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIDTRANS_SNAP_SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1"
MIDTRANS_SNAP_PRODUCTION_URL = "https://app.midtrans.com/snap/v1"
MIDTRANS_API_SANDBOX_URL = "https://api.sandbox.midtrans.com/v2"
MIDTRANS_API_PRODUCTION_URL = "https://api.midtrans.com/v2"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(..., description="SQLAlchemy async database URL")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Midtrans Configuration
    midtrans_server_key: str = Field(..., description="Midtrans server key")
    midtrans_is_production: bool = Field(
        default=False, description="Use the Midtrans production environment"
    )

    # Supabase Storage Configuration
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_service_key: str = Field(..., description="Supabase service role key")
    order_images_bucket: str = Field(
        default="order-images", description="Bucket for order customization images"
    )
    product_images_bucket: str = Field(
        default="products", description="Bucket for product thumbnails and galleries"
    )

    # Uploads
    max_upload_bytes: int = Field(
        default=5 * 1024 * 1024, description="Maximum size of a single uploaded image"
    )
    max_gallery_images: int = Field(default=5, description="Maximum gallery images per product")

    # Outbound HTTP
    http_timeout_seconds: float = Field(
        default=30.0, description="Timeout for storage and gateway calls (seconds)"
    )

    # Application Configuration
    app_name: str = Field(default="weinvite", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=3000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("midtrans_server_key")
    @classmethod
    def validate_midtrans_key(cls, v: str) -> str:
        """Validate that the Midtrans key is a server key, not a client key."""
        if "Mid-server-" not in v:
            raise ValueError(
                "Invalid Midtrans server key format. Must contain 'Mid-server-'"
            )
        return v

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def midtrans_snap_url(self) -> str:
        if self.midtrans_is_production:
            return MIDTRANS_SNAP_PRODUCTION_URL
        return MIDTRANS_SNAP_SANDBOX_URL

    @property
    def midtrans_api_url(self) -> str:
        if self.midtrans_is_production:
            return MIDTRANS_API_PRODUCTION_URL
        return MIDTRANS_API_SANDBOX_URL


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
