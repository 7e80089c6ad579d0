"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
Import pipeline tuning lives here so jobs never read os.environ directly.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_batch_size: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Records per batch (progress granularity only, not parallelism)"
    )
    import_progress_interval: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Emit a progress event every N processed records"
    )
    import_job_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts the job runner makes before giving up"
    )
    import_job_backoff_ms: int = Field(
        default=5000,
        ge=0,
        le=600000,
        description="Base delay for exponential backoff between attempts"
    )
    job_runner_max_workers: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Concurrent import jobs in the in-process runner"
    )
    event_grace_period_seconds: float = Field(
        default=30.0,
        ge=0,
        le=3600,
        description="Seconds subscriptions survive after a terminal event"
    )

    # ===================
    # IMAGE IMPORT
    # ===================
    image_download_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout for a single image download"
    )
    image_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Hard ceiling on a downloaded image"
    )
    image_min_bytes: int = Field(
        default=100,
        ge=1,
        description="Smaller payloads are treated as corrupt"
    )
    image_allowed_domains: list[str] = Field(
        default_factory=lambda: [
            "roastify.app",
            "cdn.roastify.app",
            "cdn.shopify.com",
            "images.unsplash.com",
        ],
        description="Hosts (and their subdomains) images may be downloaded from"
    )
    image_storage_bucket: str = Field(
        default="product-images",
        description="Supabase Storage bucket for imported images"
    )

    # ===================
    # PROVIDERS
    # ===================
    roastify_api_url: str = Field(
        default="https://api.roastify.app/v1",
        description="Roastify REST API base URL"
    )
    provider_page_size: int = Field(
        default=50,
        ge=1,
        le=250,
        description="Page size when paginating provider catalogs"
    )
    provider_request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout for provider API requests"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
