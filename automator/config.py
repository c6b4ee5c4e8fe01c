"""
Automator Configuration

Environment-based configuration for the batch automator.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Automator settings loaded from environment variables."""

    # Target page
    target_url: str = "https://gemini.google.com/app"

    # Browser connection
    browser_cdp_url: str = ""  # Empty = launch a persistent context instead
    browser_user_data_dir: str = ".automator-profile"
    browser_headless: bool = False

    # Inter-item delay defaults (seconds)
    min_delay: int = 10
    max_delay: int = 20
    min_delay_floor: int = 5

    # Per-item protocol timings (seconds)
    fill_settle_seconds: float = 1.0
    error_settle_seconds: float = 3.0
    post_fill_seconds: float = 0.5
    trigger_max_attempts: int = 20
    trigger_retry_interval: float = 0.2
    post_click_seconds: float = 1.0
    generation_start_grace: float = 3.0
    completion_timeout: float = 180.0  # 3 minutes
    completion_settle_seconds: float = 2.0
    image_discovery_delay: float = 2.0

    # Watermark removal
    watermark_removal_enabled: bool = True
    assets_dir: str = "assets"
    fetch_timeout: float = 60.0

    # Processed image storage
    output_dir: str = "output"

    # MinIO / S3 (empty endpoint = local output_dir)
    minio_endpoint: str = ""
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "automator"
    minio_secure: bool = False

    # Redis progress stream (empty = in-memory)
    redis_url: str = ""
    log_history: int = 500

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8005
    max_upload_size_mb: int = 20
    debug: bool = False

    # Metrics
    metrics_port: int = 9095
    pushgateway_url: str = ""  # Empty = local HTTP server
    metrics_push_interval: float = 15.0  # seconds

    @property
    def assets_path(self) -> Path:
        return Path(self.assets_dir)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
