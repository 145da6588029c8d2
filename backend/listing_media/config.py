# ============================================================================
# Listing Media - Application Configuration
# ============================================================================
"""
Application configuration module using Pydantic Settings.

This module defines all configuration parameters for the media pipeline,
including:
- Logging
- MinIO/S3 connection settings
- Public delivery origin for final media
- Presigned URL and cleanup sweep limits

Environment Variables:
    MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_SECURE,
    STORAGE_PUBLIC_URL, PRESIGNED_UPLOAD_EXPIRY, CLEANUP_PAGE_SIZE, ...

Usage:
    from listing_media.config import settings
    endpoint = settings.minio_endpoint
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # =========================================================================
    # GENERAL
    # =========================================================================
    debug: bool = Field(default=False, description="Enable verbose logging & dev helpers")
    log_level: str = Field(default="INFO", description="Root log level for commands")

    # =========================================================================
    # OBJECT STORAGE (MinIO / S3)
    # =========================================================================
    minio_endpoint: str = Field(default="localhost:9000", description="MinIO/S3 endpoint (host:port)")
    minio_access_key: str = Field(default="minioadmin", description="MinIO access key / AWS Access Key ID")
    minio_secret_key: str = Field(default="minioadmin", description="MinIO secret key / AWS Secret Access Key")
    minio_secure: bool = Field(default=False, description="Use HTTPS for MinIO/S3 connections")
    minio_region: Optional[str] = Field(default=None, description="Bucket region (S3 only)")

    # Origin under which the final delivery bucket is publicly served,
    # e.g. https://media.example.com. Native URL detection is disabled when unset.
    storage_public_url: Optional[str] = Field(
        default=None,
        description="Public origin for delivered media",
    )

    # =========================================================================
    # PIPELINE LIMITS
    # =========================================================================
    presigned_upload_expiry: int = Field(default=3600, description="Signed upload URL lifetime (s)")
    presigned_download_expiry: int = Field(default=3600, description="Signed download URL lifetime (s)")
    cleanup_page_size: int = Field(default=1000, description="Max entries per storage list call")
    media_fetch_timeout: float = Field(default=60.0, description="Timeout for fetching remote media (s)")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def public_origin(self) -> str:
        """Origin used to build public URLs, falling back to the MinIO endpoint."""
        if self.storage_public_url:
            return self.storage_public_url.rstrip("/")
        scheme = "https" if self.minio_secure else "http"
        return f"{scheme}://{self.minio_endpoint}"


# Global settings instance (imported elsewhere)
settings = Settings()
