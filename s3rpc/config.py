"""
s3rpc Application Configuration

Uses pydantic-settings to load configuration from environment variables and .env file.
All settings are validated on application startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# S3 rejects multipart parts smaller than this (except the last one)
MIN_PART_SIZE = 5 * 1024 * 1024


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # S3 / MinIO Object Storage
    # =========================================================================
    S3_ACCESS_KEY_ID: Optional[str] = None  # None falls back to the boto3 credential chain
    S3_SECRET_ACCESS_KEY: Optional[str] = None
    S3_ENDPOINT: Optional[str] = None  # Set for MinIO, leave None for AWS S3
    S3_REGION: str = "us-east-1"
    S3_BUCKET: str = "s3rpc"
    S3_PREFIX: str = ""
    S3_SIGNATURE_VERSION: str = "s3v4"
    S3_ADDRESSING_STYLE: str = "auto"  # auto | path | virtual
    S3_EXPIRES_IN: int = 900  # Default presigned URL lifetime (seconds)

    # =========================================================================
    # Remote service
    # =========================================================================
    S3_SERVICE_PATH: str = "s3"
    UPLOAD_CHUNK_SIZE: int = MIN_PART_SIZE  # Multipart threshold and part size

    # =========================================================================
    # Server
    # =========================================================================
    HOST: str = "0.0.0.0"
    PORT: int = 3030
    CORS_ORIGINS: str = "http://localhost:3000"  # Comma-separated allowed origins

    # =========================================================================
    # Monitoring
    # =========================================================================
    SENTRY_DSN: Optional[str] = None  # Optional - disabled if not set

    # =========================================================================
    # Application
    # =========================================================================
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    @field_validator("S3_SIGNATURE_VERSION")
    @classmethod
    def _normalize_signature_version(cls, value: str) -> str:
        # Accept the short "v4" alias for SigV4
        return "s3v4" if value.lower() in ("v4", "s3v4") else value

    @field_validator("S3_ADDRESSING_STYLE")
    @classmethod
    def _check_addressing_style(cls, value: str) -> str:
        value = value.lower()
        if value not in ("auto", "path", "virtual"):
            raise ValueError("S3_ADDRESSING_STYLE must be one of auto, path, virtual")
        return value

    @field_validator("S3_EXPIRES_IN")
    @classmethod
    def _check_expires_in(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("S3_EXPIRES_IN must be positive")
        return value

    @field_validator("UPLOAD_CHUNK_SIZE")
    @classmethod
    def _check_chunk_size(cls, value: int) -> int:
        if value < MIN_PART_SIZE:
            raise ValueError(f"UPLOAD_CHUNK_SIZE must be at least {MIN_PART_SIZE} bytes")
        return value

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
