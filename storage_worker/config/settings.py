"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Variable names follow the MinIO server's own (MINIO_ENDPOINT,
MINIO_ROOT_USER, ...) so a deployment can share one env file.
"""

import socket
from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like cors_origins), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Storage Worker"
    api_version: str = "0.1.0"
    port: int = Field(
        default=3000,
        description="Port the HTTP server listens on"
    )
    container_id: str = Field(
        default_factory=socket.gethostname,
        description="Instance identifier returned on every response. Defaults to the hostname."
    )

    # MinIO / S3 Storage Configuration
    minio_endpoint: Optional[str] = Field(
        default=None,
        description="Object store host name (no scheme). Required unless in mock mode."
    )
    minio_port: int = Field(
        default=9000,
        description="Object store port"
    )
    minio_use_ssl: bool = Field(
        default=False,
        description="Connect to the object store over HTTPS"
    )
    minio_access_key: str = Field(
        default="minioadmin",
        validation_alias=AliasChoices("MINIO_ROOT_USER", "MINIO_ACCESS_KEY", "minio_access_key"),
        description="Access key. MINIO_ROOT_USER takes precedence over the legacy MINIO_ACCESS_KEY."
    )
    minio_secret_key: str = Field(
        default="minioadmin",
        validation_alias=AliasChoices("MINIO_ROOT_PASSWORD", "MINIO_SECRET_KEY", "minio_secret_key"),
        description="Secret key. MINIO_ROOT_PASSWORD takes precedence over the legacy MINIO_SECRET_KEY."
    )
    minio_bucket: str = Field(
        default="sessions",
        description="Bucket holding all session artifacts. Created at startup if absent."
    )
    minio_region: str = Field(
        default="us-east-1",
        description="Region name for request signing"
    )
    object_store_mock_mode: bool = Field(
        default=False,
        description="Use an in-memory store instead of MinIO. Enables local dev without object storage."
    )

    # Transfer Behavior
    upload_mode: Literal["stream", "staged"] = Field(
        default="stream",
        description="'stream' pipes request bodies straight to the store; 'staged' spools to a temp file first."
    )
    staging_dir: Optional[str] = Field(
        default=None,
        description="Directory for staged uploads. Defaults to the system temp dir."
    )
    transfer_chunk_size: int = Field(
        default=256 * 1024,
        gt=0,
        description="Bytes per chunk when relaying downloads"
    )
    transfer_pipe_depth: int = Field(
        default=8,
        ge=1,
        description="Chunks buffered between the request body and the store. Bounds upload memory."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.object_store_mock_mode:
            if not self.minio_endpoint:
                missing.append("MINIO_ENDPOINT")
            if not self.minio_access_key:
                missing.append("MINIO_ROOT_USER or MINIO_ACCESS_KEY")
            if not self.minio_secret_key:
                missing.append("MINIO_ROOT_PASSWORD or MINIO_SECRET_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
