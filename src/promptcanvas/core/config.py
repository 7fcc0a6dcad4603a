"""Configuration management for PromptCanvas.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PROMPTCANVAS_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PROMPTCANVAS_* prefix)
2. .env file in the project root
3. Default values defined in PromptCanvasConfig

Example .env file:
    PROMPTCANVAS_R2_ACCOUNT_ID=0123456789abcdef
    PROMPTCANVAS_R2_ACCESS_KEY_ID=...
    PROMPTCANVAS_R2_SECRET_ACCESS_KEY=...
    PROMPTCANVAS_R2_BUCKET_NAME=promptcanvas
    PROMPTCANVAS_R2_PUBLIC_URL=https://cdn.example.com

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The API app factory accepts an explicit instance, so tests and embedding
applications can inject their own configuration instead.

Storage Availability
--------------------
Storage settings gate availability, not behavior. When any of the four
required R2 settings is empty, ``storage_configured`` is False and every
history/image route answers with a fixed "not configured" error without
constructing a storage client.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PromptCanvasConfig(BaseSettings):
    """Main configuration for PromptCanvas.

    Attributes
    ----------
    Object Storage (Cloudflare R2 / S3-compatible):
        r2_account_id : str
            Account ID used to build the default R2 endpoint
        r2_access_key_id : str
            Access key for the bucket
        r2_secret_access_key : str
            Secret key for the bucket
        r2_bucket_name : str
            Bucket holding history documents and images
        r2_endpoint_url : str
            Explicit S3 endpoint (overrides the account-derived R2 endpoint)
        r2_public_url : str
            Public URL base for image links (empty = serve through the proxy route)

    History Settings:
        default_api_key : str
            Credential used when a request carries no x-api-key header
        history_limit : int
            Maximum number of items kept per user ledger
        generate_thumbnails : bool
            Derive a thumbnail server-side when the client sends none
        thumbnail_size : int
            Longest side of derived thumbnails in pixels

    Server Settings:
        server_host : str
            Server bind address
        server_port : int
            Server port (1024-65535)
        log_level : str
            Root logging level for the CLI entry point
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PROMPTCANVAS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Object storage
    r2_account_id: str = Field(default="", description="R2 account ID")
    r2_access_key_id: str = Field(default="", description="R2 access key ID")
    r2_secret_access_key: str = Field(default="", description="R2 secret access key")
    r2_bucket_name: str = Field(default="", description="R2 bucket name")
    r2_endpoint_url: str = Field(
        default="",
        description="Explicit S3 endpoint URL (defaults to the account R2 endpoint)",
    )
    r2_public_url: str = Field(
        default="",
        description="Public URL base for stored images (empty = proxy route)",
    )

    # History
    default_api_key: str = Field(
        default="",
        description="Credential used when the request has no x-api-key header",
    )
    history_limit: int = Field(
        default=100,
        description="Maximum number of history items kept per user",
        ge=1,
        le=1000,
    )
    generate_thumbnails: bool = Field(
        default=True,
        description="Derive thumbnails server-side when the client sends none",
    )
    thumbnail_size: int = Field(
        default=256,
        description="Longest side of derived thumbnails in pixels",
        ge=32,
        le=1024,
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("r2_public_url", "r2_endpoint_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def storage_configured(self) -> bool:
        """Whether every required storage setting is present."""
        return bool(
            self.r2_account_id
            and self.r2_access_key_id
            and self.r2_secret_access_key
            and self.r2_bucket_name
        )

    @property
    def storage_endpoint(self) -> str:
        """S3 endpoint URL for the configured bucket."""
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"


# Global configuration instance
# Loaded once at import from PROMPTCANVAS_* environment variables and .env.
config = PromptCanvasConfig()
