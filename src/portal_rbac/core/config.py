"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg://...)",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # JWT
    jwt_secret_key: str = Field(min_length=32, description="Secret key for signing JWTs (minimum 32 characters)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=30,
        description="Access token expiration in minutes",
        gt=0,
    )

    # Role assignment
    batch_max_items: int = Field(
        default=50,
        description="Maximum number of items accepted in one batch assignment",
        gt=0,
    )
    batch_approval_threshold: int = Field(
        default=20,
        description="Batches larger than this are flagged as requiring approval and rejected",
        gt=0,
    )

    # Audit
    audit_default_page_size: int = Field(
        default=100,
        description="Default page size for audit log listings",
        gt=0,
        le=1000,
    )
    export_max_records: int = Field(
        default=10000,
        description="Maximum number of audit entries included in a single export",
        gt=0,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )
    cors_origin_regex: str = Field(
        default="",
        description="Regex pattern for allowed CORS origins",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )
    rate_limit_per_minute: int = Field(
        default=200,
        description="Maximum API requests per minute per IP address",
        gt=0,
    )
    trusted_proxy_headers: str = Field(
        default="CF-Connecting-IP,X-Forwarded-For,X-Real-IP",
        description="Comma-separated list of HTTP headers to check for real client IP, in priority order",
    )

    @property
    def trusted_proxy_header_list(self) -> list[str]:
        """Parse trusted proxy headers string into a list."""
        if not self.trusted_proxy_headers.strip():
            return []
        return [h.strip() for h in self.trusted_proxy_headers.split(",") if h.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
