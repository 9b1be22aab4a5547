# src/docs_api/config/settings.py
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Single source of truth for all application settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from docs_api.config.settings import get_settings
        settings = get_settings()
        root = settings.storage_root_path
    """

    # Application Settings
    app_name: str = Field(
        default="docs-api",
        description="Application name"
    )

    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Origins allowed by the CORS middleware"
    )

    # Storage Configuration
    storage_root_path: str = Field(
        default="./storage",
        validation_alias=AliasChoices("storage_root_path", "STORAGE__ROOT_PATH"),
        description="Root directory for stored documents"
    )

    storage_max_filename_length: int = Field(
        default=200,
        ge=16,
        le=240,
        description="Maximum length of a stored file name in UTF-8 bytes"
    )

    max_upload_bytes: int = Field(
        default=20 * 1024 * 1024,
        gt=0,
        description="Largest accepted upload"
    )

    # Database Configuration
    database_path: str = Field(
        default="documents.db",
        description="SQLite database holding users, documents and e-mail logs"
    )

    # Auth Configuration
    jwt_secret: str = Field(
        default="change-me-in-production-0123456789abcdef",
        description="HMAC secret used to sign access tokens"
    )

    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )

    jwt_expires_minutes: int = Field(
        default=60,
        gt=0,
        description="Access token lifetime in minutes"
    )

    jwt_issuer: str = Field(
        default="docs-api",
        description="Issuer claim of access tokens"
    )

    jwt_audience: str = Field(
        default="docs-api-clients",
        description="Audience claim of access tokens"
    )

    # SMTP Configuration
    smtp_host: str = Field(
        default="localhost",
        description="SMTP server host"
    )

    smtp_port: int = Field(
        default=25,
        description="SMTP server port"
    )

    smtp_use_tls: bool = Field(
        default=False,
        validation_alias=AliasChoices("smtp_use_tls", "SMTP_ENABLE_SSL"),
        description="Upgrade the SMTP connection with STARTTLS"
    )

    smtp_user: Optional[str] = Field(
        default=None,
        description="SMTP user name"
    )

    smtp_password: Optional[str] = Field(
        default=None,
        description="SMTP password"
    )

    smtp_from: str = Field(
        default="noreply@documentapi.local",
        description="Sender address for outgoing e-mail"
    )

    smtp_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="SMTP connection timeout"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        """Accept any standard logging level name, case-insensitively."""
        level = str(v).upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Invalid log_level: {v}")
        return level

    def masked(self) -> dict:
        """Settings as a dict with secrets hidden, for display."""
        values = self.model_dump()
        for secret in ("jwt_secret", "smtp_password"):
            if values.get(secret):
                values[secret] = "********"
        return values

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
