from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AnyHttpUrl, AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    MySQL is used when the host, user and database name are all provided;
    otherwise the service falls back to a local SQLite file.
    """

    app_name: str = Field(default="opentrack", validation_alias="APP_NAME")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    database_host: str | None = Field(default=None, validation_alias="DB_HOST")
    database_port: int = Field(default=3306, validation_alias="DB_PORT")
    database_user: str | None = Field(default=None, validation_alias="DB_USER")
    database_password: str | None = Field(default=None, validation_alias="DB_PASSWORD")
    database_name: str | None = Field(default=None, validation_alias="DB_NAME")
    sqlite_path: Path = Field(
        default=PROJECT_ROOT / "opentrack.db",
        validation_alias="SQLITE_PATH",
    )
    migration_lock_timeout: int = Field(
        default=60, validation_alias="MIGRATION_LOCK_TIMEOUT"
    )
    allowed_origins: List[AnyHttpUrl] = Field(
        default_factory=list,
        validation_alias="ALLOWED_ORIGINS",
    )
    public_base_url: AnyHttpUrl | None = Field(
        default=None,
        validation_alias=AliasChoices("PUBLIC_BASE_URL", "BACKEND_URL"),
    )
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")
    tracking_list_limit: int = Field(default=100, validation_alias="TRACKING_LIST_LIMIT")

    @field_validator("public_base_url", "log_file_path", mode="before")
    @classmethod
    def _empty_string_to_none(cls, value):  # type: ignore[override]
        """Coerce blank environment variables to ``None`` so optional values stay optional."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("database_host", "database_user", "database_name", mode="before")
    @classmethod
    def _blank_database_field(cls, value: str | None) -> str | None:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    model_config = SettingsConfigDict(
        env_file=(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
