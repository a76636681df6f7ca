from __future__ import annotations

import json
from functools import lru_cache
from typing import List

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict


DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
COMMA_SEPARATED_FIELDS = frozenset({"allow_origins"})


class _CommaSeparatedLists:
    """Accept list settings such as ALLOW_ORIGINS as ``a,b,c`` as well as JSON."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)  # type: ignore[misc]
        except json.JSONDecodeError:
            if field_name in COMMA_SEPARATED_FIELDS:
                return value
            raise


class _EnvSource(_CommaSeparatedLists, EnvSettingsSource):
    pass


class _DotEnvSource(_CommaSeparatedLists, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "Request Approval API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    allow_destructive_actions: bool = Field(
        default=False,
        description="Allow destructive actions (table resets) in production.",
        validation_alias=AliasChoices("ALLOW_DESTRUCTIVE_ACTIONS", "DESTRUCTIVE_ACTIONS_ALLOWED"),
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="postgresql+psycopg2://postgres@localhost:5432/reqflow",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    # Session
    jwt_secret: str = Field(default="change_me", description="Session token signing secret")
    algorithm: str = Field(default="HS256", description="Session token signing algorithm")
    session_lifetime_hours: int = Field(default=8, description="Session lifetime in hours")
    session_cookie_name: str = Field(default="session", description="Name of the session cookie")
    session_cookie_secure: bool = Field(default=False, description="Send the session cookie over HTTPS only")

    # CORS
    allow_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_ORIGINS))

    # Client refresh hints
    approver_refresh_seconds: int = Field(default=300, description="Polling interval for approver inboxes")
    requester_refresh_seconds: int = Field(default=30, description="Polling interval for requester views")

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str) and value.strip():
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(DEFAULT_ORIGINS)

    @field_validator("session_lifetime_hours")
    @classmethod
    def clamp_session_lifetime(cls, value: int) -> int:
        return value if value > 0 else 8

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @property
    def destructive_actions_enabled(self) -> bool:
        return not self.is_production or self.allow_destructive_actions

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _EnvSource(settings_cls),
            _DotEnvSource(settings_cls),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
