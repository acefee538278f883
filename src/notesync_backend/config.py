from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_CORS_ALLOW_ORIGINS_VALIDATION_ALIAS = AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS")

CONFLICT_STRATEGIES = ("server_wins", "client_wins", "create_conflict_copy", "manual_merge")


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "NoteSync Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=_CORS_ALLOW_ORIGINS_VALIDATION_ALIAS,
    )

    log_level: str = "INFO"

    # Bearer tokens issued by /auth/register and /auth/login.
    auth_token_max_age_seconds: int = 60 * 60 * 24 * 30  # 30 days

    # Sync protocol
    sync_default_conflict_strategy: str = "create_conflict_copy"
    # If true, push/pull must carry X-Device-Id naming an active (non-revoked) device.
    sync_require_device: bool = True
    sync_max_batch_size: int = 1000
    # Bounded compare-and-swap retries when client_wins races another writer.
    sync_cas_max_attempts: int = 5

    # Sync history (audit log)
    sync_history_default_limit: int = 50
    sync_history_max_limit: int = 100
    sync_history_retention_days: int = 90
    sync_history_max_records: int = 1000

    # Client-side coordinator
    sync_client_timeout_seconds: float = 15.0

    @model_validator(mode="after")
    def _validate_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.sync_default_conflict_strategy not in CONFLICT_STRATEGIES:
            raise ValueError(
                "SYNC_DEFAULT_CONFLICT_STRATEGY must be one of: " + ", ".join(CONFLICT_STRATEGIES)
            )

        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if self.database_url.strip().lower().startswith("sqlite"):
            errors.append("DATABASE_URL must not point at SQLite in production")

        if self.auth_token_max_age_seconds <= 0:
            errors.append("AUTH_TOKEN_MAX_AGE_SECONDS must be positive in production")

        if not self.sync_require_device:
            errors.append("SYNC_REQUIRE_DEVICE must be true in production")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        if not self.sync_require_device:
            warnings.append("SYNC_REQUIRE_DEVICE=false lets revoked devices keep syncing")
        return warnings


# The validator is invoked by Pydantic at runtime.
_ = Settings._validate_settings


settings = Settings()
