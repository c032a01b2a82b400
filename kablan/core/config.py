"""Application configuration."""

from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "Kablan Ledger"
    app_env: str = "development"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # "remote" talks to the JSON gateway and falls back to the local cache
    # when it is unreachable; "local" uses the cache alone.
    storage_backend: Literal["remote", "local"] = "remote"
    gateway_base_url: str = "http://localhost:8080"
    gateway_timeout_seconds: float = Field(default=10.0, gt=0)
    local_cache_url: str = "sqlite+pysqlite:///./kablan_cache.db"
    seed_data_dir: str = "public/data"

    vat_rate: Decimal = Field(default=Decimal("0.18"), ge=0)
    max_projects_default_user: int = Field(default=10, ge=0)
    online_window_minutes: int = Field(default=5, ge=1)
    last_login_refresh_seconds: int = Field(default=60, ge=0)

    # Development fallback principal (for local runs without a proxy).
    # Must be disabled in production environments.
    auth_allow_dev_principal: bool = False
    auth_dev_user_id: str = "super-admin"

    # Keep .env support for comma-separated values (non-JSON).
    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="KABLAN_",
        case_sensitive=False,
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""

    return Settings()
