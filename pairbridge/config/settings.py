"""PairBridge configuration via environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Deployment ---
    ENVIRONMENT: Literal["production", "development"] = "development"

    # --- Session storage ---
    SESSION_ROOT: str = "."

    # --- Protocol client ("package.module:callable") ---
    CLIENT_FACTORY: str = ""

    # --- Phone numbers ---
    DEFAULT_COUNTRY_CODE: str = "62"

    # --- Session lifecycle (seconds) ---
    SESSION_TIMEOUT_SECONDS: float = 300.0
    RECONNECT_INTERVAL_SECONDS: float = 5.0
    MAX_RECONNECT_ATTEMPTS: int = 5
    RECONNECT_BACKOFF_FACTOR: float = 1.0
    RECONNECT_BACKOFF_MAX_SECONDS: float = 60.0

    # --- CORS ---
    CORS_ORIGINS: list[str] = ["*"]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator("DEFAULT_COUNTRY_CODE", mode="before")
    @classmethod
    def _strip_plus(cls, v: str) -> str:
        v = str(v).strip()
        if v.startswith("+"):
            v = v[1:]
        if not v.isdigit():
            raise ValueError("DEFAULT_COUNTRY_CODE must contain digits only")
        return v

    @model_validator(mode="after")
    def _check_reconnect_policy(self) -> "Settings":
        if self.MAX_RECONNECT_ATTEMPTS < 0:
            raise ValueError("MAX_RECONNECT_ATTEMPTS must not be negative")
        if self.RECONNECT_BACKOFF_FACTOR < 1.0:
            raise ValueError("RECONNECT_BACKOFF_FACTOR must be at least 1.0")
        return self


settings = Settings()
