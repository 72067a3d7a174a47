"""Centralized settings module — single source of truth for gateway config.

All secrets loaded exclusively from env vars. Never committed, never logged.
Redaction enforced everywhere via observability.redaction.
"""
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # ── Environment ──────────────────────────────────────────────
    ENV: Literal["dev", "staging", "prod"] = Field(default="dev")

    # ── MongoDB ──────────────────────────────────────────────────
    MONGO_URL: str = Field(default="mongodb://localhost:27017")
    DB_NAME: str = Field(default="deeplink_dev")
    MONGO_TIMEOUT_MS: int = Field(default=5000)  # server selection

    # ── Auth / Signing ───────────────────────────────────────────
    JWT_SECRET: str = Field(default="")
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_ISSUER: str = Field(default="deeplink")
    JWT_SUBJECT: str = Field(default="User token")
    JWT_EXPIRY_SECONDS: int = Field(default=14 * 24 * 60 * 60)  # 14 days

    # Network prefix accepted in SS58 user addresses. None accepts any prefix.
    SS58_ADDRESS_PREFIX: Optional[int] = Field(default=None)

    # Reject login for device ids that were never registered
    LOGIN_REQUIRE_REGISTERED_DEVICE: bool = Field(default=False)

    # ── Device identity ──────────────────────────────────────────
    DEVICE_ID_MIN: int = Field(default=100_000_000)
    DEVICE_ID_MAX: int = Field(default=1_000_000_000)  # exclusive
    DEVICE_ID_MAX_ATTEMPTS: int = Field(default=50)

    # ── Observability ────────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    LOG_REDACTION_ENABLED: bool = Field(default=True)

    model_config = {
        "env_file": str(_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
