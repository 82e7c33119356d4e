

# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal



class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENVIRONMENT: str = "dev"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # JWT (bearer credential issued by the auth service)
    # -----------------------
    JWT_SECRET: str = Field(default="dev-secret-change-me", min_length=16)
    JWT_ALG: str = Field(default="HS256")
    JWT_ACCESS_MINUTES: int = Field(default=60)

    # -----------------------
    # Payment gateway
    # -----------------------
    GATEWAY_MODE: Literal["sandbox", "real"] = "sandbox"
    GATEWAY_BASE_URL: str = "http://127.0.0.1:8080/mock/gateway"
    GATEWAY_HTTP_TIMEOUT_S: float = 20.0
    GATEWAY_WEBHOOK_SECRET: str = ""

    DEFAULT_COUNTRY: str = "COD"
    DEFAULT_CURRENCY: str = "CDF"

    # -----------------------
    # Reconciliation
    # -----------------------
    POLL_INTERVAL_SECONDS: float = Field(default=3.0, gt=0)
    POLL_MAX_ATTEMPTS: int = Field(default=40, ge=1)
    INTENT_RETENTION_SECONDS: int = Field(default=3600, ge=0)
    JANITOR_INTERVAL_SECONDS: int = Field(default=300, ge=1)

    # -----------------------
    # Document release
    # -----------------------
    RELEASE_GRANT_MINUTES: int = Field(default=15, ge=1)
    CHECKOUT_RETURN_PATH: str = "/v1/checkout/return"



settings = Settings()

DEFAULT_JWT_SECRET = "dev-secret-change-me"


def validate_env_settings() -> None:
    env = (settings.ENVIRONMENT or "dev").strip().lower()
    if env in ("dev", "test", "local"):
        return

    missing: list[str] = []
    if not settings.JWT_SECRET or settings.JWT_SECRET == DEFAULT_JWT_SECRET:
        missing.append("JWT_SECRET")
    if not (settings.GATEWAY_WEBHOOK_SECRET or "").strip():
        missing.append("GATEWAY_WEBHOOK_SECRET")
    if env == "prod" and settings.GATEWAY_MODE != "real":
        missing.append("GATEWAY_MODE=real")

    if missing:
        raise RuntimeError(f"Missing or unsafe settings for {env}: " + ", ".join(missing))
