

# app/providers/mobile_money/config.py
from __future__ import annotations

from dataclasses import dataclass

from settings import settings


def gateway_mode() -> str:
    return (settings.GATEWAY_MODE or "sandbox").strip().lower()


@dataclass(frozen=True)
class GatewayConfig:
    mode: str  # "sandbox" | "real"
    base_url: str
    timeout_s: float
    webhook_secret: str
    debug: bool = False


def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        mode=gateway_mode(),
        base_url=(settings.GATEWAY_BASE_URL or "").strip().rstrip("/"),
        timeout_s=float(settings.GATEWAY_HTTP_TIMEOUT_S),
        webhook_secret=(settings.GATEWAY_WEBHOOK_SECRET or "").strip(),
        debug=(settings.LOG_LEVEL or "").strip().upper() == "DEBUG",
    )


@dataclass(frozen=True)
class PollPolicy:
    interval_s: float
    max_attempts: int


def poll_policy() -> PollPolicy:
    return PollPolicy(
        interval_s=float(settings.POLL_INTERVAL_SECONDS),
        max_attempts=int(settings.POLL_MAX_ATTEMPTS),
    )


def default_country() -> str:
    return (settings.DEFAULT_COUNTRY or "COD").strip().upper()


def default_currency() -> str:
    return (settings.DEFAULT_CURRENCY or "CDF").strip().upper()
