from __future__ import annotations

import os

from fastapi import APIRouter, Depends

from app.payments.service import CheckoutService
from app.providers.mobile_money.config import gateway_mode
from deps.payments import get_checkout_service
from settings import settings

router = APIRouter(tags=["health"])


def _resolve_git_sha() -> str | None:
    return (
        (os.getenv("FLY_IMAGE_REF") or "").strip()
        or (os.getenv("GIT_SHA") or "").strip()
        or None
    )


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": (settings.ENVIRONMENT or "").strip(),
        "gateway_mode": gateway_mode(),
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
    }


@router.get("/readyz")
def readyz(service: CheckoutService = Depends(get_checkout_service)):
    return {
        "ready": True,
        "intents": len(service.store),
        "gateway_mode": gateway_mode(),
    }
