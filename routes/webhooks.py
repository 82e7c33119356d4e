
# routes/webhooks.py
from __future__ import annotations

import hmac
import hashlib
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from app.payments.ingestor import extract_webhook_refs
from app.payments.service import CheckoutService
from app.providers.mobile_money.config import gateway_config
from deps.payments import get_checkout_service
from services.metrics import increment_webhook_event
from services.redaction import redact_dict, redact_text


router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("mako.webhooks")

PROVIDER = "PAWAPAY"


def _resolve_request_id(req: Request) -> str | None:
    candidates = (
        req.headers.get("X-Request-ID"),
        req.headers.get("X-Correlation-ID"),
        req.headers.get("X-Provider-Request-ID"),
    )
    for value in candidates:
        if value and value.strip():
            return value.strip()
    return getattr(req.state, "request_id", None)


def _verify_signature(*, raw: bytes, signature_header: str | None, secret: str | None) -> tuple[bool, str | None]:
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, sig):
        return False, "INVALID_SIGNATURE"

    return True, None


def _parse_json(raw: bytes) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return parsed if isinstance(parsed, dict) else None


@router.post("/pawapay")
async def pawapay_webhook(
    req: Request,
    service: CheckoutService = Depends(get_checkout_service),
):
    raw = await req.body()
    sig_header = req.headers.get("X-Signature")
    request_id = _resolve_request_id(req)

    payload = _parse_json(raw)
    deposit_id, status_raw = extract_webhook_refs(payload) if payload is not None else (None, "")

    def _log_summary(signature_valid: bool, reason: str | None = None) -> None:
        logger.info(
            "webhook_received request_id=%s provider=%s signature_valid=%s deposit_id=%s status_raw=%s reason=%s",
            request_id,
            PROVIDER,
            signature_valid,
            redact_text(deposit_id or ""),
            redact_text(status_raw or ""),
            reason,
        )

    sig_ok, sig_err = _verify_signature(
        raw=raw,
        signature_header=sig_header,
        secret=gateway_config().webhook_secret,
    )

    # deployment misconfig
    if sig_err == "WEBHOOK_SECRET_NOT_CONFIGURED":
        _log_summary(False, sig_err)
        increment_webhook_event(provider=PROVIDER, signature_valid=False, applied=False)
        raise HTTPException(status_code=500, detail={"error": sig_err, "provider": PROVIDER})

    if not sig_ok:
        _log_summary(False, sig_err)
        increment_webhook_event(provider=PROVIDER, signature_valid=False, applied=False)
        raise HTTPException(status_code=401, detail={"error": sig_err, "provider": PROVIDER})

    if payload is None:
        _log_summary(True, "INVALID_JSON")
        increment_webhook_event(provider=PROVIDER, signature_valid=True, applied=False)
        raise HTTPException(status_code=400, detail={"error": "INVALID_JSON", "provider": PROVIDER})

    logger.debug("webhook_payload request_id=%s payload=%s", request_id, redact_dict(payload))
    outcome = await service.ingestor.ingest_webhook(payload)
    _log_summary(True, outcome.reason)
    increment_webhook_event(provider=PROVIDER, signature_valid=True, applied=outcome.applied)

    # unknown or stale events are acknowledged so the provider stops retrying
    out = outcome.as_dict()
    out["provider"] = PROVIDER
    return out
