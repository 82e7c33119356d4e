from __future__ import annotations

import re
from typing import Any


_PHONE_RE = re.compile(r"\+?\d{8,15}")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "signature",
    "grant",
)


def mask_phone(value: str | None) -> str:
    if not value:
        return ""
    digits = re.sub(r"[^\d+]", "", value)
    if len(digits) <= 8:
        return "****"
    return f"{digits[:6]}****{digits[-2:]}"


def redact_text(value: str) -> str:
    lowered = value.lower()
    if "bearer " in lowered or "access_token" in lowered:
        return "[REDACTED]"
    return _PHONE_RE.sub(lambda m: mask_phone(m.group(0)), value)


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif (k or "").lower() in ("phone", "msisdn", "phone_e164"):
            out[k] = mask_phone(str(v)) if v else v
        else:
            out[k] = redact_value(v)
    return out
