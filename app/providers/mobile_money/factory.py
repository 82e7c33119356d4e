

# app/providers/mobile_money/factory.py
from __future__ import annotations

from typing import Any, Dict

_GATEWAY_CACHE: Dict[str, Any] = {}


def get_gateway(name: str = "PAWAPAY"):
    key = (name or "").strip().upper().replace("-", "_").replace(" ", "_")
    if not key:
        return None

    if key in _GATEWAY_CACHE:
        return _GATEWAY_CACHE[key]

    if key == "PAWAPAY":
        from app.providers.mobile_money.pawapay import PawapayGateway
        gateway = PawapayGateway()
    else:
        return None

    _GATEWAY_CACHE[key] = gateway
    return gateway
