
# deps/payments.py
from __future__ import annotations

from typing import Optional

from app.payments.service import CheckoutService
from app.providers.mobile_money.factory import get_gateway

_service: Optional[CheckoutService] = None


def get_checkout_service() -> CheckoutService:
    global _service
    if _service is None:
        _service = CheckoutService(gateway=get_gateway("PAWAPAY"))
    return _service


def set_checkout_service(service: Optional[CheckoutService]) -> None:
    global _service
    _service = service
