

# app/payments/errors.py
from __future__ import annotations


class PaymentError(Exception):
    code = "PAYMENT_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(PaymentError):
    """Checkout input rejected before any network call."""

    code = "VALIDATION_ERROR"


class GatewayUnavailable(PaymentError):
    """Transport error or 5xx from the gateway."""

    code = "GATEWAY_UNAVAILABLE"


class GatewayRejected(PaymentError):
    """4xx from the gateway. `message` is the provider's reason, shown verbatim."""

    code = "GATEWAY_REJECTED"

    def __init__(self, message: str | None = None, *, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status


class InvalidDepositId(PaymentError):
    code = "INVALID_DEPOSIT_ID"


class ConfirmationTimeout(PaymentError):
    """The intent never settled within the polling budget (status timed_out)."""

    code = "CONFIRMATION_TIMEOUT"
    default_message = "confirmation timed out"


class UnknownIntent(PaymentError):
    code = "UNKNOWN_INTENT"


class PaymentRequired(PaymentError):
    code = "PAYMENT_REQUIRED"


class InvalidTransition(PaymentError):
    code = "INVALID_TRANSITION"
