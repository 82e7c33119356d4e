from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

import httpx

from app.payments.errors import GatewayRejected, GatewayUnavailable, InvalidDepositId
from app.payments.model import StatusReport
from app.payments.state_machine import map_gateway_status
from app.providers.base import CreatedIntent
from app.providers.mobile_money.config import GatewayConfig, gateway_config
from app.providers.mobile_money.http import AsyncHttpClient, HttpResponse, is_server_error
from services.redaction import mask_phone


logger = logging.getLogger("mako.gateway")

CREATE_PATH = "/api/payments/create"
STATUS_PATH_TEMPLATE = "/api/payments/status/{deposit_id}"

DEFAULT_CREATE_ERROR = "Payment creation failed"
DEFAULT_FAILURE_MESSAGE = "Payment was not approved. Please try again."


class PawapayGateway:
    """
    Client for the payments backend that fronts PawaPay deposits.

    Stateless apart from the pooled HTTP client: the caller's bearer
    credential is passed on every call.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or gateway_config()
        self._http = AsyncHttpClient(
            self.config.timeout_s,
            base_url=self.config.base_url,
            transport=transport,
            debug=self.config.debug,
        )

    async def create_intent(
        self,
        *,
        plan: str,
        amount: Decimal,
        phone: str,
        provider: str,
        country: str,
        currency: str,
        token: str,
    ) -> CreatedIntent:
        body = {
            "plan": plan,
            "amount": _json_amount(amount),
            "phone": phone,
            "provider": provider,
            "country": country,
            "currency": currency,
        }
        try:
            resp = await self._http.post(CREATE_PATH, headers=_headers(token), json_body=body)
        except httpx.HTTPError as exc:
            logger.warning("gateway create transport error provider=%s err=%s", provider, exc)
            raise GatewayUnavailable(f"Payment gateway unreachable: {exc}") from exc

        logger.info(
            "gateway create status=%s plan=%s provider=%s phone=%s",
            resp.status_code,
            plan,
            provider,
            mask_phone(phone),
        )

        if is_server_error(resp.status_code):
            raise GatewayUnavailable(extract_error_message(resp.json) or f"HTTP {resp.status_code}")
        if not resp.ok:
            raise GatewayRejected(
                extract_error_message(resp.json) or DEFAULT_CREATE_ERROR,
                http_status=resp.status_code,
            )

        payload = resp.json or {}
        deposit_id = str(payload.get("depositId") or "").strip()
        if not deposit_id:
            raise InvalidDepositId("No deposit ID received from payment gateway")

        raw_status = payload.get("status")
        provider_status = payload.get("pawapayStatus") or _upper_or_none(raw_status)
        return CreatedIntent(
            deposit_id=deposit_id,
            status=map_gateway_status(raw_status, payload.get("pawapayStatus")),
            provider_status=provider_status,
        )

    async def query_status(self, deposit_id: str, *, token: str) -> Optional[StatusReport]:
        url = STATUS_PATH_TEMPLATE.format(deposit_id=deposit_id)
        try:
            resp = await self._http.get(url, headers=_headers(token))
        except httpx.HTTPError as exc:
            logger.warning("gateway status transport error deposit_id=%s err=%s", deposit_id, exc)
            raise GatewayUnavailable(f"Payment gateway unreachable: {exc}") from exc

        if not resp.ok:
            logger.info("gateway status no_info deposit_id=%s http_status=%s", deposit_id, resp.status_code)
            return None
        return parse_status_payload(resp.json)

    async def aclose(self) -> None:
        await self._http.aclose()


def _headers(token: str) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _json_amount(amount: Decimal) -> int | float:
    value = Decimal(amount)
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _upper_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text.upper() or None


def extract_error_message(payload: Any) -> Optional[str]:
    """First present of `message`, `error`, `details.errorMessage`."""
    if not isinstance(payload, dict):
        return None
    for key in ("message", "error"):
        value = payload.get(key)
        if value:
            return str(value)
    details = payload.get("details")
    if isinstance(details, dict) and details.get("errorMessage"):
        return str(details["errorMessage"])
    return None


def extract_failure_reason(payload: dict[str, Any]) -> Optional[str]:
    reason = payload.get("failureReason")
    if isinstance(reason, dict):
        message = reason.get("failureMessage") or reason.get("failureCode")
        return str(message) if message else None
    if isinstance(reason, str) and reason.strip():
        return reason.strip()
    return None


def parse_status_payload(payload: Any) -> Optional[StatusReport]:
    if not isinstance(payload, dict):
        return None
    provider_status = payload.get("pawapayStatus")
    status = map_gateway_status(payload.get("status"), provider_status)
    if status is None:
        return None
    failure_reason = None
    if status == "failed":
        failure_reason = extract_failure_reason(payload) or DEFAULT_FAILURE_MESSAGE
    return StatusReport(
        status=status,
        provider_status=_upper_or_none(provider_status),
        failure_reason=failure_reason,
        source="poll",
    )
