

# app/payments/ingestor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.payments.errors import GatewayUnavailable, UnknownIntent
from app.payments.model import PaymentIntent, StatusReport, TransitionResult
from app.payments.state_machine import FAILED, map_gateway_status
from app.payments.store import IntentStore
from app.providers.base import PaymentGateway
from app.providers.mobile_money.pawapay import DEFAULT_FAILURE_MESSAGE, extract_failure_reason
from app.workers.reconcile_poller import ReconciliationPoller
from services.metrics import increment_callback_event


logger = logging.getLogger("mako.callbacks")

SUCCESS_MARKER = "success"


@dataclass(frozen=True)
class IngestOutcome:
    deposit_id: Optional[str]
    intent: Optional[PaymentIntent] = None
    applied: bool = False
    ignored: bool = False
    reason: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": True,
            "deposit_id": self.deposit_id,
            "applied": self.applied,
            "status": self.intent.status if self.intent else None,
        }
        if self.ignored:
            out["ignored"] = True
            out["reason"] = self.reason
        return out


class CallbackIngestor:
    """
    Folds redirect returns and provider webhooks into the same intent record.

    Both paths go through IntentStore.apply, so they obey the same precedence
    rules as the poller and are idempotent: a replay leaves the record (and
    updated_at) untouched and cannot re-fire the unlock latch.
    """

    def __init__(
        self,
        *,
        store: IntentStore,
        gateway: PaymentGateway,
        poller: ReconciliationPoller,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.poller = poller

    async def ingest_redirect(
        self,
        deposit_id: str | None,
        marker: str | None,
        *,
        token: str,
        session_id: str | None = None,
    ) -> IngestOutcome:
        deposit_id = (deposit_id or "").strip() or None
        if not deposit_id:
            return self._ignored(None, "redirect", "MISSING_DEPOSIT_ID")

        intent = self.store.get(deposit_id)
        if intent is None:
            return self._ignored(deposit_id, "redirect", UnknownIntent.code)
        if session_id is not None and intent.session_id != session_id:
            return self._ignored(deposit_id, "redirect", "SESSION_MISMATCH")

        if (marker or "").strip().lower() != SUCCESS_MARKER:
            logger.info("redirect_marker_unexpected deposit_id=%s marker=%s", deposit_id, marker)

        # the marker is only a hint; the gateway decides
        try:
            report = await self.gateway.query_status(deposit_id, token=token)
        except GatewayUnavailable as exc:
            logger.warning("redirect_requery_failed deposit_id=%s err=%s", deposit_id, exc)
            return self._ignored(deposit_id, "redirect", GatewayUnavailable.code, intent=intent)

        if report is None:
            return self._ignored(deposit_id, "redirect", "NO_STATUS", intent=intent)

        return await self._apply(
            deposit_id,
            StatusReport(
                status=report.status,
                provider_status=report.provider_status,
                failure_reason=report.failure_reason,
                source="redirect",
            ),
        )

    async def ingest_webhook(self, payload: dict[str, Any]) -> IngestOutcome:
        payload = _unwrap_payload(payload)
        deposit_id, status_raw = extract_webhook_refs(payload)
        if not deposit_id:
            return self._ignored(None, "webhook", "MISSING_DEPOSIT_ID")

        provider_status = _provider_code(payload, status_raw)
        status = map_gateway_status(status_raw.lower(), provider_status)
        if status is None:
            return self._ignored(deposit_id, "webhook", "UNMAPPED_STATUS")

        failure_reason = None
        if status == FAILED:
            failure_reason = extract_failure_reason(payload) or DEFAULT_FAILURE_MESSAGE

        if deposit_id not in self.store:
            return self._ignored(deposit_id, "webhook", UnknownIntent.code)

        return await self._apply(
            deposit_id,
            StatusReport(
                status=status,
                provider_status=provider_status,
                failure_reason=failure_reason,
                source="webhook",
            ),
        )

    async def _apply(self, deposit_id: str, report: StatusReport) -> IngestOutcome:
        try:
            result: TransitionResult = await self.store.apply(deposit_id, report)
        except UnknownIntent:
            return self._ignored(deposit_id, report.source, UnknownIntent.code)

        self.poller.on_result(result)
        increment_callback_event(report.source, result.applied, None if result.applied else _short_reason(result.reason))
        logger.info(
            "callback_applied source=%s deposit_id=%s applied=%s status=%s",
            report.source,
            deposit_id,
            result.applied,
            result.intent.status,
        )
        return IngestOutcome(
            deposit_id=deposit_id,
            intent=result.intent,
            applied=result.applied,
            ignored=not result.applied,
            reason=None if result.applied else _short_reason(result.reason),
        )

    def _ignored(
        self,
        deposit_id: str | None,
        source: str,
        reason: str,
        *,
        intent: PaymentIntent | None = None,
    ) -> IngestOutcome:
        increment_callback_event(source, False, reason)
        logger.info("callback_ignored source=%s deposit_id=%s reason=%s", source, deposit_id, reason)
        return IngestOutcome(deposit_id=deposit_id, intent=intent, ignored=True, reason=reason)


def _short_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    if reason.startswith("Illegal intent transition"):
        return "TRANSITION_NOT_ALLOWED"
    return reason


def _provider_code(payload: dict[str, Any], status_raw: str) -> str | None:
    # only a raw provider code counts as one; a lowercase canonical status does not
    code = str(payload.get("pawapayStatus") or "").strip()
    if code:
        return code.upper()
    if status_raw and status_raw == status_raw.upper():
        return status_raw
    return None


def _unwrap_payload(payload: Any) -> Any:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def extract_webhook_refs(payload: Any) -> tuple[str | None, str]:
    payload = _unwrap_payload(payload)
    if not isinstance(payload, dict):
        return None, ""
    deposit_id = payload.get("depositId") or payload.get("deposit_id") or ""
    deposit_id = str(deposit_id).strip() or None
    status = str(payload.get("status") or payload.get("pawapayStatus") or "").strip()
    return deposit_id, status
