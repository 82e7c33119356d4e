

# app/payments/service.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.payments.errors import ValidationError
from app.payments.ingestor import CallbackIngestor
from app.payments.model import (
    MOBILE_MONEY_PROVIDERS,
    PLAN_PRICES,
    PaymentIntent,
    StatusReport,
    default_provider,
)
from app.payments.store import IntentStore
from app.payments.unlock import UnlockGate
from app.providers.base import PaymentGateway
from app.providers.mobile_money.config import PollPolicy, default_country, default_currency
from app.workers.reconcile_poller import ReconciliationPoller, Sleep
from services.metrics import increment_intent_created


logger = logging.getLogger("mako.payments")


@dataclass(frozen=True)
class CheckoutRequest:
    plan: str
    amount: Any
    phone: Optional[str]
    provider: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class StartedPayment:
    intent: PaymentIntent
    created: bool


def _normalize_amount(value: Any) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Amount is required")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


def _normalize_phone(value: Optional[str]) -> str:
    phone = "".join(ch for ch in (value or "") if ch.isdigit() or ch == "+")
    if not phone:
        raise ValidationError("Phone number is required for Mobile Money")
    digits = sum(ch.isdigit() for ch in phone)
    if digits < 8 or digits > 15:
        raise ValidationError("Phone number must have 8 to 15 digits")
    return phone


def validate_checkout(req: CheckoutRequest) -> CheckoutRequest:
    plan = (req.plan or "").strip().lower()
    if plan not in PLAN_PRICES:
        raise ValidationError(f"Unknown plan: {req.plan}")

    phone = _normalize_phone(req.phone)
    amount = _normalize_amount(req.amount)

    country = (req.country or "").strip() or default_country()
    provider = (req.provider or "").strip().lower() or default_provider(country)
    if provider not in MOBILE_MONEY_PROVIDERS:
        raise ValidationError(f"Unsupported mobile money provider: {req.provider}")

    return CheckoutRequest(
        plan=plan,
        amount=amount,
        phone=phone,
        provider=provider,
        country=country.upper(),
        currency=((req.currency or "").strip() or default_currency()).upper(),
    )


class CheckoutService:
    """
    Entry point used by the HTTP layer.

    Owns the wiring between the intent store, the gateway, the poller, the
    callback ingestor and the unlock gate. One checkout session holds at most
    one active intent; asking for a payment while one is active resumes it.
    """

    def __init__(
        self,
        *,
        gateway: PaymentGateway,
        store: IntentStore | None = None,
        gate: UnlockGate | None = None,
        policy: PollPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.store = store or IntentStore()
        self.gate = gate or UnlockGate()
        self.poller = ReconciliationPoller(
            store=self.store,
            gateway=gateway,
            gate=self.gate,
            policy=policy,
            sleep=sleep,
        )
        self.ingestor = CallbackIngestor(store=self.store, gateway=gateway, poller=self.poller)
        self._session_locks: dict[str, asyncio.Lock] = {}

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    async def start_payment(self, session_id: str, token: str, req: CheckoutRequest) -> StartedPayment:
        checkout = validate_checkout(req)

        async with self._session_lock(session_id):
            active = self.store.active_for_session(session_id)
            if active is not None:
                logger.info(
                    "intent_resumed deposit_id=%s session_id=%s status=%s",
                    active.deposit_id,
                    session_id,
                    active.status,
                )
                self.poller.start(active.deposit_id, token=token)
                return StartedPayment(intent=active, created=False)

            created = await self.gateway.create_intent(
                plan=checkout.plan,
                amount=checkout.amount,
                phone=checkout.phone,
                provider=checkout.provider,
                country=checkout.country,
                currency=checkout.currency,
                token=token,
            )
            previous = self.store.deposit_ids_for_session(session_id)
            intent = await self.store.create(
                deposit_id=created.deposit_id,
                session_id=session_id,
                plan=checkout.plan,
                amount=checkout.amount,
                phone=checkout.phone,
                provider=checkout.provider,
                country=checkout.country,
                currency=checkout.currency,
                provider_status=created.provider_status,
            )
            increment_intent_created(checkout.provider)

            superseded = [d for d in previous if d not in self.store]
            if superseded:
                self.gate.forget(superseded)

            # the creation response is the gateway's first acknowledgement
            if created.status is not None:
                result = await self.store.apply(
                    intent.deposit_id,
                    StatusReport(
                        status=created.status,
                        provider_status=created.provider_status,
                        source="create",
                    ),
                )
                intent = result.intent
                if intent.is_terminal:
                    self.gate.notify(intent)

            if intent.is_active:
                self.poller.start(intent.deposit_id, token=token)
            return StartedPayment(intent=intent, created=True)

    def current_intent(self, session_id: str) -> Optional[PaymentIntent]:
        return self.store.latest_for_session(session_id)

    def get_intent(self, deposit_id: str) -> Optional[PaymentIntent]:
        return self.store.get(deposit_id)

    def is_unlocked(self, session_id: str) -> bool:
        return self.gate.is_unlocked(self.current_intent(session_id))

    def unlock_state(self, session_id: str) -> dict[str, Any]:
        intent = self.current_intent(session_id)
        just_completed = self.gate.consume_just_completed(session_id)
        out: dict[str, Any] = {
            "unlocked": self.gate.is_unlocked(intent),
            "just_completed": just_completed is not None,
            "intent": intent.as_dict() if intent else None,
        }
        if just_completed is not None:
            out["release"] = self.gate.release(just_completed)
        return out

    def release(self, session_id: str) -> dict[str, Any]:
        return self.gate.release(self.current_intent(session_id))

    async def cancel_session(self, session_id: str) -> list[str]:
        async with self._session_lock(session_id):
            for deposit_id in self.store.deposit_ids_for_session(session_id):
                self.poller.cancel(deposit_id)
            dropped = self.store.forget_session(session_id)
            self.gate.forget(dropped, session_id=session_id)
        self._session_locks.pop(session_id, None)
        if dropped:
            logger.info("session_cancelled session_id=%s intents=%s", session_id, len(dropped))
        return dropped

    def purge_expired(self, *, retention: timedelta) -> list[str]:
        purged = self.store.purge_terminal(older_than=retention)
        if purged:
            self.gate.forget(purged)
            logger.info("intents_purged count=%s", len(purged))
        self._drop_idle_session_locks()
        return purged

    def _drop_idle_session_locks(self) -> None:
        for session_id, lock in list(self._session_locks.items()):
            if not lock.locked() and not self.store.deposit_ids_for_session(session_id):
                del self._session_locks[session_id]

    async def aclose(self) -> None:
        await self.poller.shutdown()
        await self.gateway.aclose()
