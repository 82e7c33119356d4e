

# app/payments/store.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.payments.errors import InvalidDepositId, InvalidTransition, UnknownIntent
from app.payments.model import PaymentIntent, StatusReport, TransitionResult
from app.payments.state_machine import (
    COMPLETED,
    FAILED,
    IDLE,
    PENDING,
    TIMED_OUT,
    TIMEOUT_REASON,
    assert_transition,
    resolve_target,
)
from services.redaction import mask_phone


logger = logging.getLogger("mako.payments")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntentStore:
    """
    In-process store of payment intents, keyed by deposit id.

    Every write goes through a per-intent asyncio.Lock so a poll response and
    a callback never interleave inside one transition. Records are immutable
    snapshots; writers get back a TransitionResult instead of touching fields.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._intents: dict[str, PaymentIntent] = {}
        self._sessions: dict[str, list[str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ==========================================================
    # Reads
    # ==========================================================

    def get(self, deposit_id: str) -> Optional[PaymentIntent]:
        return self._intents.get(deposit_id)

    def require(self, deposit_id: str) -> PaymentIntent:
        intent = self._intents.get(deposit_id)
        if intent is None:
            raise UnknownIntent(f"Unknown deposit id: {deposit_id}")
        return intent

    def latest_for_session(self, session_id: str) -> Optional[PaymentIntent]:
        ids = self._sessions.get(session_id) or []
        for deposit_id in reversed(ids):
            intent = self._intents.get(deposit_id)
            if intent is not None:
                return intent
        return None

    def active_for_session(self, session_id: str) -> Optional[PaymentIntent]:
        intent = self.latest_for_session(session_id)
        if intent is not None and intent.is_active:
            return intent
        return None

    def deposit_ids_for_session(self, session_id: str) -> list[str]:
        return list(self._sessions.get(session_id) or [])

    def __len__(self) -> int:
        return len(self._intents)

    def __contains__(self, deposit_id: object) -> bool:
        return deposit_id in self._intents

    # ==========================================================
    # Writes
    # ==========================================================

    def _lock_for(self, deposit_id: str) -> asyncio.Lock:
        lock = self._locks.get(deposit_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[deposit_id] = lock
        return lock

    async def create(
        self,
        *,
        deposit_id: str,
        session_id: str,
        plan: str,
        amount,
        phone: str,
        provider: str,
        country: str,
        currency: str,
        provider_status: str | None = None,
    ) -> PaymentIntent:
        deposit_id = (deposit_id or "").strip()
        if not deposit_id:
            raise InvalidDepositId("Missing deposit id")

        async with self._lock_for(deposit_id):
            if deposit_id in self._intents:
                raise InvalidDepositId(f"Duplicate deposit id: {deposit_id}")

            active = self.active_for_session(session_id)
            if active is not None:
                raise InvalidTransition(
                    f"Session already has an active intent: {active.deposit_id} ({active.status})"
                )

            assert_transition(IDLE, PENDING)
            self._supersede_failed(session_id)

            now = self._clock()
            intent = PaymentIntent(
                deposit_id=deposit_id,
                session_id=session_id,
                plan=plan,
                amount=amount,
                phone=phone,
                provider=provider,
                country=country,
                currency=currency,
                status=PENDING,
                provider_status=provider_status,
                created_at=now,
                updated_at=now,
            )
            self._intents[deposit_id] = intent
            self._sessions.setdefault(session_id, []).append(deposit_id)

        logger.info(
            "intent_created deposit_id=%s session_id=%s plan=%s amount=%s provider=%s phone=%s",
            deposit_id,
            session_id,
            plan,
            amount,
            provider,
            mask_phone(phone),
        )
        return intent

    def _supersede_failed(self, session_id: str) -> None:
        # failed / timed_out intents are replaced by the new attempt
        kept: list[str] = []
        for deposit_id in self._sessions.get(session_id) or []:
            intent = self._intents.get(deposit_id)
            if intent is None:
                continue
            if intent.status in (FAILED, TIMED_OUT):
                self._drop(deposit_id)
                logger.info("intent_superseded deposit_id=%s status=%s", deposit_id, intent.status)
                continue
            kept.append(deposit_id)
        if kept:
            self._sessions[session_id] = kept
        else:
            self._sessions.pop(session_id, None)

    async def apply(self, deposit_id: str, report: StatusReport) -> TransitionResult:
        """
        Fold one status report into the intent.

        Disallowed or replayed reports are not errors: the result comes back
        with applied=False and a reason, and the stored record is untouched.
        """
        async with self._lock_for(deposit_id):
            current = self.require(deposit_id)
            return self._apply_locked(current, report)

    def _apply_locked(self, current: PaymentIntent, report: StatusReport) -> TransitionResult:
        previous = current.status
        target = resolve_target(previous, report.status)
        if target is None:
            return TransitionResult(intent=current, applied=False, previous_status=previous, reason="REPLAY")
        if target == previous and report.provider_status in (None, current.provider_status):
            return TransitionResult(intent=current, applied=False, previous_status=previous, reason="NO_CHANGE")

        try:
            assert_transition(previous, target, provider_status=report.provider_status)
        except InvalidTransition as exc:
            logger.info(
                "intent_report_ignored deposit_id=%s status=%s reported=%s provider_status=%s source=%s",
                current.deposit_id,
                previous,
                report.status,
                report.provider_status,
                report.source,
            )
            return TransitionResult(intent=current, applied=False, previous_status=previous, reason=str(exc))

        now = max(self._clock(), current.updated_at)
        changes: dict = {"status": target, "updated_at": now}
        if report.provider_status is not None:
            changes["provider_status"] = report.provider_status

        if target == COMPLETED:
            changes["reference"] = current.deposit_id
            changes["paid_at"] = now
            changes["failure_reason"] = None
        elif target in (FAILED, TIMED_OUT):
            changes["failure_reason"] = report.failure_reason or (
                TIMEOUT_REASON if target == TIMED_OUT else "Payment was not approved. Please try again."
            )

        updated = current.evolve(**changes)
        self._intents[current.deposit_id] = updated

        if previous != target:
            logger.info(
                "intent_transition deposit_id=%s from=%s to=%s provider_status=%s source=%s",
                current.deposit_id,
                previous,
                target,
                report.provider_status,
                report.source,
            )
        return TransitionResult(intent=updated, applied=True, previous_status=previous)

    async def record_attempt(self, deposit_id: str) -> PaymentIntent:
        async with self._lock_for(deposit_id):
            current = self.require(deposit_id)
            if not current.is_active:
                return current
            updated = current.evolve(attempts=current.attempts + 1)
            self._intents[deposit_id] = updated
            return updated

    async def expire(self, deposit_id: str, *, reason: str = TIMEOUT_REASON) -> TransitionResult:
        async with self._lock_for(deposit_id):
            current = self.require(deposit_id)
            if not current.is_active:
                return TransitionResult(
                    intent=current, applied=False, previous_status=current.status, reason="NOT_ACTIVE"
                )
            return self._apply_locked(
                current,
                StatusReport(status=TIMED_OUT, failure_reason=reason, source="poller"),
            )

    # ==========================================================
    # Removal
    # ==========================================================

    def _drop(self, deposit_id: str) -> None:
        self._intents.pop(deposit_id, None)
        self._locks.pop(deposit_id, None)

    def forget_session(self, session_id: str) -> list[str]:
        ids = self._sessions.pop(session_id, None) or []
        for deposit_id in ids:
            self._drop(deposit_id)
        return ids

    def purge_terminal(self, *, older_than: timedelta) -> list[str]:
        cutoff = self._clock() - older_than
        purged = [
            deposit_id
            for deposit_id, intent in self._intents.items()
            if intent.is_terminal and intent.updated_at <= cutoff
        ]
        for deposit_id in purged:
            session_id = self._intents[deposit_id].session_id
            self._drop(deposit_id)
            remaining = [d for d in self._sessions.get(session_id) or [] if d != deposit_id]
            if remaining:
                self._sessions[session_id] = remaining
            else:
                self._sessions.pop(session_id, None)
        return purged
