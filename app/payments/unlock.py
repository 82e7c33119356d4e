

# app/payments/unlock.py
from __future__ import annotations

import logging
from typing import Callable, Optional

from app.payments.errors import PaymentRequired
from app.payments.model import PaymentIntent
from security import create_release_grant
from services.metrics import increment_intent_outcome


logger = logging.getLogger("mako.unlock")

OutcomeListener = Callable[[PaymentIntent], None]


class UnlockGate:
    """
    Turns "payment completed" into permission for the gated download.

    notify() is a one-shot latch keyed by (deposit id, terminal status): the
    first completed snapshot records a "just completed" edge for the session
    and runs the completion listeners; later snapshots of the same outcome
    (replays, a second poller, reloads) are no-ops. A late success after a
    failure is a different outcome and fires once too. The edge is consumed
    once by consume_just_completed().
    """

    def __init__(self) -> None:
        self._fired: set[tuple[str, str]] = set()
        self._edges: dict[str, PaymentIntent] = {}
        self._completion_listeners: list[OutcomeListener] = []
        self._failure_listeners: list[OutcomeListener] = []

    def on_completed(self, listener: OutcomeListener) -> None:
        self._completion_listeners.append(listener)

    def on_failed(self, listener: OutcomeListener) -> None:
        self._failure_listeners.append(listener)

    @staticmethod
    def is_unlocked(intent: Optional[PaymentIntent]) -> bool:
        return intent is not None and intent.is_completed

    def has_fired(self, deposit_id: str, status: str = "completed") -> bool:
        return (deposit_id, status) in self._fired

    def notify(self, intent: PaymentIntent) -> bool:
        if not intent.is_terminal:
            return False
        key = (intent.deposit_id, intent.status)
        if key in self._fired:
            return False
        self._fired.add(key)
        increment_intent_outcome(intent.status)

        if intent.is_completed:
            self._edges[intent.session_id] = intent
            logger.info(
                "unlock_fired deposit_id=%s session_id=%s plan=%s",
                intent.deposit_id,
                intent.session_id,
                intent.plan,
            )
            listeners = self._completion_listeners
        else:
            logger.info(
                "payment_not_completed deposit_id=%s status=%s reason=%s",
                intent.deposit_id,
                intent.status,
                intent.failure_reason,
            )
            listeners = self._failure_listeners

        for listener in list(listeners):
            try:
                listener(intent)
            except Exception:
                logger.exception("outcome listener failed deposit_id=%s", intent.deposit_id)
        return True

    def consume_just_completed(self, session_id: str) -> Optional[PaymentIntent]:
        return self._edges.pop(session_id, None)

    def release(self, intent: Optional[PaymentIntent]) -> dict:
        """The gated action: a short-lived signed grant for one document export."""
        if not self.is_unlocked(intent):
            raise PaymentRequired("Payment required before downloading the document")
        token, expires_at = create_release_grant(
            deposit_id=intent.deposit_id,
            session_id=intent.session_id,
            plan=intent.plan,
        )
        logger.info("document_release deposit_id=%s plan=%s", intent.deposit_id, intent.plan)
        return {
            "grant": token,
            "expires_at": expires_at.isoformat(),
            "reference": intent.reference,
            "plan": intent.plan,
        }

    def forget(self, deposit_ids: list[str], *, session_id: str | None = None) -> None:
        dropped = set(deposit_ids)
        if session_id is not None:
            self._edges.pop(session_id, None)
        self._edges = {s: i for s, i in self._edges.items() if i.deposit_id not in dropped}
        self._fired = {key for key in self._fired if key[0] not in dropped}
