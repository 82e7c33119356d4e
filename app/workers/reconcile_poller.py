# app/workers/reconcile_poller.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.payments.errors import GatewayUnavailable, UnknownIntent
from app.payments.model import PaymentIntent, TransitionResult
from app.payments.store import IntentStore
from app.payments.unlock import UnlockGate
from app.providers.base import PaymentGateway
from app.providers.mobile_money.config import PollPolicy, poll_policy
from services.metrics import increment_status_poll


logger = logging.getLogger("mako.poller")

Sleep = Callable[[float], Awaitable[None]]


class ReconciliationPoller:
    """
    Polls the gateway for pending/processing intents until they settle.

    One asyncio task per deposit id; start() while a task is alive is a
    no-op. Per-poll transport errors and "no new information" answers count
    against the attempt budget; only running out of attempts is fatal
    (-> timed_out). Terminal notifications go through the UnlockGate latch.
    """

    def __init__(
        self,
        *,
        store: IntentStore,
        gateway: PaymentGateway,
        gate: UnlockGate,
        policy: PollPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.gate = gate
        self.policy = policy or poll_policy()
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}

    def is_polling(self, deposit_id: str) -> bool:
        task = self._tasks.get(deposit_id)
        return task is not None and not task.done()

    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def start(self, deposit_id: str, *, token: str) -> asyncio.Task:
        task = self._tasks.get(deposit_id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self.run(deposit_id, token=token), name=f"poll:{deposit_id}")
        self._tasks[deposit_id] = task
        task.add_done_callback(lambda t, d=deposit_id: self._forget_task(d, t))
        return task

    def _forget_task(self, deposit_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(deposit_id) is task:
            self._tasks.pop(deposit_id, None)

    async def run(self, deposit_id: str, *, token: str) -> Optional[PaymentIntent]:
        intent = self.store.get(deposit_id)
        if intent is None:
            logger.info("poll_skipped deposit_id=%s reason=UNKNOWN_INTENT", deposit_id)
            return None

        try:
            while intent.is_active and intent.attempts < self.policy.max_attempts:
                await self._sleep(self.policy.interval_s)
                intent = await self._poll_once(deposit_id, token=token)
                if intent is None:
                    return None
                if intent.is_terminal:
                    break

            if intent.is_active:
                result = await self.store.expire(deposit_id)
                intent = result.intent
                if result.applied:
                    logger.info(
                        "poll_timed_out deposit_id=%s attempts=%s",
                        deposit_id,
                        intent.attempts,
                    )

            self.gate.notify(intent)
            return intent
        except UnknownIntent:
            # session torn down while we were waiting; nothing left to write
            logger.info("poll_stopped deposit_id=%s reason=INTENT_DISCARDED", deposit_id)
            return None
        except asyncio.CancelledError:
            logger.info("poll_cancelled deposit_id=%s", deposit_id)
            raise

    async def _poll_once(self, deposit_id: str, *, token: str) -> Optional[PaymentIntent]:
        if deposit_id not in self.store:
            return None

        try:
            report = await self.gateway.query_status(deposit_id, token=token)
        except GatewayUnavailable as exc:
            increment_status_poll("transport_error")
            logger.warning("poll_transport_error deposit_id=%s err=%s", deposit_id, exc)
            return await self.store.record_attempt(deposit_id)

        intent = await self.store.record_attempt(deposit_id)
        if report is None:
            increment_status_poll("no_info")
            return intent

        increment_status_poll(report.status)
        result = await self.store.apply(deposit_id, report)
        return result.intent

    def on_result(self, result: TransitionResult) -> None:
        """Hook for other writers (callbacks) that settle an intent."""
        if result.intent.is_terminal:
            self.gate.notify(result.intent)
            self.cancel(result.intent.deposit_id)

    def cancel(self, deposit_id: str) -> bool:
        task = self._tasks.get(deposit_id)
        if task is None or task.done() or task is asyncio.current_task():
            return False
        self._tasks.pop(deposit_id, None)
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
