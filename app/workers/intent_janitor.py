
# app/workers/intent_janitor.py
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from app.payments.service import CheckoutService
from settings import settings


logger = logging.getLogger("mako.janitor")


def _retention() -> timedelta:
    return timedelta(seconds=int(settings.INTENT_RETENTION_SECONDS))


def run_once(service: CheckoutService, *, retention: Optional[timedelta] = None) -> int:
    purged = service.purge_expired(retention=retention if retention is not None else _retention())
    return len(purged)


async def run_forever(
    service: CheckoutService,
    *,
    interval_s: Optional[float] = None,
    retention: Optional[timedelta] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    interval = float(interval_s if interval_s is not None else settings.JANITOR_INTERVAL_SECONDS)
    logger.info("intent janitor starting interval=%ss", interval)
    while True:
        await sleep(interval)
        try:
            count = run_once(service, retention=retention)
        except Exception:
            logger.exception("intent janitor pass failed")
            continue
        if count:
            logger.info("intent janitor purged=%s", count)
