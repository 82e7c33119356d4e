

# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from app.payments.model import StatusReport


@dataclass(frozen=True)
class CreatedIntent:
    deposit_id: str
    status: Optional[str] = None  # canonical status of the gateway ack
    provider_status: Optional[str] = None


class PaymentGateway(Protocol):
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
    ) -> CreatedIntent: ...

    # None => gateway answered without usable information (non-2xx)
    async def query_status(self, deposit_id: str, *, token: str) -> Optional[StatusReport]: ...

    async def aclose(self) -> None: ...
