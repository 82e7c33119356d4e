

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from app.payments.state_machine import ACTIVE_STATUSES, COMPLETED, TERMINAL_STATUSES


Plan = Literal["student", "pro", "advanced"]

PLAN_PRICES: dict[str, Decimal] = {
    "student": Decimal("1"),
    "pro": Decimal("2"),
    "advanced": Decimal("3"),
}

MOBILE_MONEY_PROVIDERS = ("mtn", "airtel", "orange", "vodacom", "telma")


@dataclass(frozen=True)
class PaymentIntent:
    deposit_id: str
    session_id: str
    plan: str
    amount: Decimal
    phone: str
    provider: str
    country: str
    currency: str
    status: str
    created_at: datetime
    updated_at: datetime
    provider_status: Optional[str] = None
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    attempts: int = 0

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    def evolve(self, **changes) -> "PaymentIntent":
        return replace(self, **changes)

    def as_dict(self) -> dict:
        return {
            "deposit_id": self.deposit_id,
            "plan": self.plan,
            "amount": str(self.amount),
            "phone": self.phone,
            "provider": self.provider,
            "country": self.country,
            "currency": self.currency,
            "status": self.status,
            "provider_status": self.provider_status,
            "reference": self.reference,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "failure_reason": self.failure_reason,
            "attempts": self.attempts,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class StatusReport:
    """One observation of an intent's status, from a poll or a callback."""

    status: str
    provider_status: Optional[str] = None
    failure_reason: Optional[str] = None
    source: str = "poll"


@dataclass(frozen=True)
class TransitionResult:
    intent: PaymentIntent
    applied: bool
    previous_status: str
    reason: Optional[str] = None

    @property
    def just_completed(self) -> bool:
        return self.applied and self.intent.is_completed and self.previous_status != COMPLETED


def default_provider(country: str | None) -> str:
    c = (country or "").strip().lower()
    if "madagascar" in c or c in ("mg", "mdg"):
        return "telma"
    if "congo" in c or "rdc" in c or c in ("cd", "cod"):
        return "vodacom"
    return "airtel"
