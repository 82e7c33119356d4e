
# schemas.py
from __future__ import annotations

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal

PlanName = Literal["student", "pro", "advanced"]
IntentStatus = Literal["pending", "processing", "completed", "failed", "timed_out"]


# -------- PLANS --------
class PlanItem(BaseModel):
    plan: PlanName
    amount: Decimal


class PlanListResponse(BaseModel):
    plans: List[PlanItem]
    currency: str


# -------- PAYMENTS --------
class CreatePaymentRequest(BaseModel):
    plan: str = Field(min_length=1, max_length=32)
    # validated by the checkout service so the error message matches the UI copy
    amount: Optional[Decimal] = None
    phone: Optional[str] = Field(default=None, max_length=32)
    provider: Optional[str] = Field(default=None, max_length=32)
    country: Optional[str] = Field(default=None, max_length=64)
    currency: Optional[str] = Field(default=None, max_length=8)


class IntentResponse(BaseModel):
    deposit_id: str
    plan: str
    amount: Decimal
    phone: str
    provider: str
    country: str
    currency: str
    status: IntentStatus
    provider_status: Optional[str] = None
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    attempts: int = 0
    created_at: datetime
    updated_at: datetime


# -------- UNLOCK / RELEASE --------
class ReleaseGrant(BaseModel):
    grant: str
    expires_at: datetime
    reference: Optional[str] = None
    plan: str


class UnlockResponse(BaseModel):
    unlocked: bool
    just_completed: bool
    intent: Optional[IntentResponse] = None
    release: Optional[ReleaseGrant] = None


class SessionClearedResponse(BaseModel):
    ok: bool = True
    cancelled: int


# -------- WEBHOOKS --------
class WebhookAck(BaseModel):
    ok: bool = True
    deposit_id: Optional[str] = None
    applied: bool = False
    status: Optional[str] = None
    ignored: Optional[bool] = None
    reason: Optional[str] = None
