# routes/checkout.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse

from app.payments.model import PLAN_PRICES
from app.payments.service import CheckoutRequest, CheckoutService
from app.providers.mobile_money.config import default_currency
from deps.auth import CurrentUser, get_current_user
from deps.payments import get_checkout_service
from schemas import (
    CreatePaymentRequest,
    IntentResponse,
    PlanItem,
    PlanListResponse,
    ReleaseGrant,
    SessionClearedResponse,
    UnlockResponse,
)
from settings import settings

logger = logging.getLogger("mako.checkout")
router = APIRouter(prefix="/v1/checkout", tags=["checkout"])


@router.get("/plans", response_model=PlanListResponse)
def list_plans():
    return PlanListResponse(
        plans=[PlanItem(plan=name, amount=price) for name, price in PLAN_PRICES.items()],
        currency=default_currency(),
    )


@router.post("/payments", response_model=IntentResponse, status_code=201)
async def create_payment(
    body: CreatePaymentRequest,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    started = await service.start_payment(
        user.session_id,
        user.token,
        CheckoutRequest(
            plan=body.plan,
            amount=body.amount,
            phone=body.phone,
            provider=body.provider,
            country=body.country,
            currency=body.currency,
        ),
    )
    if not started.created:
        response.status_code = 200
    return started.intent.as_dict()


@router.get("/payments/current", response_model=IntentResponse)
def current_payment(
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    intent = service.current_intent(user.session_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="NO_PAYMENT")
    return intent.as_dict()


@router.get("/payments/{deposit_id}", response_model=IntentResponse)
def get_payment(
    deposit_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    intent = service.get_intent(deposit_id)
    # other sessions' intents are indistinguishable from unknown ones
    if intent is None or intent.session_id != user.session_id:
        raise HTTPException(status_code=404, detail="PAYMENT_NOT_FOUND")
    return intent.as_dict()


@router.get("/return")
async def payment_return(
    deposit_id: Optional[str] = Query(default=None, alias="depositId"),
    payment: Optional[str] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    if deposit_id is None and payment is None:
        return UnlockResponse(**service.unlock_state(user.session_id))

    outcome = await service.ingestor.ingest_redirect(
        deposit_id,
        payment,
        token=user.token,
        session_id=user.session_id,
    )
    logger.info(
        "checkout_return deposit_id=%s applied=%s reason=%s",
        outcome.deposit_id,
        outcome.applied,
        outcome.reason,
    )
    # drop the query so a reload does not replay the callback
    return RedirectResponse(url=settings.CHECKOUT_RETURN_PATH, status_code=303)


@router.get("/unlock", response_model=UnlockResponse)
def unlock_state(
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    return service.unlock_state(user.session_id)


@router.post("/download", response_model=ReleaseGrant)
def download(
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    return service.release(user.session_id)


@router.delete("/session", response_model=SessionClearedResponse)
async def clear_session(
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    dropped = await service.cancel_session(user.session_id)
    return SessionClearedResponse(cancelled=len(dropped))
