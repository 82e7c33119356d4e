from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.payments.service import CheckoutService
from deps.payments import get_checkout_service
from services.metrics import render_prometheus, render_gauges

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def metrics(service: CheckoutService = Depends(get_checkout_service)):
    body = render_prometheus() + render_gauges(
        {
            "payment_intents_tracked": len(service.store),
            "payment_pollers_active": service.poller.active_count(),
        }
    )
    return Response(content=body, media_type="text/plain; version=0.0.4")
