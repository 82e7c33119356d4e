
#main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse

from app.payments.errors import (
    GatewayRejected,
    GatewayUnavailable,
    InvalidDepositId,
    InvalidTransition,
    PaymentError,
    PaymentRequired,
    UnknownIntent,
    ValidationError,
)
from app.providers.mobile_money.config import gateway_mode
from app.workers.intent_janitor import run_forever as run_janitor
from deps.payments import get_checkout_service
from middleware import RequestContextMiddleware
from routes.checkout import router as checkout_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.mock_gateway import router as mock_gateway_router
from routes.webhooks import router as webhooks_router
from services.observability import configure_logging
from settings import settings, validate_env_settings


logger = logging.getLogger("mako")

_ERROR_STATUS = {
    ValidationError: 400,
    GatewayRejected: 400,
    GatewayUnavailable: 502,
    InvalidDepositId: 502,
    PaymentRequired: 402,
    UnknownIntent: 404,
    InvalidTransition: 409,
}


def _status_for(exc: PaymentError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    validate_env_settings()
    service = get_checkout_service()
    janitor = asyncio.create_task(run_janitor(service), name="intent-janitor")
    logger.info("startup env=%s gateway_mode=%s", settings.ENVIRONMENT, gateway_mode())
    try:
        yield
    finally:
        janitor.cancel()
        await asyncio.gather(janitor, return_exceptions=True)
        await service.aclose()


def create_app() -> FastAPI:
    app = FastAPI(title="Mako Checkout API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(checkout_router)
    app.include_router(webhooks_router)
    if gateway_mode() == "sandbox":
        app.include_router(mock_gateway_router)

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        status = _status_for(exc)
        if status >= 500:
            logger.warning("payment_error code=%s path=%s err=%s", exc.code, request.url.path, exc.message)
        return JSONResponse(
            status_code=status,
            content={"detail": {"error": exc.code, "message": exc.message}},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
