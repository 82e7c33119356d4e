# tests/conftest.py

import asyncio
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

os.environ.setdefault("JWT_SECRET", "pytest-secret-0123456789")
os.environ.setdefault("GATEWAY_WEBHOOK_SECRET", "pytest-webhook-secret")

from app.payments.errors import GatewayUnavailable  # noqa: E402
from app.payments.model import StatusReport  # noqa: E402
from app.payments.service import CheckoutService  # noqa: E402
from app.providers.base import CreatedIntent  # noqa: E402
from app.providers.mobile_money.config import PollPolicy  # noqa: E402
from deps.payments import set_checkout_service  # noqa: E402
from security import create_access_token  # noqa: E402
from services import metrics  # noqa: E402


# ---------------------------
# Gateway double
# ---------------------------

class FakeGateway:
    """
    Scripted gateway. `statuses[deposit_id]` is consumed one item per query;
    the last item repeats. Items are StatusReport, None (no info) or an
    exception instance to raise.
    """

    def __init__(self, *, create_status: Optional[str] = "processing", create_provider_status: str = "ACCEPTED"):
        self.create_status = create_status
        self.create_provider_status = create_provider_status
        self.create_error: Optional[Exception] = None
        self.statuses: Dict[str, List[object]] = {}
        self.default_status: List[object] = [None]
        self.created: List[dict] = []
        self.queries: List[str] = []
        self.tokens: List[str] = []
        self.closed = False
        self._next = 0

    def script(self, deposit_id: str, *items: object) -> None:
        self.statuses[deposit_id] = list(items)

    def next_deposit_id(self) -> str:
        self._next += 1
        return f"D{self._next}"

    async def create_intent(self, *, plan, amount, phone, provider, country, currency, token) -> CreatedIntent:
        self.tokens.append(token)
        if self.create_error is not None:
            raise self.create_error
        deposit_id = self.next_deposit_id()
        self.created.append(
            {
                "deposit_id": deposit_id,
                "plan": plan,
                "amount": amount,
                "phone": phone,
                "provider": provider,
                "country": country,
                "currency": currency,
            }
        )
        return CreatedIntent(
            deposit_id=deposit_id,
            status=self.create_status,
            provider_status=self.create_provider_status,
        )

    async def query_status(self, deposit_id: str, *, token: str) -> Optional[StatusReport]:
        self.queries.append(deposit_id)
        self.tokens.append(token)
        items = self.statuses.get(deposit_id, self.default_status)
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


def report(status: str, provider_status: Optional[str] = None, failure_reason: Optional[str] = None) -> StatusReport:
    return StatusReport(status=status, provider_status=provider_status, failure_reason=failure_reason)


def unavailable() -> GatewayUnavailable:
    return GatewayUnavailable("connection refused")


class ManualClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


async def no_sleep(_seconds: float) -> None:
    # yield so concurrent pollers interleave
    await asyncio.sleep(0)


async def parked_sleep(_seconds: float) -> None:
    # pollers never wake up; tests settle intents through callbacks
    await asyncio.Event().wait()


FAST_POLICY = PollPolicy(interval_s=3.0, max_attempts=40)


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def service(gateway) -> CheckoutService:
    return CheckoutService(gateway=gateway, policy=FAST_POLICY, sleep=parked_sleep)


@pytest.fixture
def client(service):
    from main import app

    set_checkout_service(service)
    # `with` keeps one event loop alive so poller tasks survive between requests
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    set_checkout_service(None)


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def new_session_token(prefix: str = "pytest") -> str:
    return create_access_token(f"{prefix}-{uuid.uuid4().hex[:8]}")
