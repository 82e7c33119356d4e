# routes/mock_gateway.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/mock/gateway", tags=["mock-gateway"])

# Outcome is picked from the last digit of the phone number:
#   0 -> rejected at creation, 9 -> FAILED, 8 -> never settles, else COMPLETED
# Settling happens on the SETTLE_AFTER-th status query.
SETTLE_AFTER = 2

# deposit_id -> record
_deposits: dict[str, dict] = {}


def reset() -> None:
    _deposits.clear()


def _outcome_for(phone: str) -> str:
    last = (phone or "").strip()[-1:]
    if last == "9":
        return "FAILED"
    if last == "8":
        return "SUBMITTED"
    return "COMPLETED"


@router.post("/api/payments/create")
async def create_payment(req: Request):
    try:
        payload = await req.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    if not req.headers.get("authorization"):
        return JSONResponse(status_code=401, content={"message": "Authentication required"})

    phone = str(payload.get("phone") or "")
    if phone.endswith("0"):
        return JSONResponse(
            status_code=400,
            content={"details": {"errorMessage": "Mobile money account not found"}},
        )

    deposit_id = str(uuid.uuid4())
    _deposits[deposit_id] = {
        "outcome": _outcome_for(phone),
        "queries": 0,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "request": payload,
    }
    return {"depositId": deposit_id, "status": "ACCEPTED", "pawapayStatus": "ACCEPTED"}


@router.get("/api/payments/status/{deposit_id}")
async def payment_status(deposit_id: str):
    record = _deposits.get(deposit_id)
    if record is None:
        return JSONResponse(status_code=404, content={"error": "Deposit not found"})

    record["queries"] += 1
    if record["queries"] < SETTLE_AFTER or record["outcome"] == "SUBMITTED":
        return {"depositId": deposit_id, "status": "processing", "pawapayStatus": "SUBMITTED"}

    if record["outcome"] == "FAILED":
        return {
            "depositId": deposit_id,
            "status": "failed",
            "pawapayStatus": "FAILED",
            "failureReason": {
                "failureCode": "PAYER_LIMIT_REACHED",
                "failureMessage": "The customer reached a transaction limit",
            },
        }
    return {"depositId": deposit_id, "status": "completed", "pawapayStatus": "COMPLETED"}
