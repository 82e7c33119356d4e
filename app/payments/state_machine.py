


# app/payments/state_machine.py
from __future__ import annotations

from app.payments.errors import ConfirmationTimeout, InvalidTransition


IDLE = "idle"
PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
TIMED_OUT = "timed_out"

ACTIVE_STATUSES = (PENDING, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED, TIMED_OUT)

# Raw gateway code that may override an earlier failure.
STRONGEST_SUCCESS_CODE = "COMPLETED"

TIMEOUT_REASON = ConfirmationTimeout.default_message


ALLOWED = {
    IDLE: {PENDING},
    PENDING: {PROCESSING, COMPLETED, FAILED, TIMED_OUT},
    PROCESSING: {PROCESSING, COMPLETED, FAILED, TIMED_OUT},  # PROCESSING->PROCESSING refreshes provider_status
    COMPLETED: set(),
    FAILED: {COMPLETED},  # late success, only with STRONGEST_SUCCESS_CODE
    TIMED_OUT: {COMPLETED},  # same
}

_LATE_SUCCESS_FROM = (FAILED, TIMED_OUT)


def assert_transition(old: str, new: str, *, provider_status: str | None = None) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal intent transition: {old} -> {new}")
    if old in _LATE_SUCCESS_FROM and not is_strongest_success(provider_status):
        raise InvalidTransition(
            f"Illegal intent transition: {old} -> {new} requires provider status {STRONGEST_SUCCESS_CODE}"
        )


def is_strongest_success(provider_status: str | None) -> bool:
    return (provider_status or "").strip().upper() == STRONGEST_SUCCESS_CODE


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def resolve_target(current: str, reported: str) -> str | None:
    """
    Decide where a report moves an intent, or None when it must be ignored.

    - a `pending` report against `processing` keeps `processing` (no backwards move)
    - a `pending` report against `pending` counts as the gateway ack (-> processing)
    - repeated terminal reports resolve to None (replay)
    """
    if current == reported and is_terminal(current):
        return None
    if reported == PENDING and current in ACTIVE_STATUSES:
        return PROCESSING
    return reported


def map_gateway_status(status: str | None, provider_status: str | None = None) -> str | None:
    """
    Canonical status for a gateway report.

    Success on either field wins, then failure on either field, then the
    in-flight states. None means "no new information".
    """
    canonical = (status or "").strip().lower()
    raw = (provider_status or "").strip().upper()
    if canonical in (COMPLETED, "successful", "success") or raw in ("COMPLETED", "SUCCESSFUL", "SUCCESS"):
        return COMPLETED
    if canonical in (FAILED, "rejected", "cancelled", "canceled") or raw in (
        "FAILED",
        "REJECTED",
        "CANCELLED",
        "CANCELED",
        "DUPLICATE_IGNORED",
    ):
        return FAILED
    if canonical in (PROCESSING, "accepted", "submitted", "enqueued", "in_reconciliation"):
        return PROCESSING
    if raw in ("ACCEPTED", "PROCESSING", "SUBMITTED", "ENQUEUED", "IN_RECONCILIATION"):
        return PROCESSING
    if canonical == PENDING or raw == "PENDING":
        return PENDING
    return None
