import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from app.payments.errors import InvalidDepositId, InvalidTransition, UnknownIntent
from app.payments.model import StatusReport
from app.payments.store import IntentStore
from tests.conftest import ManualClock


def _create(store: IntentStore, deposit_id: str = "D1", session_id: str = "S1"):
    return asyncio.run(
        store.create(
            deposit_id=deposit_id,
            session_id=session_id,
            plan="pro",
            amount=Decimal("2"),
            phone="+243990000001",
            provider="vodacom",
            country="COD",
            currency="CDF",
        )
    )


def _apply(store: IntentStore, deposit_id: str, status: str, provider_status=None, failure_reason=None):
    return asyncio.run(
        store.apply(
            deposit_id,
            StatusReport(status=status, provider_status=provider_status, failure_reason=failure_reason),
        )
    )


def test_create_starts_pending():
    store = IntentStore()
    intent = _create(store)
    assert intent.status == "pending"
    assert intent.reference is None
    assert store.latest_for_session("S1") == intent
    assert "D1" in store and len(store) == 1


def test_create_rejects_empty_and_duplicate_ids():
    store = IntentStore()
    with pytest.raises(InvalidDepositId):
        _create(store, deposit_id="  ")
    _create(store)
    with pytest.raises(InvalidDepositId):
        _create(store, session_id="S2")


def test_create_rejects_second_active_intent_for_session():
    store = IntentStore()
    _create(store)
    with pytest.raises(InvalidTransition):
        _create(store, deposit_id="D2")


def test_failed_intent_is_superseded_by_new_attempt():
    store = IntentStore()
    _create(store)
    _apply(store, "D1", "failed", "FAILED")
    _create(store, deposit_id="D2")
    assert store.get("D1") is None
    assert store.latest_for_session("S1").deposit_id == "D2"
    assert store.deposit_ids_for_session("S1") == ["D2"]


def test_completion_sets_reference_and_paid_at():
    clock = ManualClock()
    store = IntentStore(clock=clock)
    _create(store)
    clock.advance(seconds=5)
    result = _apply(store, "D1", "completed", "COMPLETED")
    assert result.applied and result.just_completed
    assert result.intent.reference == "D1"
    assert result.intent.paid_at == clock.now
    assert result.intent.updated_at == clock.now


def test_terminal_replay_is_a_no_op():
    clock = ManualClock()
    store = IntentStore(clock=clock)
    _create(store)
    first = _apply(store, "D1", "completed", "COMPLETED")
    clock.advance(seconds=30)
    replay = _apply(store, "D1", "completed", "COMPLETED")
    assert replay.applied is False
    assert replay.reason == "REPLAY"
    assert replay.just_completed is False
    assert store.get("D1") == first.intent


def test_completed_is_never_downgraded():
    store = IntentStore()
    _create(store)
    _apply(store, "D1", "completed", "COMPLETED")
    result = _apply(store, "D1", "failed", "FAILED", "late failure")
    assert result.applied is False
    assert store.get("D1").status == "completed"
    assert store.get("D1").failure_reason is None


def test_stale_pending_does_not_regress_processing():
    store = IntentStore()
    _create(store)
    _apply(store, "D1", "processing", "SUBMITTED")
    result = _apply(store, "D1", "pending", "PENDING")
    assert store.get("D1").status == "processing"
    assert result.intent.provider_status == "PENDING"


def test_identical_processing_report_leaves_record_untouched():
    clock = ManualClock()
    store = IntentStore(clock=clock)
    _create(store)
    first = _apply(store, "D1", "processing", "SUBMITTED")
    clock.advance(seconds=3)
    again = _apply(store, "D1", "processing", "SUBMITTED")
    assert again.applied is False and again.reason == "NO_CHANGE"
    assert store.get("D1").updated_at == first.intent.updated_at


def test_late_success_requires_completed_code():
    store = IntentStore()
    _create(store)
    _apply(store, "D1", "failed", "FAILED", "Insufficient balance")

    weak = _apply(store, "D1", "completed", "SUCCESSFUL")
    assert weak.applied is False
    assert store.get("D1").status == "failed"

    strong = _apply(store, "D1", "completed", "COMPLETED")
    assert strong.applied and strong.just_completed
    assert strong.intent.failure_reason is None
    assert strong.intent.reference == "D1"


def test_failure_reason_defaults_when_missing():
    store = IntentStore()
    _create(store)
    result = _apply(store, "D1", "failed", "FAILED")
    assert result.intent.failure_reason == "Payment was not approved. Please try again."


def test_updated_at_never_moves_backwards():
    clock = ManualClock()
    store = IntentStore(clock=clock)
    created = _create(store)
    clock.advance(seconds=-60)
    result = _apply(store, "D1", "processing", "SUBMITTED")
    assert result.intent.updated_at == created.updated_at


def test_record_attempt_counts_without_touching_updated_at():
    clock = ManualClock()
    store = IntentStore(clock=clock)
    created = _create(store)
    clock.advance(seconds=3)
    intent = asyncio.run(store.record_attempt("D1"))
    assert intent.attempts == 1
    assert intent.updated_at == created.updated_at


def test_expire_only_touches_active_intents():
    store = IntentStore()
    _create(store)
    result = asyncio.run(store.expire("D1"))
    assert result.applied
    assert result.intent.status == "timed_out"
    assert result.intent.failure_reason == "confirmation timed out"

    again = asyncio.run(store.expire("D1"))
    assert again.applied is False and again.reason == "NOT_ACTIVE"


def test_apply_unknown_intent_raises():
    store = IntentStore()
    with pytest.raises(UnknownIntent):
        _apply(store, "nope", "completed", "COMPLETED")


def test_purge_terminal_respects_retention():
    clock = ManualClock()
    store = IntentStore(clock=clock)
    _create(store, "D1", "S1")
    _create(store, "D2", "S2")
    _apply(store, "D1", "completed", "COMPLETED")

    clock.advance(minutes=30)
    assert store.purge_terminal(older_than=timedelta(hours=1)) == []

    clock.advance(minutes=31)
    assert store.purge_terminal(older_than=timedelta(hours=1)) == ["D1"]
    assert store.get("D1") is None
    assert store.latest_for_session("S1") is None
    # active intents are never purged
    assert store.get("D2") is not None


def test_forget_session_drops_all_its_intents():
    store = IntentStore()
    _create(store)
    assert store.forget_session("S1") == ["D1"]
    assert store.get("D1") is None
    assert store.forget_session("S1") == []


def test_record_attempt_leaves_settled_intents_alone():
    store = IntentStore()
    _create(store)
    settled = _apply(store, "D1", "completed", "COMPLETED").intent
    assert asyncio.run(store.record_attempt("D1")) == settled
    assert store.get("D1").attempts == settled.attempts
