import asyncio
from decimal import Decimal

from app.payments.store import IntentStore
from app.payments.unlock import UnlockGate
from app.providers.mobile_money.config import PollPolicy
from app.workers.reconcile_poller import ReconciliationPoller
from services.metrics import counter_value
from tests.conftest import FakeGateway, no_sleep, report, unavailable


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


def _setup(policy: PollPolicy | None = None, sleep=no_sleep):
    store = IntentStore()
    gateway = FakeGateway()
    gate = UnlockGate()
    poller = ReconciliationPoller(
        store=store,
        gateway=gateway,
        gate=gate,
        policy=policy or PollPolicy(interval_s=3.0, max_attempts=40),
        sleep=sleep,
    )
    return store, gateway, gate, poller


async def _create(store: IntentStore, deposit_id: str = "D1", session_id: str = "S1"):
    return await store.create(
        deposit_id=deposit_id,
        session_id=session_id,
        plan="pro",
        amount=Decimal("2"),
        phone="+243990000001",
        provider="vodacom",
        country="COD",
        currency="CDF",
    )


def test_happy_path_completes_and_unlocks_once():
    store, gateway, gate, poller = _setup()
    completed = []
    gate.on_completed(completed.append)
    gateway.script(
        "D1",
        report("processing", "SUBMITTED"),
        report("processing", "SUBMITTED"),
        report("completed", "COMPLETED"),
    )

    async def scenario():
        await _create(store)
        return await poller.run("D1", token="tok")

    intent = asyncio.run(scenario())
    assert intent.status == "completed"
    assert intent.reference == "D1"
    assert intent.attempts == 3
    assert len(completed) == 1
    assert gate.consume_just_completed("S1").deposit_id == "D1"
    assert gate.consume_just_completed("S1") is None
    assert gateway.tokens == ["tok", "tok", "tok"]


def test_waits_poll_interval_before_each_query():
    sleep = RecordingSleep()
    store, gateway, gate, poller = _setup(sleep=sleep)
    gateway.script("D1", report("processing", "SUBMITTED"), report("failed", "FAILED", "Declined"))

    async def scenario():
        await _create(store)
        return await poller.run("D1", token="tok")

    intent = asyncio.run(scenario())
    assert intent.status == "failed"
    assert intent.failure_reason == "Declined"
    assert sleep.calls == [3.0, 3.0]
    assert gate.has_fired("D1", "failed")
    assert gate.consume_just_completed("S1") is None


def test_times_out_after_max_attempts_without_extra_poll():
    store, gateway, gate, poller = _setup()
    gateway.default_status = [report("processing", "SUBMITTED")]
    failed = []
    gate.on_failed(failed.append)

    async def scenario():
        await _create(store)
        return await poller.run("D1", token="tok")

    intent = asyncio.run(scenario())
    assert intent.status == "timed_out"
    assert intent.failure_reason == "confirmation timed out"
    assert intent.attempts == 40
    assert len(gateway.queries) == 40
    assert [i.status for i in failed] == ["timed_out"]
    assert counter_value("payment_intent_outcomes_total", {"outcome": "timed_out"}) == 1


def test_transport_errors_and_no_info_count_as_attempts():
    store, gateway, gate, poller = _setup(policy=PollPolicy(interval_s=3.0, max_attempts=5))
    gateway.script("D1", unavailable(), None, unavailable(), report("completed", "COMPLETED"))

    async def scenario():
        await _create(store)
        return await poller.run("D1", token="tok")

    intent = asyncio.run(scenario())
    assert intent.status == "completed"
    assert intent.attempts == 4
    assert counter_value("payment_status_polls_total", {"result": "transport_error"}) == 2
    assert counter_value("payment_status_polls_total", {"result": "no_info"}) == 1


def test_transport_errors_until_budget_exhausted_time_out():
    store, gateway, gate, poller = _setup(policy=PollPolicy(interval_s=3.0, max_attempts=3))
    gateway.default_status = [unavailable()]

    async def scenario():
        await _create(store)
        return await poller.run("D1", token="tok")

    intent = asyncio.run(scenario())
    assert intent.status == "timed_out"
    assert len(gateway.queries) == 3


def test_start_is_idempotent_per_deposit():
    store, gateway, gate, poller = _setup()
    gateway.script("D1", report("processing", "SUBMITTED"), report("completed", "COMPLETED"))

    async def scenario():
        await _create(store)
        first = poller.start("D1", token="tok")
        second = poller.start("D1", token="tok")
        assert first is second
        assert poller.is_polling("D1")
        return await first

    intent = asyncio.run(scenario())
    assert intent.status == "completed"
    assert len(gateway.queries) == 2
    assert not poller.is_polling("D1")


def test_concurrent_loops_fire_a_single_completion_edge():
    store, gateway, gate, poller = _setup()
    other = ReconciliationPoller(store=store, gateway=gateway, gate=gate, sleep=no_sleep)
    completed = []
    gate.on_completed(completed.append)
    gateway.default_status = [report("completed", "COMPLETED")]

    async def scenario():
        await _create(store)
        return await asyncio.gather(
            poller.run("D1", token="tok"),
            other.run("D1", token="tok"),
        )

    results = asyncio.run(scenario())
    assert all(r.status == "completed" for r in results)
    assert len(completed) == 1
    assert counter_value("payment_intent_outcomes_total", {"outcome": "completed"}) == 1


def test_cancelled_poller_never_writes_again():
    store, gateway, gate, poller = _setup()
    gateway.default_status = [report("processing", "SUBMITTED")]

    async def scenario():
        await _create(store)
        task = poller.start("D1", token="tok")
        for _ in range(5):
            await asyncio.sleep(0)
        assert poller.cancel("D1") is True
        await asyncio.gather(task, return_exceptions=True)
        snapshot = store.get("D1")
        for _ in range(5):
            await asyncio.sleep(0)
        return task, snapshot

    task, snapshot = asyncio.run(scenario())
    assert task.cancelled()
    assert store.get("D1") == snapshot
    assert snapshot.status == "processing"


def test_discarded_intent_stops_the_loop():
    store, gateway, gate, poller = _setup()
    gateway.default_status = [report("processing", "SUBMITTED")]

    async def scenario():
        await _create(store)
        task = poller.start("D1", token="tok")
        await asyncio.sleep(0)
        store.forget_session("S1")
        return await task

    assert asyncio.run(scenario()) is None


def test_callback_result_settles_and_stops_polling():
    store, gateway, gate, poller = _setup()
    gateway.default_status = [report("processing", "SUBMITTED")]

    async def scenario():
        await _create(store)
        task = poller.start("D1", token="tok")
        await asyncio.sleep(0)
        result = await store.apply("D1", report("completed", "COMPLETED"))
        poller.on_result(result)
        await asyncio.gather(task, return_exceptions=True)
        return task

    task = asyncio.run(scenario())
    assert task.done()
    assert store.get("D1").status == "completed"
    assert gate.has_fired("D1", "completed")


def test_shutdown_cancels_running_tasks():
    store, gateway, gate, poller = _setup()
    gateway.default_status = [report("processing", "SUBMITTED")]

    async def scenario():
        await _create(store)
        task = poller.start("D1", token="tok")
        await asyncio.sleep(0)
        await poller.shutdown()
        return task

    task = asyncio.run(scenario())
    assert task.cancelled()
