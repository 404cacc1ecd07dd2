from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock

from intakegenie.errors import EmailDeliveryError, FinalizeError
from intakegenie.finalizer import IntakeFinalizer
from intakegenie.states import CallStatus
from intakegenie.store import CallRecord, InMemoryCallStore
from intakegenie.watchdog import STUCK_MESSAGE, Watchdog

T0 = datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc)

INTAKE = {"full_name": "Jane Smith", "callback_number": "+15559876543", "reason_for_call": "Car accident"}


async def no_sleep(seconds):
    return None


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(firm, clock):
    return InMemoryCallStore(firms=[firm], clock=clock)


@pytest.fixture
def email():
    client = AsyncMock()
    client.send.return_value = "em_1"
    return client


@pytest.fixture
def finalizer(store, email):
    return IntakeFinalizer(store, email=email, sleep=no_sleep)


async def _stuck(store, status=CallStatus.SUMMARIZING):
    return await store.create(CallRecord(firm_id="firm_1", status=status, intake=dict(INTAKE)))


class TestSweep:
    @pytest.mark.asyncio
    async def test_redrives_stuck_call_to_emailed(self, store, finalizer, email, clock):
        record = await _stuck(store)
        watchdog = Watchdog(store, finalizer, email=email, clock=lambda: T0 + timedelta(minutes=6))

        report = await watchdog.sweep()

        assert report.count == 1
        assert report.retriggered == 1
        assert report.results == [{"call_id": record.id, "status": "retriggered"}]
        assert (await store.get(record.id)).status == CallStatus.EMAILED

    @pytest.mark.asyncio
    async def test_recent_calls_left_alone(self, store, finalizer, email):
        await _stuck(store, CallStatus.TRANSCRIBING)
        watchdog = Watchdog(store, finalizer, email=email, clock=lambda: T0 + timedelta(minutes=2))
        report = await watchdog.sweep()
        assert report.count == 0
        email.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_terminal_calls_ignored(self, store, finalizer, email):
        await _stuck(store, CallStatus.EMAILED)
        await _stuck(store, CallStatus.ERROR)
        watchdog = Watchdog(store, finalizer, email=email, clock=lambda: T0 + timedelta(hours=1))
        assert (await watchdog.sweep()).count == 0

    @pytest.mark.asyncio
    async def test_failed_redrive_marks_failed(self, store, email):
        record = await _stuck(store)
        finalizer = AsyncMock()
        finalizer.finalize.side_effect = FinalizeError("boom")
        watchdog = Watchdog(store, finalizer, email=email, clock=lambda: T0 + timedelta(minutes=6))

        report = await watchdog.sweep()

        assert report.marked_failed == 1
        record = await store.get(record.id)
        assert record.status == CallStatus.ERROR
        assert record.error_message == STUCK_MESSAGE
        message = email.send.await_args.args[0]
        assert message.subject == "[STUCK CALL] Intake Call - Jane Smith"
        assert message.to == ["intake@smithjones.example"]

    @pytest.mark.asyncio
    async def test_email_failure_during_redrive(self, store, email):
        email.send.side_effect = EmailDeliveryError("down")
        finalizer = IntakeFinalizer(store, email=email, sleep=no_sleep)
        record = await _stuck(store)
        watchdog = Watchdog(store, finalizer, email=email, clock=lambda: T0 + timedelta(minutes=6))

        report = await watchdog.sweep()

        assert report.results[0]["status"] == "marked_failed"
        record = await store.get(record.id)
        assert record.status == CallStatus.ERROR
        assert record.error_message == STUCK_MESSAGE

    @pytest.mark.asyncio
    async def test_in_flight_elsewhere(self, store, finalizer, email):
        record = await _stuck(store)
        await store.claim(record.id, "other-worker", 120)
        watchdog = Watchdog(store, finalizer, email=email, clock=lambda: T0 + timedelta(minutes=6))

        report = await watchdog.sweep()

        assert report.results == [{"call_id": record.id, "status": "in_flight"}]
        assert report.retriggered == 0
        assert report.marked_failed == 0
        email.send.assert_not_awaited()

    def test_report_dict(self):
        from intakegenie.watchdog import WatchdogReport
        assert WatchdogReport(count=2, retriggered=1, marked_failed=1).to_dict() == {
            "count": 2, "retriggered": 1, "marked_failed": 1, "results": [],
        }
