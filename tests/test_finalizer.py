import asyncio
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from intakegenie.errors import EmailDeliveryError, FinalizeError, LLMError, TranscriptUnavailable
from intakegenie.finalizer import IntakeFinalizer, classify_urgency
from intakegenie.states import CallStatus, Urgency
from intakegenie.store import CallRecord

INTAKE = {
    "full_name": "Jane Smith",
    "callback_number": "+15559876543",
    "reason_for_call": "Car accident",
}

SUMMARY = {
    "title": "Car Accident Intake - Jane Smith",
    "summary_bullets": ["Rear-ended last Tuesday"],
    "key_facts": {},
    "action_items": ["Call back"],
    "urgency_level": "normal",
    "follow_up_recommendation": "Call within a day.",
}

HISTORY = [
    {"role": "agent", "content": "What's your full name?"},
    {"role": "caller", "content": "Jane Smith"},
]


async def no_sleep(seconds):
    return None


@pytest.fixture
def llm():
    client = AsyncMock()
    client.complete_json.return_value = dict(SUMMARY)
    return client


@pytest.fixture
def email():
    client = AsyncMock()
    client.send.return_value = "em_1"
    return client


@pytest.fixture
def finalizer(store, llm, email):
    return IntakeFinalizer(store, llm=llm, email=email, transcript_delays=(0, 0, 0), sleep=no_sleep)


async def _create(store, **kwargs):
    kwargs.setdefault("firm_id", "firm_1")
    kwargs.setdefault("call_sid", "CA1")
    kwargs.setdefault("intake", dict(INTAKE))
    return await store.create(CallRecord(**kwargs))


class TestClassifyUrgency:
    def test_levels(self):
        assert classify_urgency({}) == Urgency.NORMAL
        assert classify_urgency({"urgency_level": "high"}) == Urgency.HIGH
        assert classify_urgency({"urgency_level": "high", "emergency_redirected": True}) == Urgency.EMERGENCY_REDIRECTED


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_reaches_emailed(self, store, finalizer, email):
        record = await _create(store)
        result = await finalizer.finalize(record.id, history=HISTORY)

        assert result.status == CallStatus.EMAILED
        assert result.emailed_at is not None
        assert result.transcript_text == "Agent: What's your full name?\nCaller: Jane Smith"
        assert result.summary["title"] == "Car Accident Intake - Jane Smith"
        assert result.call_category == "Car Accident Intake"
        assert result.ended_at is not None
        message = email.send.await_args.args[0]
        assert message.to == ["intake@smithjones.example"]
        assert message.subject.startswith("New Intake Call: Jane Smith")

    @pytest.mark.asyncio
    async def test_explicit_transcript_wins(self, store, finalizer):
        record = await _create(store)
        result = await finalizer.finalize(record.id, transcript="Agent: hi\nUser: hello", history=HISTORY)
        assert result.transcript_text == "Agent: hi\nUser: hello"

    @pytest.mark.asyncio
    async def test_emergency_urgency_kept(self, store, finalizer, email):
        record = await _create(store, intake={**INTAKE, "emergency_redirected": True})
        result = await finalizer.finalize(record.id)
        assert result.summary["urgency_level"] == "emergency_redirected"
        assert email.send.await_args.args[0].subject.startswith("[EMERGENCY]")


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_run_sends_nothing(self, store, finalizer, email):
        record = await _create(store)
        await finalizer.finalize(record.id)
        await finalizer.finalize(record.id)
        assert email.send.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_runs_send_once(self, store, finalizer, email):
        record = await _create(store)
        await asyncio.gather(finalizer.finalize(record.id), finalizer.finalize(record.id))
        assert email.send.await_count == 1
        assert (await store.get(record.id)).status == CallStatus.EMAILED

    @pytest.mark.asyncio
    async def test_claim_held_elsewhere(self, store, finalizer, email):
        record = await _create(store)
        await store.claim(record.id, "other-worker", 120)
        result = await finalizer.finalize(record.id)
        assert result.status == CallStatus.IN_PROGRESS
        email.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_releases_claim(self, store, finalizer):
        record = await _create(store)
        await finalizer.finalize(record.id)
        assert (await store.get(record.id)).claimed_by is None

    @pytest.mark.asyncio
    async def test_existing_summary_reused(self, store, finalizer, llm):
        record = await _create(store, status=CallStatus.SUMMARIZING, summary=dict(SUMMARY))
        result = await finalizer.finalize(record.id)
        assert result.status == CallStatus.EMAILED
        llm.complete_json.assert_not_awaited()


class TestDegradation:
    @pytest.mark.asyncio
    async def test_summary_failure_uses_fallback(self, store, finalizer, llm):
        llm.complete_json.side_effect = LLMError("down")
        record = await _create(store)
        result = await finalizer.finalize(record.id)
        assert result.status == CallStatus.EMAILED
        assert result.summary["title"] == "Intake Call - Jane Smith"
        assert result.call_category == "Intake Call"

    @pytest.mark.asyncio
    async def test_no_llm_uses_fallback(self, store, email):
        finalizer = IntakeFinalizer(store, email=email, sleep=no_sleep)
        record = await _create(store)
        result = await finalizer.finalize(record.id)
        assert result.summary["action_items"] == ["Review intake details", "Follow up with caller"]

    @pytest.mark.asyncio
    async def test_rich_email_fails_basic_sent(self, store, finalizer, email):
        email.send.side_effect = [EmailDeliveryError("422"), "em_2"]
        record = await _create(store)
        result = await finalizer.finalize(record.id)
        assert result.status == CallStatus.EMAILED
        assert email.send.await_count == 2
        basic = email.send.await_args_list[1].args[0]
        assert "<h2>Transcript</h2>" in basic.html

    @pytest.mark.asyncio
    async def test_both_emails_fail(self, store, finalizer, email):
        email.send.side_effect = EmailDeliveryError("422")
        record = await _create(store)
        result = await finalizer.finalize(record.id)
        assert result.status == CallStatus.ERROR
        assert result.error_message.startswith("Email failed after retries and fallback:")
        assert result.emailed_at is None
        assert result.summary is not None

    @pytest.mark.asyncio
    async def test_no_recipients_marks_emailed(self, store, finalizer, email, firm):
        firm.notify_emails = []
        record = await _create(store)
        result = await finalizer.finalize(record.id)
        assert result.status == CallStatus.EMAILED
        email.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_error(self, store, finalizer, email):
        email.send.side_effect = RuntimeError("kaboom")
        record = await _create(store)
        with pytest.raises(FinalizeError):
            await finalizer.finalize(record.id)
        record = await store.get(record.id)
        assert record.status == CallStatus.ERROR
        assert record.error_message == "Finalize failed: kaboom"
        assert record.claimed_by is None

    @pytest.mark.asyncio
    async def test_missing_call(self, finalizer):
        with pytest.raises(FinalizeError, match="not found"):
            await finalizer.finalize("nope")


class TestRedrive:
    @pytest.mark.asyncio
    async def test_error_record_reaches_emailed(self, store, finalizer):
        record = await _create(store, status=CallStatus.ERROR, error_message="Email failed")
        result = await finalizer.finalize(record.id)
        assert result.status == CallStatus.EMAILED
        assert result.error_message is None

    @pytest.mark.asyncio
    async def test_ended_at_clamped(self, store, finalizer):
        record = await _create(store)
        record.ended_at = record.started_at - timedelta(minutes=1)
        result = await finalizer.finalize(record.id)
        assert result.ended_at == result.started_at


class TestTranscription:
    @pytest.mark.asyncio
    async def test_retries_until_recording_ready(self, store, llm, email):
        transcriber = AsyncMock()
        transcriber.fetch_recording_url.return_value = "https://api.twilio.com/rec/RE1.mp3"
        transcriber.transcribe_recording.side_effect = [TranscriptUnavailable("not yet"), "I was rear-ended."]
        finalizer = IntakeFinalizer(
            store, llm=llm, email=email, transcriber=transcriber,
            transcript_delays=(0, 0, 0), sleep=no_sleep,
        )
        record = await _create(store)
        result = await finalizer.finalize(record.id, history=HISTORY)

        assert result.transcript_text == "I was rear-ended."
        assert result.recording_url == "https://api.twilio.com/rec/RE1.mp3"
        assert transcriber.transcribe_recording.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_and_uses_history(self, store, llm, email):
        transcriber = AsyncMock()
        transcriber.fetch_recording_url.side_effect = TranscriptUnavailable("no recording")
        finalizer = IntakeFinalizer(
            store, llm=llm, email=email, transcriber=transcriber,
            transcript_delays=(0, 0, 0), sleep=no_sleep,
        )
        record = await _create(store)
        result = await finalizer.finalize(record.id, history=HISTORY)
        assert transcriber.fetch_recording_url.await_count == 3
        assert result.transcript_text.startswith("Agent: ")
        assert result.status == CallStatus.EMAILED

    @pytest.mark.asyncio
    async def test_no_transcript_at_all(self, store, finalizer):
        record = await _create(store)
        result = await finalizer.finalize(record.id)
        assert result.transcript_text is None
        assert result.status == CallStatus.EMAILED


class TestUpsertIntake:
    @pytest.mark.asyncio
    async def test_never_regresses(self, store, finalizer):
        record = await _create(store)
        record = await finalizer.upsert_intake(record, {"full_name": "unknown", "urgency_level": "high"})
        assert record.intake["full_name"] == "Jane Smith"
        assert record.intake["urgency_level"] == "high"
        assert record.urgency == Urgency.HIGH

    @pytest.mark.asyncio
    async def test_transcript_only_when_missing(self, store, finalizer):
        record = await _create(store, transcript_text="first")
        record = await finalizer.upsert_intake(record, {}, transcript="second")
        assert record.transcript_text == "first"

    @pytest.mark.asyncio
    async def test_ensure_record_creates_once(self, store, finalizer):
        first = await finalizer.ensure_record(conversation_id="conv_1", firm_id="firm_1")
        second = await finalizer.ensure_record(conversation_id="conv_1", firm_id="firm_1")
        assert first.id == second.id
