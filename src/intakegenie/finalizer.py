import asyncio
import logging
import uuid

import httpx

from intakegenie.errors import (
    EmailDeliveryError,
    FinalizeError,
    InvalidTransition,
    LLMError,
    TranscriptUnavailable,
)
from intakegenie.llm import LLMClient
from intakegenie.notify import EmailClient, render_basic_email, render_intake_email
from intakegenie.retry import TRANSCRIPT_RETRY_DELAYS, retry_async
from intakegenie.session import merge_updates
from intakegenie.states import CallStatus, Urgency
from intakegenie.store import CallRecord, CallStore, utcnow
from intakegenie.summary import extract_category, fallback_summary, generate_summary
from intakegenie.transcript import to_plain_text
from intakegenie.transcription import TranscriptionClient

logger = logging.getLogger(__name__)

FINALIZE_LEASE_SECONDS = 120


def classify_urgency(intake: dict) -> Urgency:
    if intake.get("emergency_redirected") is True:
        return Urgency.EMERGENCY_REDIRECTED
    if intake.get("urgency_level") == "high":
        return Urgency.HIGH
    return Urgency.NORMAL


class IntakeFinalizer:
    """Post-call pipeline: transcript -> summary -> notification email.

    Safe to invoke any number of times for the same call, concurrently or
    not. Each run takes a per-call claim lease (a concurrent run returns
    immediately), re-reads the record, and every stage skips work whose
    output is already persisted.
    """

    def __init__(
        self,
        store: CallStore,
        *,
        llm: LLMClient | None = None,
        transcriber: TranscriptionClient | None = None,
        email: EmailClient | None = None,
        transcript_delays=TRANSCRIPT_RETRY_DELAYS,
        lease_seconds: float = FINALIZE_LEASE_SECONDS,
        sleep=asyncio.sleep,
    ):
        self.store = store
        self.llm = llm
        self.transcriber = transcriber
        self.email = email
        self.transcript_delays = transcript_delays
        self.lease_seconds = lease_seconds
        self._sleep = sleep

    async def ensure_record(
        self,
        *,
        call_sid: str | None = None,
        conversation_id: str | None = None,
        firm_id: str = "",
        from_number: str = "",
        to_number: str = "",
    ) -> CallRecord:
        """Find the call's record, creating it if the call-start event was missed."""
        record = await self.store.find(call_sid=call_sid, conversation_id=conversation_id)
        if record is not None:
            return record
        logger.info("no record for call %s, creating one", call_sid or conversation_id)
        return await self.store.create(CallRecord(
            firm_id=firm_id,
            call_sid=call_sid,
            conversation_id=conversation_id,
            from_number=from_number,
            to_number=to_number,
        ))

    async def upsert_intake(self, record: CallRecord, intake: dict, transcript: str | None = None) -> CallRecord:
        """Merge the latest structured intake into the record without losing fields."""
        merged = dict(record.intake)
        merge_updates(merged, intake or {})
        changes = {"intake": merged, "urgency": classify_urgency(merged)}
        if transcript and not record.transcript_text:
            changes["transcript_text"] = transcript
        return await self.store.update(record.id, **changes)

    async def finalize(self, call_id: str, *, transcript: str | None = None, history: list | None = None) -> CallRecord:
        record = await self.store.get(call_id)
        if record is None:
            raise FinalizeError(f"call {call_id} not found")
        if record.status == CallStatus.EMAILED:
            logger.info("call %s already emailed, skipping finalize", call_id)
            return record

        owner = uuid.uuid4().hex
        if not await self.store.claim(call_id, owner, self.lease_seconds):
            logger.info("call %s finalize already running elsewhere, skipping", call_id)
            return record

        try:
            return await self._run(call_id, transcript, history)
        except InvalidTransition as e:
            logger.warning("call %s changed status underneath finalize: %s", call_id, e)
            return await self.store.get(call_id)
        except Exception as e:
            logger.error("call %s finalize failed: %s", call_id, e)
            await self._mark_error(call_id, f"Finalize failed: {e}")
            raise FinalizeError(str(e)) from e
        finally:
            await self.store.release(call_id, owner)

    async def _run(self, call_id: str, transcript: str | None, history: list | None) -> CallRecord:
        record = await self.store.get(call_id)
        if record.status == CallStatus.EMAILED:
            return record

        if record.status in (CallStatus.IN_PROGRESS, CallStatus.ERROR):
            record = await self.store.transition(
                call_id, CallStatus.TRANSCRIBING, error_message=None, ended_at=self._ended_at(record),
            )

        if record.status == CallStatus.TRANSCRIBING:
            changes = {}
            if not record.transcript_text:
                text = transcript or await self._fetch_transcript(record)
                if not text and history:
                    text = to_plain_text(history)
                if text:
                    changes["transcript_text"] = text
                else:
                    logger.warning("call %s has no transcript, continuing with intake only", call_id)
            record = await self.store.transition(call_id, CallStatus.SUMMARIZING, **changes)

        if record.status == CallStatus.SUMMARIZING:
            if record.summary is None:
                summary = await self._summarize(record)
                record = await self.store.update(
                    call_id, summary=summary, call_category=extract_category(summary.get("title")),
                )
            return await self._notify(record)

        return record

    def _ended_at(self, record: CallRecord):
        ended = record.ended_at or utcnow()
        if ended < record.started_at:
            logger.warning("call %s ended_at precedes started_at, clamping", record.id)
            ended = record.started_at
        return ended

    async def _fetch_transcript(self, record: CallRecord) -> str | None:
        if self.transcriber is None or not (record.call_sid or record.recording_url):
            return None

        async def attempt() -> str:
            url = record.recording_url or await self.transcriber.fetch_recording_url(record.call_sid)
            if url != record.recording_url:
                await self.store.update(record.id, recording_url=url)
                record.recording_url = url
            return await self.transcriber.transcribe_recording(url)

        try:
            return await retry_async(
                attempt,
                delays=self.transcript_delays,
                wait_first=True,
                retry_on=(TranscriptUnavailable, httpx.HTTPError),
                label=f"transcript for {record.id}",
                sleep=self._sleep,
            )
        except (TranscriptUnavailable, httpx.HTTPError) as e:
            logger.warning("call %s transcript unavailable: %s", record.id, e)
            return None

    async def _summarize(self, record: CallRecord) -> dict:
        urgency = classify_urgency(record.intake).value
        if self.llm is not None:
            try:
                summary = await generate_summary(self.llm, record.transcript_text or "", record.intake)
                if record.intake.get("emergency_redirected") is True:
                    summary["urgency_level"] = urgency
                return summary
            except LLMError as e:
                logger.warning("call %s summary failed, using fallback: %s", record.id, e)
        return fallback_summary(record.intake, urgency, bool(record.transcript_text))

    async def _notify(self, record: CallRecord) -> CallRecord:
        fresh = await self.store.get(record.id)
        if fresh.emailed_at is not None or fresh.status == CallStatus.EMAILED:
            logger.info("call %s already emailed, not sending again", record.id)
            return fresh

        firm = await self.store.get_firm(record.firm_id) if record.firm_id else None
        recipients = list(firm.notify_emails) if firm else []
        if not recipients or self.email is None:
            logger.warning("call %s has no notification recipients, marking emailed", record.id)
            return await self.store.transition(record.id, CallStatus.EMAILED, emailed_at=utcnow())

        try:
            await self.email.send(render_intake_email(record, record.summary, recipients))
        except EmailDeliveryError as rich_error:
            logger.warning("call %s rich email failed, sending basic email: %s", record.id, rich_error)
            try:
                await self.email.send(render_basic_email(record, recipients))
            except EmailDeliveryError as e:
                message = f"Email failed after retries and fallback: {e}"
                logger.error("call %s %s", record.id, message)
                return await self.store.transition(record.id, CallStatus.ERROR, error_message=message)

        return await self.store.transition(record.id, CallStatus.EMAILED, emailed_at=utcnow())

    async def _mark_error(self, call_id: str, message: str) -> None:
        record = await self.store.get(call_id)
        if record is None or not record.status.can_transition_to(CallStatus.ERROR):
            return
        await self.store.transition(call_id, CallStatus.ERROR, error_message=message)
