import logging
import os
from dataclasses import dataclass
from urllib.parse import urlencode

import uvicorn
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from intakegenie import config
from intakegenie.errors import FinalizeError, InvalidTransition
from intakegenie.finalizer import IntakeFinalizer
from intakegenie.llm import LLMClient
from intakegenie.notify import EmailClient
from intakegenie.processor import TurnProcessor
from intakegenie.routing import CLOSED_MESSAGE, Route, route_inbound_call
from intakegenie.session_store import SessionStore
from intakegenie.states import CallStatus
from intakegenie.store import CallRecord, CallStore, InMemoryCallStore, SupabaseCallStore, utcnow
from intakegenie.transcription import TranscriptionClient
from intakegenie.tts import SpeechSynthesizer
from intakegenie.twiml import (
    ERROR_MESSAGE,
    dial_twiml,
    gather_twiml,
    goodbye_twiml,
    hangup_twiml,
    redirect_twiml,
)
from intakegenie.voice_agent import parse_event
from intakegenie.watchdog import Watchdog

load_dotenv()

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "This number is not configured. Goodbye."
TERMINAL_CALL_STATUSES = {"completed", "failed", "busy", "no-answer", "canceled"}


@dataclass
class Services:
    settings: config.Settings
    store: CallStore
    sessions: SessionStore
    processor: TurnProcessor
    finalizer: IntakeFinalizer
    watchdog: Watchdog
    synthesizer: SpeechSynthesizer | None = None


def build_services(settings: config.Settings) -> Services:
    if settings.supabase_url and settings.supabase_service_key:
        store = SupabaseCallStore(settings.supabase_url, settings.supabase_service_key)
    else:
        logger.warning("SUPABASE_URL not set, using in-memory call store")
        store = InMemoryCallStore()

    llm = LLMClient(settings.openai_api_key, model=settings.llm_model)
    synthesizer = None
    if settings.deepgram_api_key:
        synthesizer = SpeechSynthesizer(api_key=settings.deepgram_api_key, base_url=settings.app_base_url)
    transcriber = None
    if settings.twilio_account_sid and settings.twilio_auth_token and settings.deepgram_api_key:
        transcriber = TranscriptionClient(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            deepgram_api_key=settings.deepgram_api_key,
        )
    email = None
    if settings.resend_api_key:
        email = EmailClient(api_key=settings.resend_api_key, from_address=settings.resend_from_address)

    finalizer = IntakeFinalizer(store, llm=llm, transcriber=transcriber, email=email)
    return Services(
        settings=settings,
        store=store,
        sessions=SessionStore(),
        processor=TurnProcessor(llm, synthesizer=synthesizer),
        finalizer=finalizer,
        watchdog=Watchdog(store, finalizer, email=email),
        synthesizer=synthesizer,
    )


def _xml(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


def _url(services: Services, path: str, **params) -> str:
    query = urlencode({k: v for k, v in params.items() if v})
    return f"{services.settings.app_base_url}{path}" + (f"?{query}" if query else "")


async def _finalize_in_background(finalizer: IntakeFinalizer, call_id: str, **kwargs) -> None:
    try:
        await finalizer.finalize(call_id, **kwargs)
    except FinalizeError as e:
        # record is already marked error
        logger.error("background finalize of %s failed: %s", call_id, e)


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(title="IntakeGenie")
    app.state.services = services or build_services(config.load_settings())

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/twilio/voice")
    async def twilio_voice(request: Request):
        """Inbound call: create the call record and decide who answers."""
        svc: Services = request.app.state.services
        form = await request.form()
        call_sid = form.get("CallSid", "")
        to_number = form.get("To", "")
        from_number = form.get("From", "")

        firm = await svc.store.find_firm_by_number(to_number)
        if firm is None and svc.settings.default_firm_id:
            firm = await svc.store.get_firm(svc.settings.default_firm_id)
        if firm is None:
            logger.warning("no firm for number %s", to_number)
            return _xml(goodbye_twiml(NOT_CONFIGURED_MESSAGE))

        if await svc.store.find(call_sid=call_sid) is None:
            await svc.store.create(CallRecord(
                firm_id=firm.id, call_sid=call_sid, from_number=from_number, to_number=to_number,
            ))

        route = route_inbound_call(firm)
        logger.info("[%s] inbound call for %s routed %s", call_sid, firm.id, route.value)
        if route == Route.AGENT:
            return _xml(redirect_twiml(_url(svc, "/twilio/gather", callSid=call_sid, firmId=firm.id)))
        if route == Route.FORWARD_WITH_FAILOVER:
            return _xml(dial_twiml(
                firm.forward_to_number,
                timeout=firm.failover_ring_seconds,
                action=_url(svc, "/twilio/failover", callSid=call_sid, firmId=firm.id),
            ))
        if route == Route.FORWARD:
            return _xml(dial_twiml(firm.forward_to_number))
        return _xml(goodbye_twiml(CLOSED_MESSAGE))

    @app.post("/twilio/failover")
    async def twilio_failover(request: Request):
        svc: Services = request.app.state.services
        form = await request.form()
        dial_status = (form.get("DialCallStatus") or "").lower()
        if dial_status in ("completed", "answered"):
            return _xml(hangup_twiml())
        call_sid = request.query_params.get("callSid") or form.get("CallSid", "")
        firm_id = request.query_params.get("firmId", "")
        logger.info("[%s] forward not answered (%s), handing to agent", call_sid, dial_status)
        return _xml(redirect_twiml(_url(svc, "/twilio/gather", callSid=call_sid, firmId=firm_id)))

    @app.post("/twilio/gather")
    async def twilio_gather(request: Request, background_tasks: BackgroundTasks):
        """One conversational turn."""
        svc: Services = request.app.state.services
        form = await request.form()
        call_sid = request.query_params.get("callSid") or form.get("CallSid", "")
        firm_id = request.query_params.get("firmId", "")
        speech = form.get("SpeechResult", "")

        try:
            record = await svc.store.find(call_sid=call_sid)
            lookup_id = firm_id or (record.firm_id if record else "")
            firm = await svc.store.get_firm(lookup_id) if lookup_id else None
            session = svc.sessions.get_or_create(
                call_sid,
                firm_id=firm.id if firm else firm_id,
                firm_name=firm.firm_name if firm else "",
                firm_tone=firm.ai_tone if firm else "professional",
                firm_knowledge_base=firm.ai_knowledge_base if firm else "",
                caller_number=form.get("From", ""),
            )
            result = await svc.processor.process_turn(session, speech)

            if record is not None and result.updates:
                record = await svc.finalizer.upsert_intake(record, session.snapshot)

            audio_url = None
            if svc.synthesizer is not None:
                audio_url = svc.synthesizer.audio_url(call_sid, len(session.history), result.say)

            if result.done:
                history = list(session.history)
                svc.sessions.delete(call_sid)
                if record is not None:
                    if record.status == CallStatus.IN_PROGRESS:
                        await svc.store.transition(record.id, CallStatus.TRANSCRIBING, ended_at=utcnow())
                    background_tasks.add_task(
                        _finalize_in_background, svc.finalizer, record.id, history=history,
                    )
                return _xml(goodbye_twiml(result.say, audio_url))

            svc.sessions.update(call_sid, session)
            action = _url(svc, "/twilio/gather", callSid=call_sid, firmId=session.firm_id)
            return _xml(gather_twiml(result.say, action, audio_url))
        except Exception:
            logger.exception("[%s] gather turn failed", call_sid)
            return _xml(goodbye_twiml(ERROR_MESSAGE))

    @app.post("/twilio/status")
    async def twilio_status(request: Request, background_tasks: BackgroundTasks):
        svc: Services = request.app.state.services
        form = await request.form()
        call_sid = form.get("CallSid", "")
        call_status = (form.get("CallStatus") or "").lower()
        if call_status not in TERMINAL_CALL_STATUSES:
            return Response(status_code=200)

        try:
            record = await svc.store.find(call_sid=call_sid)
            if record is None:
                return Response(status_code=200)
            if record.ended_at is None:
                record = await svc.store.update(record.id, ended_at=utcnow())
            if record.status in (CallStatus.IN_PROGRESS, CallStatus.TRANSCRIBING):
                session = svc.sessions.get(call_sid)
                history = list(session.history) if session else None
                svc.sessions.delete(call_sid)
                background_tasks.add_task(_finalize_in_background, svc.finalizer, record.id, history=history)
        except (InvalidTransition, KeyError) as e:
            logger.warning("[%s] status callback ignored: %s", call_sid, e)
        return Response(status_code=200)

    @app.post("/twilio/recording-status")
    async def twilio_recording_status(request: Request):
        svc: Services = request.app.state.services
        form = await request.form()
        record = await svc.store.find(call_sid=form.get("CallSid", ""))
        url = form.get("RecordingUrl")
        if record is not None and url:
            await svc.store.update(record.id, recording_url=url)
        return Response(status_code=200)

    @app.post("/voice-agent/webhook")
    async def voice_agent_webhook(request: Request, background_tasks: BackgroundTasks):
        svc: Services = request.app.state.services
        try:
            event = parse_event(await request.json())
            if not event.conversation_id:
                return {"ok": True}
            firm_id = event.firm_id
            if not firm_id and event.phone_number:
                firm = await svc.store.find_firm_by_number(event.phone_number)
                firm_id = firm.id if firm else ""
            record = await svc.finalizer.ensure_record(
                conversation_id=event.conversation_id,
                firm_id=firm_id or svc.settings.default_firm_id,
                from_number=event.caller_number,
                to_number=event.phone_number,
            )
            record = await svc.finalizer.upsert_intake(record, event.intake, event.transcript)
            if event.is_completion:
                background_tasks.add_task(
                    _finalize_in_background, svc.finalizer, record.id, transcript=event.transcript,
                )
        except Exception:
            logger.exception("voice-agent webhook failed")
        return {"ok": True}

    @app.post("/process-call")
    async def process_call(request: Request):
        """Manually re-drive the finalize pipeline for one call."""
        svc: Services = request.app.state.services
        body = await request.json()
        call_id = body.get("callId")
        if not call_id and body.get("callSid"):
            record = await svc.store.find(call_sid=body["callSid"])
            call_id = record.id if record else None
        if not call_id or await svc.store.get(call_id) is None:
            return JSONResponse({"error": "call not found"}, status_code=404)
        try:
            record = await svc.finalizer.finalize(call_id)
        except FinalizeError as e:
            return JSONResponse({"error": str(e)}, status_code=500)
        return {"ok": True, "callId": record.id, "status": record.status.value}

    @app.api_route("/watchdog", methods=["GET", "POST"])
    async def watchdog(request: Request):
        svc: Services = request.app.state.services
        secret = svc.settings.watchdog_secret
        if not secret or request.headers.get("Authorization") != f"Bearer {secret}":
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        report = await svc.watchdog.sweep()
        return report.to_dict()

    @app.get("/audio")
    async def audio(request: Request):
        svc: Services = request.app.state.services
        text = request.query_params.get("text", "")
        if svc.synthesizer is None or not text:
            return Response(status_code=404)
        clip = await svc.synthesizer.get_audio(text)
        if clip is None:
            return Response(status_code=404)
        return Response(content=clip, media_type="audio/mpeg")

    return app


def main():
    config.validate_config()
    settings = config.load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(create_app(build_services(settings)), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
