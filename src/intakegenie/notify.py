import asyncio
import html
import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from intakegenie.circuit_breaker import CircuitBreaker
from intakegenie.errors import EmailDeliveryError
from intakegenie.retry import EMAIL_RETRY_DELAYS, retry_async
from intakegenie.store import CallRecord

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
DEFAULT_FROM_ADDRESS = "IntakeGenie <onboarding@resend.dev>"


@dataclass
class EmailMessage:
    to: list
    subject: str
    html: str


class EmailClient:
    """Resend HTTP client.

    Retries with a 1s/2s backoff and raises EmailDeliveryError once every
    attempt has failed, so the finalizer can switch templates.
    """

    def __init__(
        self,
        *,
        api_key: str,
        from_address: str = DEFAULT_FROM_ADDRESS,
        timeout: float = 15.0,
        delays=EMAIL_RETRY_DELAYS,
        sleep=asyncio.sleep,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.from_address = from_address or DEFAULT_FROM_ADDRESS
        self.timeout = timeout
        self.delays = delays
        self._sleep = sleep
        self._client = client
        self._circuit = CircuitBreaker(failure_threshold=5, cooldown_seconds=60.0, label="Resend")

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def _post(self, payload: dict) -> dict:
        if self._client is not None:
            resp = await self._client.post(RESEND_URL, json=payload, headers=self._headers(), timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(RESEND_URL, json=payload, headers=self._headers())
        resp.raise_for_status()
        # accepted for delivery even when the body is not the expected JSON
        try:
            data = resp.json()
        except ValueError:
            logger.warning("Resend returned %d with a non-JSON body", resp.status_code)
            return {}
        return data if isinstance(data, dict) else {}

    async def send(self, message: EmailMessage) -> str:
        """Send and return the provider message id."""
        if not self._circuit.should_try():
            raise EmailDeliveryError("email circuit breaker open")
        payload = {
            "from": self.from_address,
            "to": list(message.to),
            "subject": message.subject,
            "html": message.html,
        }
        try:
            data = await retry_async(
                lambda: self._post(payload),
                delays=self.delays,
                retry_on=(httpx.HTTPError,),
                label="Resend email",
                sleep=self._sleep,
            )
        except httpx.HTTPError as e:
            self._circuit.record_failure()
            raise EmailDeliveryError(str(e)) from e
        self._circuit.record_success()
        logger.info("email sent to %d recipient(s): %s", len(message.to), message.subject)
        return data.get("id", "")


def _e(value) -> str:
    return html.escape("" if value is None else str(value))


def _caller_name(record: CallRecord) -> str:
    name = record.intake.get("full_name")
    return name if name and name != "unknown" else "Unknown Caller"


def _caller_phone(record: CallRecord) -> str:
    phone = record.intake.get("callback_number")
    if phone and phone != "unknown":
        return phone
    return record.from_number or "Not provided"


def _date_label(record: CallRecord) -> str:
    started: datetime = record.started_at
    return started.strftime("%b %d, %Y %I:%M %p UTC") if started else ""


def _list(items) -> str:
    return "".join(f"<li>{_e(item)}</li>" for item in items or [])


def _caller_details(record: CallRecord) -> str:
    email = record.intake.get("email")
    rows = [
        ("Name", _caller_name(record)),
        ("Phone", _caller_phone(record)),
        ("Email", email if email and email != "unknown" else "Not provided"),
        ("Call time", _date_label(record)),
    ]
    body = "".join(f"<tr><td><strong>{_e(k)}</strong></td><td>{_e(v)}</td></tr>" for k, v in rows)
    return f"<h2>Caller Details</h2><table>{body}</table>"


def _recording(record: CallRecord) -> str:
    if not record.recording_url:
        return ""
    return f'<p><a href="{_e(record.recording_url)}">Listen to recording</a></p>'


def subject_for(record: CallRecord, urgency: str, prefix: str = "New Intake Call") -> str:
    subject = f"{prefix}: {_caller_name(record)} — {_date_label(record)}"
    if urgency == "emergency_redirected":
        return f"[EMERGENCY] {subject}"
    if urgency == "high":
        return f"[HIGH URGENCY] {subject}"
    return subject


def render_intake_email(record: CallRecord, summary: dict, recipients: list) -> EmailMessage:
    urgency = summary.get("urgency_level") or record.urgency.value
    facts = summary.get("key_facts") or {}
    fact_rows = "".join(
        f"<li><strong>{_e(k.replace('_', ' ').title())}:</strong> {_e(v)}</li>" for k, v in facts.items()
    )
    body = (
        f"<h1>{_e(summary.get('title', 'Intake Call'))}</h1>"
        f"{_caller_details(record)}"
        f"<h2>Summary</h2><ul>{_list(summary.get('summary_bullets'))}</ul>"
        f"<h2>Key Facts</h2><ul>{fact_rows}</ul>"
        f"<h2>Action Items</h2><ul>{_list(summary.get('action_items'))}</ul>"
        f"<h2>Follow-up Recommendation</h2><p>{_e(summary.get('follow_up_recommendation'))}</p>"
        f"{_recording(record)}"
    )
    return EmailMessage(to=list(recipients), subject=subject_for(record, urgency), html=body)


def render_basic_email(record: CallRecord, recipients: list) -> EmailMessage:
    transcript = record.transcript_text or "No transcript available."
    body = (
        f"<h1>Intake Call - {_e(_caller_name(record))}</h1>"
        f"{_caller_details(record)}"
        f"<h2>Reason for Call</h2><p>{_e(record.intake.get('reason_for_call') or 'Not provided')}</p>"
        f"<h2>Transcript</h2><pre>{_e(transcript)}</pre>"
        f"{_recording(record)}"
    )
    return EmailMessage(to=list(recipients), subject=subject_for(record, record.urgency.value), html=body)


def render_stuck_email(record: CallRecord, recipients: list) -> EmailMessage:
    body = (
        f"<h1>Intake Call - {_e(_caller_name(record))}</h1>"
        "<p>This call could not be fully processed automatically. Please review it manually.</p>"
        f"{_caller_details(record)}"
        f"<h2>Reason for Call</h2><p>{_e(record.intake.get('reason_for_call') or 'Not provided')}</p>"
        f"{_recording(record)}"
    )
    return EmailMessage(
        to=list(recipients),
        subject=f"[STUCK CALL] Intake Call - {_caller_name(record)}",
        html=body,
    )
