import asyncio
import json
import logging
import re

from pydantic import BaseModel, Field, ValidationError

from intakegenie.errors import LLMError
from intakegenie.llm import LLMClient

logger = logging.getLogger(__name__)

SUMMARY_TIMEOUT = 20.0

SUMMARY_PROMPT = """You summarize phone intake calls for a law firm.
Return ONLY a JSON object:
{"title": string, "summary_bullets": [string], "key_facts": {"incident_date": string,
"location": string, "injuries": string, "treatment": string, "insurance": string},
"action_items": [string], "urgency_level": "normal" | "high" | "emergency_redirected",
"follow_up_recommendation": string}

- title: "<Matter type> Intake - <caller name>", e.g. "Car Accident Intake - Jane Smith".
- Use only facts stated in the transcript or intake data. Write "Not provided" when missing.
- Do not give legal advice or assess the merits of the matter."""


class KeyFacts(BaseModel):
    incident_date: str = "Not provided"
    location: str = "Not provided"
    injuries: str = "Not provided"
    treatment: str = "Not provided"
    insurance: str = "Not provided"


class Summary(BaseModel):
    title: str
    summary_bullets: list[str] = Field(default_factory=list)
    key_facts: KeyFacts = Field(default_factory=KeyFacts)
    action_items: list[str] = Field(default_factory=list)
    urgency_level: str = "normal"
    follow_up_recommendation: str = ""


def _fact(intake: dict, name: str) -> str:
    value = intake.get(name)
    if value in (None, "", "unknown"):
        return "Not provided"
    return str(value)


async def generate_summary(llm: LLMClient, transcript: str, intake: dict, timeout: float = SUMMARY_TIMEOUT) -> dict:
    """Ask the LLM for a structured summary. Raises LLMError on any failure."""
    messages = [
        {"role": "system", "content": SUMMARY_PROMPT},
        {
            "role": "user",
            "content": f"INTAKE DATA:\n{json.dumps(intake, sort_keys=True)}\n\nTRANSCRIPT:\n{transcript or '(no transcript)'}",
        },
    ]
    try:
        data = await asyncio.wait_for(llm.complete_json(messages, temperature=0.2), timeout=timeout)
        return Summary.model_validate(data).model_dump()
    except asyncio.TimeoutError as e:
        raise LLMError(f"summary timed out after {timeout:.0f}s") from e
    except ValidationError as e:
        raise LLMError(f"summary failed validation: {e}") from e


def fallback_summary(intake: dict, urgency: str, has_transcript: bool) -> dict:
    """Deterministic summary assembled from the intake snapshot alone."""
    name = _fact(intake, "full_name")
    if name == "Not provided":
        name = "Unknown Caller"
    bullets = [
        f"Caller: {name}",
        f"Phone: {_fact(intake, 'callback_number')}",
        f"Reason: {_fact(intake, 'reason_for_call')}",
    ]
    if intake.get("emergency_redirected"):
        bullets.append("Caller was redirected to 911 as a possible emergency")
    if has_transcript:
        recommendation = "Review the transcript and call the client back within one business day."
    else:
        recommendation = "No transcript was available. Review intake details and call the client back within one business day."
    return Summary(
        title=f"Intake Call - {name}",
        summary_bullets=bullets,
        key_facts=KeyFacts(
            incident_date=_fact(intake, "incident_date_or_timeframe"),
            location=_fact(intake, "incident_location"),
            injuries=_fact(intake, "injury_description"),
            treatment=_fact(intake, "medical_treatment_received"),
            insurance=_fact(intake, "insurance_involved"),
        ),
        action_items=["Review intake details", "Follow up with caller"],
        urgency_level=urgency,
        follow_up_recommendation=recommendation,
    ).model_dump()


def extract_category(title: str | None) -> str | None:
    """'Car Accident Intake - Jane Smith' -> 'Car Accident Intake'."""
    if not title:
        return None
    head = re.split(r"\s+[-–—]\s+", title.strip(), maxsplit=1)[0].strip()
    return head or None
