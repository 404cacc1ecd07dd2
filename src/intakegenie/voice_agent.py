"""Normalization of the external voice-agent provider's webhook payloads.

Two shapes arrive: the current nested one,
    {"message": {"type", "status", "call": {"id"}, "artifact": {...}, ...}}
and the legacy flat one,
    {"event", "conversation_id", "transcript", "structuredData", ...}.
Both are reduced to a VoiceAgentEvent.
"""

from dataclasses import dataclass, field

from intakegenie.transcript import from_provider_messages, to_plain_text

COMPLETED = "conversation.completed"
UPDATED = "conversation.updated"


@dataclass
class VoiceAgentEvent:
    kind: str
    conversation_id: str | None
    transcript: str | None = None
    intake: dict = field(default_factory=dict)
    phone_number: str = ""
    caller_number: str = ""
    firm_id: str = ""

    @property
    def is_completion(self) -> bool:
        return self.kind == COMPLETED


def _transcript(value) -> str | None:
    if isinstance(value, list):
        return to_plain_text(from_provider_messages(value)) or None
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _number(value) -> str:
    if isinstance(value, dict):
        return value.get("number") or value.get("phoneNumber") or ""
    return value or ""


def parse_event(payload: dict) -> VoiceAgentEvent:
    message = payload.get("message")
    if isinstance(message, dict):
        msg_type = message.get("type", "")
        status = message.get("status", "")
        if msg_type == "end-of-call-report" or (msg_type == "status-update" and status == "ended"):
            kind = COMPLETED
        else:
            kind = UPDATED
        call = message.get("call") or {}
        artifact = message.get("artifact") or {}
        analysis = message.get("analysis") or {}
        assistant = message.get("assistant") or call.get("assistant") or {}
        customer = call.get("customer") or message.get("customer") or {}
        return VoiceAgentEvent(
            kind=kind,
            conversation_id=call.get("id"),
            transcript=_transcript(artifact.get("transcript") or artifact.get("messages")),
            intake=artifact.get("structuredData") or analysis.get("structuredData") or {},
            phone_number=_number(message.get("phoneNumber") or call.get("phoneNumber")),
            caller_number=_number(customer),
            firm_id=(assistant.get("metadata") or {}).get("firmId", ""),
        )

    event = payload.get("event", "")
    return VoiceAgentEvent(
        kind=COMPLETED if event in ("conversation.completed", "call.ended") else UPDATED,
        conversation_id=payload.get("conversation_id"),
        transcript=_transcript(payload.get("transcript")),
        intake=payload.get("structuredData") or {},
        phone_number=_number(payload.get("phoneNumber")),
        caller_number=_number(payload.get("customer")),
        firm_id=(payload.get("metadata") or {}).get("firmId", ""),
    )
