import json

from intakegenie.fields import FIELDS
from intakegenie.session import CallSession
from intakegenie.state_machine import STATE_SPECS, DEFAULT_FIRM_NAME
from intakegenie.states import ConversationState

PERSONA = """You are IntakeGenie, an automated phone intake assistant for a law firm.

RULES
- You are NOT a lawyer. NEVER give legal advice, opinions on a case, or predictions about outcomes.
  If asked, say the firm's attorneys will review their information and follow up.
- Ask exactly ONE question per turn. Keep every reply to one or two short sentences.
- The disclosure (automated assistant, not a lawyer) is given once at the start. Do not repeat it.
- NEVER re-ask for information that is already in COLLECTED FIELDS.
- Be calm and empathetic. Callers may be describing something painful.
- If the caller is in immediate danger, has an active medical emergency, a fire, or violence
  happening now, set updates.emergency_redirected to true and done to true."""

DEVELOPER_INSTRUCTIONS = """Return ONLY a JSON object with exactly these keys:
{"assistant_say": string, "next_state": string, "updates": object, "done": boolean}

- assistant_say: the single next thing to say to the caller.
- next_state: one of the STATE names listed below.
- updates: only fields the CALLER stated in this turn, using the field names below.
- done: true only when the intake is complete or the call must end.

Field rules:
- Skip any state whose field is already collected.
- If the caller says "I don't know" or declines an optional field, set it to "unknown" and move on.
- For required fields (full_name, callback_number, reason_for_call) ask once more before accepting "unknown".
- Phone numbers in E.164 format (+1XXXXXXXXXX) when possible.
- medical_treatment_received and insurance_involved are "yes", "no" or "unknown".
- urgency_level is "normal" or "high"."""

TONE_INSTRUCTIONS = {
    "professional": "Tone: professional, clear, and courteous.",
    "warm": "Tone: warm and reassuring. Acknowledge feelings briefly before asking the next question.",
    "friendly": "Tone: friendly and conversational, but still concise.",
    "formal": "Tone: formal. Use complete sentences and address the caller respectfully.",
}


def _field_list() -> str:
    lines = []
    for f in FIELDS:
        req = " (required)" if f.required else ""
        lines.append(f"- {f.name}{req}: {f.hint}")
    return "\n".join(lines)


def _state_list() -> str:
    return "\n".join(f"- {s.value}: {spec.description}" for s, spec in STATE_SPECS.items())


def _firm_context(session: CallSession) -> str:
    parts = [f"FIRM: {session.firm_name or DEFAULT_FIRM_NAME}"]
    parts.append(TONE_INSTRUCTIONS.get(session.firm_tone, TONE_INSTRUCTIONS["professional"]))
    if session.firm_knowledge_base:
        parts.append(
            "FIRM INFORMATION (answer general questions from this only, never give legal advice):\n"
            + session.firm_knowledge_base.strip()
        )
    return "\n".join(parts)


def get_system_prompt(session: CallSession) -> str:
    return (
        f"{PERSONA}\n\n{DEVELOPER_INSTRUCTIONS}\n\nFIELDS:\n{_field_list()}\n\n"
        f"STATES:\n{_state_list()}\n\n{_firm_context(session)}"
    )


def get_state_prompt(session: CallSession) -> str:
    state: ConversationState = session.state
    spec = STATE_SPECS[state]
    lines = [f"CURRENT STATE: {state.value}", spec.description]
    if spec.field:
        lines.append(f"Target field: {spec.field}")
    lines.append(f"Canonical question: {spec.question}")
    if spec.next_state:
        lines.append(f"Default next state: {spec.next_state.value}")
    lines.append("COLLECTED FIELDS: " + json.dumps(session.snapshot, sort_keys=True))
    return "\n".join(lines)


def build_messages(session: CallSession, utterance: str) -> list[dict]:
    """Assemble the chat messages for one turn: instructions, state, history, new utterance.

    The new utterance is passed separately, so it is excluded from history here
    even when already appended to the session.
    """
    history = session.history
    if history and history[-1].get("role") == "caller" and history[-1].get("content") == utterance:
        history = history[:-1]
    messages = [
        {"role": "system", "content": get_system_prompt(session)},
        {"role": "system", "content": get_state_prompt(session)},
    ]
    for turn in history:
        role = "assistant" if turn.get("role") == "agent" else "user"
        messages.append({"role": role, "content": turn["content"]})
    messages.append({"role": "user", "content": utterance})
    return messages
