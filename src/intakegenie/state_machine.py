import logging
import re
from dataclasses import dataclass, field

from intakegenie.fields import FIELDS_BY_NAME, is_answered
from intakegenie.session import CallSession, merge_updates
from intakegenie.states import ConversationState
from intakegenie.validation import UNKNOWN, is_unknown_response

logger = logging.getLogger(__name__)

S = ConversationState

MAX_TURNS_PER_STATE = 4
MAX_TURNS_PER_CALL = 30
MAX_SILENT_TURNS = 3
MAX_REQUIRED_REPROMPTS = 1
DEFAULT_FIRM_NAME = "the firm"

# Rendered verbatim, never paraphrased by the model
CLOSING_SCRIPT = (
    "Thank you. I've shared this information with the firm. Someone from {firm_name} "
    "will review it and contact you within one business day. If this becomes urgent "
    "or you feel unsafe, please call 911. Take care."
)
EMERGENCY_SCRIPT = (
    "If you're in immediate danger or need urgent medical help, please call 911 right now. "
    "I'm going to end this call so you can do that."
)
FALLBACK_UTTERANCE = "I'm sorry, I didn't catch that. Could you repeat?"


@dataclass(frozen=True)
class StateSpec:
    field: str | None
    question: str
    reprompt: str
    next_state: ConversationState | None
    description: str
    skippable: bool = True


STATE_SPECS = {
    S.START: StateSpec(
        field=None,
        question=(
            "Thank you for calling {firm_name}. I'm an automated assistant for the firm. "
            "I'm not a lawyer and I can't provide legal advice, but I can take your information "
            "so the firm can follow up. Are you in a safe place to talk right now?"
        ),
        reprompt="Are you in a safe place to talk right now?",
        next_state=S.EMERGENCY_CHECK,
        description="Greet the caller, give the disclosure once, and ask if they are safe to talk.",
        skippable=False,
    ),
    S.EMERGENCY_CHECK: StateSpec(
        field=None,
        question="Are you in a safe place to talk right now?",
        reprompt="Sorry, just to check, are you somewhere safe where you can talk for a few minutes?",
        next_state=S.CONTACT_NAME,
        description=(
            "If the caller is in danger, go to EMERGENCY. If they cannot talk now, go to "
            "SCHEDULE_CALLBACK. Otherwise go to CONTACT_NAME."
        ),
        skippable=False,
    ),
    S.EMERGENCY: StateSpec(
        field=None,
        question=EMERGENCY_SCRIPT,
        reprompt=EMERGENCY_SCRIPT,
        next_state=None,
        description="Immediate danger. Tell them to call 911 and end the call.",
        skippable=False,
    ),
    S.CONTACT_NAME: StateSpec(
        field="full_name",
        question="Great. What's your full name?",
        reprompt="Sorry, could you tell me your first and last name?",
        next_state=S.CONTACT_PHONE,
        description="Collect the caller's full name.",
    ),
    S.CONTACT_PHONE: StateSpec(
        field="callback_number",
        question="Thanks. What's the best phone number for the firm to call you back?",
        reprompt="What number should the firm use to reach you?",
        next_state=S.CONTACT_EMAIL,
        description="Collect a callback number.",
    ),
    S.CONTACT_EMAIL: StateSpec(
        field="email",
        question="Do you want to share an email address as well, or should we just use your phone number?",
        reprompt="Is there an email address you'd like to add, or is phone fine?",
        next_state=S.REASON,
        description="Optionally collect an email address.",
    ),
    S.REASON: StateSpec(
        field="reason_for_call",
        question="What are you calling about today?",
        reprompt="Could you tell me briefly what happened or what you need help with?",
        next_state=S.INCIDENT_TIME,
        description="Collect a brief reason for the call.",
    ),
    S.INCIDENT_TIME: StateSpec(
        field="incident_date_or_timeframe",
        question="When did this happen?",
        reprompt="Roughly when did this take place?",
        next_state=S.INCIDENT_LOCATION,
        description="Collect when the incident happened.",
    ),
    S.INCIDENT_LOCATION: StateSpec(
        field="incident_location",
        question="Where did this happen?",
        reprompt="What city or place did this happen in?",
        next_state=S.INJURY,
        description="Collect where the incident happened.",
    ),
    S.INJURY: StateSpec(
        field="injury_description",
        question="Were there any injuries involved?",
        reprompt="Was anyone hurt?",
        next_state=S.TREATMENT,
        description="Collect a description of any injuries.",
    ),
    S.TREATMENT: StateSpec(
        field="medical_treatment_received",
        question="Have you received any medical treatment for this?",
        reprompt="Have you seen a doctor or gotten any treatment?",
        next_state=S.INSURANCE,
        description="Ask whether medical treatment was received (yes / no / unknown).",
    ),
    S.INSURANCE: StateSpec(
        field="insurance_involved",
        question="Was any insurance involved?",
        reprompt="Has an insurance company been part of this at all?",
        next_state=S.URGENCY,
        description="Ask whether insurance is involved (yes / no / unknown).",
    ),
    S.URGENCY: StateSpec(
        field="urgency_level",
        question="Is there anything time-sensitive or urgent the firm should know about?",
        reprompt="Are there any deadlines coming up the firm should know about?",
        next_state=S.CONFIRM,
        description="Ask about deadlines or urgency (normal / high).",
    ),
    S.CONFIRM: StateSpec(
        field=None,
        question=(
            "Perfect. Just to confirm, your name is {full_name} and your callback number "
            "is {callback_number}. Is that correct?"
        ),
        reprompt="Is that name and number correct?",
        next_state=S.CLOSE,
        description="Read back name and callback number. Apply corrections, then go to CLOSE.",
        skippable=False,
    ),
    S.CLOSE: StateSpec(
        field=None,
        question=CLOSING_SCRIPT,
        reprompt=CLOSING_SCRIPT,
        next_state=None,
        description="Closing script. End the call.",
        skippable=False,
    ),
    S.SCHEDULE_CALLBACK: StateSpec(
        field="full_name",
        question=(
            "No problem. I can still take your name and number and have the firm call you back. "
            "What's your full name?"
        ),
        reprompt="Sorry, what name should the firm ask for?",
        next_state=S.CONTACT_PHONE,
        description="Caller cannot talk now. Take their name, then their number.",
    ),
}

# Branches the model may choose; otherwise it can only stay or advance
TRANSITIONS = {
    S.EMERGENCY_CHECK: {S.CONTACT_NAME, S.SCHEDULE_CALLBACK},
}

SCRIPT_ORDER = (
    S.START, S.EMERGENCY_CHECK, S.SCHEDULE_CALLBACK, S.CONTACT_NAME, S.CONTACT_PHONE,
    S.CONTACT_EMAIL, S.REASON, S.INCIDENT_TIME, S.INCIDENT_LOCATION, S.INJURY,
    S.TREATMENT, S.INSURANCE, S.URGENCY, S.CONFIRM, S.CLOSE,
)


@dataclass
class TurnResult:
    say: str
    next_state: ConversationState
    updates: dict = field(default_factory=dict)
    done: bool = False


def _transition(session: CallSession, new_state: ConversationState):
    """Helper to transition state and reset turn counter."""
    if new_state != session.state:
        logger.info("[%s] %s -> %s", session.call_id, session.state.value, new_state.value)
        session.state_turn_count = 0
    session.state = new_state


def _normalize_line(text: str) -> str:
    return re.sub(r"[^a-z0-9 ]", "", text.lower()).strip()


class StateMachine:
    """Deterministic control layer around model-proposed turns.

    Owns every control-flow decision: emergency override, closing script,
    skip-if-answered, the one re-prompt allowed for required fields, and
    duplicate-question suppression. The model only proposes wording,
    field updates, and a next state.
    """

    def render(self, state: ConversationState, session: CallSession, reprompt: bool = False) -> str:
        spec = STATE_SPECS[state]
        template = spec.reprompt if reprompt else spec.question
        return template.format(
            firm_name=session.firm_name or DEFAULT_FIRM_NAME,
            full_name=session.snapshot.get("full_name") or "not provided",
            callback_number=session.snapshot.get("callback_number") or "not provided",
        )

    def closing_script(self, session: CallSession) -> str:
        return CLOSING_SCRIPT.format(firm_name=session.firm_name or DEFAULT_FIRM_NAME)

    def opening(self, session: CallSession) -> TurnResult:
        """Greeting and one-time disclosure. No model call."""
        say = self.render(S.START, session)
        _transition(session, S.EMERGENCY_CHECK)
        return TurnResult(say=say, next_state=session.state)

    def emergency(self, session: CallSession, applied: dict | None = None) -> TurnResult:
        updates = dict(applied or {})
        if session.snapshot.get("emergency_redirected") is not True:
            session.snapshot["emergency_redirected"] = True
        updates["emergency_redirected"] = True
        logger.warning("[%s] emergency redirect from %s", session.call_id, session.state.value)
        _transition(session, S.EMERGENCY)
        return TurnResult(say=EMERGENCY_SCRIPT, next_state=S.EMERGENCY, updates=updates, done=True)

    def close(self, session: CallSession, applied: dict | None = None) -> TurnResult:
        _transition(session, S.CLOSE)
        return TurnResult(
            say=self.closing_script(session),
            next_state=S.CLOSE,
            updates=dict(applied or {}),
            done=True,
        )

    def fallback(self, session: CallSession) -> TurnResult:
        return TurnResult(say=FALLBACK_UTTERANCE, next_state=session.state)

    def reprompt(self, session: CallSession) -> TurnResult:
        """Re-ask the current question after silence, varying the wording when possible."""
        state = self.skip_answered(session, session.state)
        if state.is_terminal:
            return self.close(session) if state == S.CLOSE else self.emergency(session)
        _transition(session, state)
        say = self._unrepeated(session, state, None)
        return TurnResult(say=say, next_state=state)

    def skip_answered(self, session: CallSession, state: ConversationState) -> ConversationState:
        """Advance past every state whose target field is already answered."""
        seen = set()
        while state not in seen:
            seen.add(state)
            spec = STATE_SPECS[state]
            if not spec.skippable or spec.field is None or spec.next_state is None:
                return state
            if not is_answered(session.snapshot, spec.field):
                return state
            logger.debug("[%s] skipping %s, %s already answered", session.call_id, state.value, spec.field)
            state = spec.next_state
        return state

    def resolve(
        self,
        session: CallSession,
        utterance: str,
        say: str,
        proposed: ConversationState,
        updates: dict,
        done: bool,
        emergency: bool = False,
    ) -> TurnResult:
        """Apply deterministic overrides to a model-proposed turn and advance the session."""
        current = session.state
        session.turn_count += 1
        session.state_turn_count += 1

        if emergency or proposed == S.EMERGENCY or _raises_emergency(updates):
            applied = merge_updates(session.snapshot, updates)
            return self.emergency(session, applied)

        applied = merge_updates(session.snapshot, updates)

        if done or proposed == S.CLOSE or current == S.CLOSE:
            return self.close(session, applied)
        if session.turn_count >= MAX_TURNS_PER_CALL:
            logger.warning("[%s] turn limit reached, closing", session.call_id)
            return self.close(session, applied)

        spec = STATE_SPECS[current]
        target = self._next_state(session, current, proposed, utterance, applied)
        target = self.skip_answered(session, target)
        if target == S.CLOSE:
            return self.close(session, applied)

        if target == current:
            use_model_text = proposed == current or spec.field is None
            reprompting = spec.field is not None
        else:
            use_model_text = proposed == target
            reprompting = False
        _transition(session, target)

        candidate = say if use_model_text and say.strip() else None
        if reprompting and candidate is None:
            text = self._unrepeated(session, target, self.render(target, session, reprompt=True))
        else:
            text = self._unrepeated(session, target, candidate)
        return TurnResult(say=text, next_state=target, updates=applied)

    def _next_state(self, session, current, proposed, utterance, applied) -> ConversationState:
        spec = STATE_SPECS[current]
        if proposed in TRANSITIONS.get(current, set()):
            return proposed

        if spec.field is None:
            if _is_ahead(proposed, current) or session.state_turn_count >= MAX_TURNS_PER_STATE:
                return spec.next_state or current
            return current

        if is_answered(session.snapshot, spec.field):
            return spec.next_state

        field_spec = FIELDS_BY_NAME[spec.field]
        if field_spec.required:
            used = session.reprompts.get(current.value, 0)
            if used < MAX_REQUIRED_REPROMPTS and session.state_turn_count < MAX_TURNS_PER_STATE:
                session.reprompts[current.value] = used + 1
                return current
        elif proposed == current and not is_unknown_response(utterance) \
                and session.state_turn_count < MAX_TURNS_PER_STATE:
            return current

        # Accept "unknown" and move on
        session.snapshot[spec.field] = UNKNOWN
        applied[spec.field] = UNKNOWN
        logger.info("[%s] %s accepted as unknown", session.call_id, spec.field)
        return spec.next_state

    def _unrepeated(self, session: CallSession, state: ConversationState, candidate: str | None) -> str:
        """Pick wording for this state that the caller has not already heard verbatim."""
        heard = {_normalize_line(line) for line in session.agent_lines()}
        options = [candidate, self.render(state, session), self.render(state, session, reprompt=True)]
        for option in options:
            if option and _normalize_line(option) not in heard:
                return option
        return self.render(state, session, reprompt=True)


def _is_ahead(proposed: ConversationState, current: ConversationState) -> bool:
    if proposed not in SCRIPT_ORDER or current not in SCRIPT_ORDER:
        return False
    return SCRIPT_ORDER.index(proposed) > SCRIPT_ORDER.index(current)


def _raises_emergency(updates: dict) -> bool:
    value = (updates or {}).get("emergency_redirected")
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True
