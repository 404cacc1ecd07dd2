from enum import Enum

TERMINAL_STATES = {"emergency", "close"}
PRE_TERMINAL_STATUSES = {"in_progress", "transcribing", "summarizing"}


class ConversationState(Enum):
    START = "START"
    EMERGENCY_CHECK = "EMERGENCY_CHECK"
    EMERGENCY = "EMERGENCY"
    CONTACT_NAME = "CONTACT_NAME"
    CONTACT_PHONE = "CONTACT_PHONE"
    CONTACT_EMAIL = "CONTACT_EMAIL"
    REASON = "REASON"
    INCIDENT_TIME = "INCIDENT_TIME"
    INCIDENT_LOCATION = "INCIDENT_LOCATION"
    INJURY = "INJURY"
    TREATMENT = "TREATMENT"
    INSURANCE = "INSURANCE"
    URGENCY = "URGENCY"
    CONFIRM = "CONFIRM"
    CLOSE = "CLOSE"
    SCHEDULE_CALLBACK = "SCHEDULE_CALLBACK"

    @property
    def is_terminal(self) -> bool:
        return self.value.lower() in TERMINAL_STATES

    @classmethod
    def parse(cls, value) -> "ConversationState | None":
        """Look up a state by name, case-insensitively. Returns None if unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class CallStatus(Enum):
    IN_PROGRESS = "in_progress"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    EMAILED = "emailed"
    ERROR = "error"

    @property
    def is_pre_terminal(self) -> bool:
        return self.value in PRE_TERMINAL_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.EMAILED, CallStatus.ERROR)

    def can_transition_to(self, target: "CallStatus") -> bool:
        return target in STATUS_TRANSITIONS[self]


# error -> transcribing is the only backward edge (watchdog / manual re-drive)
STATUS_TRANSITIONS = {
    CallStatus.IN_PROGRESS: {CallStatus.TRANSCRIBING, CallStatus.ERROR},
    CallStatus.TRANSCRIBING: {CallStatus.SUMMARIZING, CallStatus.ERROR},
    CallStatus.SUMMARIZING: {CallStatus.EMAILED, CallStatus.ERROR},
    CallStatus.EMAILED: set(),
    CallStatus.ERROR: {CallStatus.TRANSCRIBING},
}


class Urgency(Enum):
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY_REDIRECTED = "emergency_redirected"
