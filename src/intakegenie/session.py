import logging
import time
from dataclasses import dataclass, field

from intakegenie.fields import is_filled, normalize_field
from intakegenie.states import ConversationState
from intakegenie.validation import UNKNOWN, is_unknown_response

logger = logging.getLogger(__name__)


@dataclass
class CallSession:
    call_id: str
    state: ConversationState = ConversationState.START

    # Firm context (set when the session is created)
    firm_id: str = ""
    firm_name: str = ""
    firm_tone: str = "professional"
    firm_knowledge_base: str = ""
    caller_number: str = ""

    # Collected intake, field name -> value
    snapshot: dict = field(default_factory=dict)
    # Ordered {"role": "caller" | "agent", "content": str}
    history: list = field(default_factory=list)

    # Metadata
    turn_count: int = 0
    state_turn_count: int = 0
    reprompts: dict = field(default_factory=dict)
    # consecutive empty utterances
    silent_turns: int = 0
    last_activity: float = field(default_factory=time.monotonic)

    def add_turn(self, role: str, content: str) -> None:
        self.history.append({"role": role, "content": content})

    def agent_lines(self) -> list[str]:
        return [t["content"] for t in self.history if t.get("role") == "agent"]

    def touch(self) -> None:
        self.last_activity = time.monotonic()


def merge_updates(snapshot: dict, updates: dict) -> dict:
    """Merge LLM-proposed updates into the snapshot in place.

    Values are normalized per field. A field is never removed, an "unknown"
    never replaces a real value, and the emergency flag can only be raised.
    Returns the subset of updates that were actually applied.
    """
    applied = {}
    for name, raw in (updates or {}).items():
        # a refusal never replaces a filled field, whatever its normalizer returns
        if is_unknown_response(raw) and is_filled(snapshot, name):
            continue
        value = normalize_field(name, raw)
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            if not value or snapshot.get(name) is True:
                continue
        elif value == UNKNOWN and snapshot.get(name) not in (None, ""):
            continue
        if snapshot.get(name) == value:
            continue
        snapshot[name] = value
        applied[name] = value
    if applied:
        logger.debug("snapshot merged: %s", sorted(applied))
    return applied
