import re

UNKNOWN = "unknown"


def match_any_keyword(text: str, keywords) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf'\b{re.escape(kw)}\b', lower) for kw in keywords)


SENTINEL_VALUES = {
    "not provided", "n/a", "na", "none", "tbd", "null",
    "{{full_name}}", "{{callback_number}}", "full_name", "caller",
}

UNKNOWN_RESPONSES = {
    "i don't know", "i do not know", "don't know", "dont know", "not sure",
    "no idea", "i'm not sure", "rather not say", "prefer not to",
    "i'd rather not", "can't remember", "don't remember", "unknown",
    "no clue",
}

YES_SIGNALS = {"yes", "yeah", "yep", "yup", "correct", "i did", "they were", "it was", "sure"}
NO_SIGNALS = {"no", "nope", "nah", "not really", "i didn't", "none", "they weren't"}
HIGH_URGENCY_SIGNALS = {
    "urgent", "asap", "deadline", "court date", "statute", "tomorrow",
    "time-sensitive", "time sensitive", "right away", "immediately", "high",
}
NOT_URGENT_SIGNALS = {
    "nothing urgent", "not urgent", "no rush", "no deadline", "no deadlines",
    "nothing time-sensitive", "nothing time sensitive", "not time sensitive",
}

EMERGENCY_KEYWORDS = {
    "there's a fire", "there is a fire", "is on fire", "on fire right now", "send help",
    "hurting me", "hitting me", "attacking me", "being attacked",
    "has a gun", "has a knife", "pointing a gun", "can't breathe", "cannot breathe",
    "i'm bleeding", "bleeding badly", "having a heart attack", "having a stroke",
    "overdosing", "he's not breathing", "she's not breathing",
    "someone just broke in", "someone is breaking in", "breaking in right now",
    "i'm in danger", "in danger right now", "going to kill me", "trying to kill me",
    "i'm not safe here", "not safe right now", "i'm dying",
}

EMERGENCY_RETRACTION_KEYWORDS = {
    "not an emergency", "no emergency", "not in danger", "i'm safe now",
    "i'm safe", "it was last", "happened last", "years ago", "months ago",
    "back then", "was in a fire", "the fire was", "safe to talk", "can't talk right now",
}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[a-z]{2,}$", re.IGNORECASE)
_SPOKEN_AT_RE = re.compile(r"\s+at\s+", re.IGNORECASE)
_SPOKEN_DOT_RE = re.compile(r"\s+dot\s+", re.IGNORECASE)


def is_unknown_response(value) -> bool:
    if not isinstance(value, str):
        return False
    lower = value.strip().lower().rstrip(".!")
    if lower == UNKNOWN:
        return True
    # longer answers that merely mention uncertainty still carry information
    if len(lower.split()) > 6:
        return False
    return match_any_keyword(lower, UNKNOWN_RESPONSES)


def normalize_text(value) -> str:
    if value is None:
        return ""
    if is_unknown_response(str(value)):
        return UNKNOWN
    return str(value).strip()


def normalize_name(value) -> str:
    """Trim a name; placeholder/template values are treated as not provided."""
    text = normalize_text(value)
    if text.lower() in SENTINEL_VALUES:
        return ""
    if text and text != UNKNOWN and any(c.isdigit() for c in text):
        return ""
    return text


def normalize_phone(value) -> str:
    """Normalize to E.164 when parseable, else return the raw value trimmed.

    10 digits -> +1XXXXXXXXXX, 11 digits starting with 1 -> +1..., an
    explicit + prefix with 8-15 digits is kept as international.
    """
    text = normalize_text(value)
    if not text or text == UNKNOWN:
        return text
    digits = re.sub(r"\D", "", text)
    if text.startswith("+") and 8 <= len(digits) <= 15:
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return text


def normalize_email(value) -> str:
    text = normalize_text(value)
    if not text or text == UNKNOWN:
        return text
    candidate = _SPOKEN_DOT_RE.sub(".", _SPOKEN_AT_RE.sub("@", text)).replace(" ", "")
    if _EMAIL_RE.match(candidate):
        return candidate.lower()
    return text


def normalize_yes_no(value) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    text = normalize_text(value)
    if not text or text == UNKNOWN:
        return text
    lower = text.lower()
    if match_any_keyword(lower, NO_SIGNALS):
        return "no"
    if match_any_keyword(lower, YES_SIGNALS):
        return "yes"
    return UNKNOWN


def normalize_urgency(value) -> str:
    text = normalize_text(value)
    if not text:
        return text
    if text == UNKNOWN:
        return text
    lower = text.lower()
    if match_any_keyword(lower, NOT_URGENT_SIGNALS):
        return "normal"
    return "high" if match_any_keyword(lower, HIGH_URGENCY_SIGNALS) else "normal"


def normalize_flag(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def detect_emergency(text: str) -> bool:
    """Detect immediate danger in a caller utterance.

    Past-tense or explicitly retracted mentions ("I was in a fire last
    year", "it's not an emergency") do not count.
    """
    if not text:
        return False
    lower = text.lower().replace("\u2019", "'")
    if not match_any_keyword(lower, EMERGENCY_KEYWORDS):
        return False
    if match_any_keyword(lower, EMERGENCY_RETRACTION_KEYWORDS):
        return False
    return True


def format_phone_for_speech(text: str) -> str:
    """Spell out E.164 numbers digit by digit so speech engines read them cleanly."""
    def _spell(match: re.Match) -> str:
        digits = match.group(0).lstrip("+")
        if len(digits) == 11 and digits.startswith("1"):
            digits = digits[1:]
        if len(digits) == 10:
            groups = [digits[:3], digits[3:6], digits[6:]]
        else:
            groups = [digits]
        return ", ".join(" ".join(g) for g in groups)

    return re.sub(r"\+?\d{10,15}", _spell, text)
