"""Intake field schema.

Each field is one collectible datum with its normalization rule and the
extraction hint shown to the LLM. The tuple below is the single source of
truth for what the agent collects.
"""

from dataclasses import dataclass
from typing import Callable

from intakegenie.validation import (
    UNKNOWN,
    normalize_email,
    normalize_flag,
    normalize_name,
    normalize_phone,
    normalize_text,
    normalize_urgency,
    normalize_yes_no,
)


@dataclass(frozen=True)
class IntakeField:
    name: str
    hint: str
    required: bool = False
    normalize: Callable = normalize_text
    allows_unknown: bool = True


FIELDS = (
    IntakeField("full_name", "Caller's full name.", required=True, normalize=normalize_name),
    IntakeField(
        "callback_number",
        "Best phone number to call back, E.164 format (+1XXXXXXXXXX) when possible.",
        required=True,
        normalize=normalize_phone,
    ),
    IntakeField("email", "Email address, optional.", normalize=normalize_email),
    IntakeField("reason_for_call", "Brief description of why they are calling.", required=True),
    IntakeField("incident_date_or_timeframe", "When the incident happened."),
    IntakeField("incident_location", "Where the incident happened."),
    IntakeField("injury_description", "Description of any injuries."),
    IntakeField("medical_treatment_received", "yes / no / unknown.", normalize=normalize_yes_no),
    IntakeField("insurance_involved", "yes / no / unknown.", normalize=normalize_yes_no),
    IntakeField("urgency_level", "normal or high.", normalize=normalize_urgency),
    IntakeField(
        "emergency_redirected",
        "true only if the caller is in immediate danger.",
        normalize=normalize_flag,
        allows_unknown=False,
    ),
)

FIELDS_BY_NAME = {f.name: f for f in FIELDS}
REQUIRED_FIELDS = tuple(f.name for f in FIELDS if f.required)


def normalize_field(name: str, value):
    """Apply the field's normalizer. Unknown field names are passed through trimmed."""
    spec = FIELDS_BY_NAME.get(name)
    if spec is None:
        return normalize_text(value)
    return spec.normalize(value)


def is_filled(snapshot: dict, name: str) -> bool:
    """True when the field holds a real (non-empty, non-"unknown") value."""
    value = snapshot.get(name)
    if value is None or value == "" or value is False:
        return False
    return value != UNKNOWN


def is_answered(snapshot: dict, name: str) -> bool:
    """True when the field has been answered at all, "unknown" included."""
    value = snapshot.get(name)
    return value is not None and value != ""
