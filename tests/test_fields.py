from intakegenie.fields import FIELDS, REQUIRED_FIELDS, is_answered, is_filled, normalize_field


def test_required_fields():
    assert REQUIRED_FIELDS == ("full_name", "callback_number", "reason_for_call")


def test_field_names_unique():
    names = [f.name for f in FIELDS]
    assert len(names) == len(set(names))


def test_normalize_field_uses_field_rule():
    assert normalize_field("callback_number", "555-123-4567") == "+15551234567"
    assert normalize_field("insurance_involved", "yeah") == "yes"


def test_unknown_field_passes_through_trimmed():
    assert normalize_field("favorite_color", "  blue ") == "blue"


def test_filled_vs_answered():
    snapshot = {"email": "unknown", "full_name": "Jane Smith"}
    assert is_filled(snapshot, "full_name")
    assert not is_filled(snapshot, "email")
    assert is_answered(snapshot, "email")
    assert not is_answered(snapshot, "reason_for_call")
