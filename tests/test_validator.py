from rosterflow.engine import validate_request
from rosterflow.models import UpdateRequest, UpdateSource


def _request(source, changes):
    return UpdateRequest(player_id="p1", source=source, changes=changes)


def test_unknown_field_is_the_only_error():
    result = validate_request(_request(UpdateSource.CSV_ROW, {"unknownField": 1}))

    assert not result.valid
    assert [(issue.field, issue.reason) for issue in result.errors] == [("unknownField", "UnknownField")]
    assert result.warnings == []


def test_missing_required_fields_reported_in_declaration_order():
    result = validate_request(_request(UpdateSource.INJURY, {"severity": "minor"}))
    assert [(issue.field, issue.reason) for issue in result.errors] == [
        ("injury_id", "MissingField"),
        ("injury_type", "MissingField"),
        ("status", "MissingField"),
    ]


def test_required_field_set_to_none_is_missing():
    result = validate_request(_request(UpdateSource.MEDICAL_APPOINTMENT, {"status": None}))
    assert [(issue.field, issue.reason) for issue in result.errors] == [("status", "MissingField")]


def test_type_mismatch_blocks():
    result = validate_request(
        _request(UpdateSource.GPS_SESSION, {"duration_minutes": "eighty", "total_distance": 5000})
    )
    assert [(issue.field, issue.reason) for issue in result.errors] == [("duration_minutes", "TypeMismatch")]


def test_bool_is_not_a_number():
    result = validate_request(_request(UpdateSource.CSV_ROW, {"sessions_total": True}))
    assert [issue.reason for issue in result.errors] == ["TypeMismatch"]


def test_enum_membership_checked():
    result = validate_request(_request(UpdateSource.TRAINING_ATTENDANCE, {"status": "asleep"}))
    assert [(issue.field, issue.reason) for issue in result.errors] == [("status", "TypeMismatch")]


def test_out_of_range_is_only_a_warning():
    result = validate_request(
        _request(UpdateSource.GPS_SESSION, {"duration_minutes": 95, "total_distance": 21000, "player_load": -5})
    )
    assert result.valid
    assert [(issue.field, issue.reason) for issue in result.warnings] == [
        ("player_load", "OutOfRange"),
        ("total_distance", "OutOfRange"),
    ]


def test_date_fields_accept_iso_strings():
    ok = validate_request(_request(UpdateSource.MEDICAL_APPOINTMENT, {"status": "completed", "date": "2024-03-01"}))
    bad = validate_request(_request(UpdateSource.MEDICAL_APPOINTMENT, {"status": "completed", "date": "yesterday"}))
    assert ok.valid
    assert [issue.reason for issue in bad.errors] == ["TypeMismatch"]


def test_validation_is_idempotent():
    request = _request(UpdateSource.GPS_SESSION, {"total_distance": "far", "extra": 1, "max_speed": 55})
    first = validate_request(request)
    second = validate_request(request)
    assert first == second
    assert [issue.field for issue in first.errors] == ["extra", "total_distance", "duration_minutes"]
