"""Source-field schemas for every supported update kind."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from rosterflow.models import PlayerRecord, UpdateSource


Fold = Callable[[Mapping[str, Any], PlayerRecord, datetime], Dict[str, Any]]


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str
    required: bool = False
    minimum: float | None = None
    maximum: float | None = None
    choices: Tuple[str, ...] = ()
    # record path assigned verbatim by the default fold; None when the fold derives it
    target: str | None = None

    def accepts_type(self, value: Any) -> bool:
        if self.type == "int":
            return isinstance(value, int) and not isinstance(value, bool)
        if self.type == "float":
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self.type == "bool":
            return isinstance(value, bool)
        if self.type == "str":
            return isinstance(value, str)
        if self.type == "date":
            if isinstance(value, date):
                return True
            if not isinstance(value, str):
                return False
            try:
                date.fromisoformat(value[:10])
            except ValueError:
                return False
            return True
        raise ValueError(f"Unsupported field type {self.type!r} for {self.name}")


@dataclass(frozen=True)
class SourceSchema:
    source: UpdateSource
    domain: str
    fields: Mapping[str, FieldSpec]
    fold: Fold
    sub_collection: str | None = None
    description: str = ""
    id_field: str | None = None

    def field_names(self) -> Tuple[str, ...]:
        return tuple(self.fields)

    def required_fields(self) -> Tuple[str, ...]:
        return tuple(name for name, spec in self.fields.items() if spec.required)


def _normalize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _assign(schema_fields: Mapping[str, FieldSpec], changes: Mapping[str, Any]) -> Dict[str, Any]:
    assigned: Dict[str, Any] = {}
    for name, value in changes.items():
        spec = schema_fields.get(name)
        if spec is None or spec.target is None or value is None:
            continue
        if spec.type == "float" and isinstance(value, int):
            value = float(value)
        assigned[spec.target] = _normalize(value)
    return assigned


def _specs(*specs: FieldSpec) -> Dict[str, FieldSpec]:
    return {spec.name: spec for spec in specs}


_APPOINTMENT_FIELDS = _specs(
    FieldSpec("appointment_id", "str"),
    FieldSpec(
        "appointment_type",
        "str",
        choices=("routine_checkup", "injury_assessment", "treatment", "clearance"),
        target="medical.last_appointment_type",
    ),
    FieldSpec(
        "status",
        "str",
        required=True,
        choices=("scheduled", "completed", "missed", "cancelled"),
        target="medical.last_appointment_status",
    ),
    FieldSpec("date", "date", target="medical.last_appointment_date"),
    FieldSpec("provider", "str"),
    FieldSpec("notes", "str"),
)

_APPOINTMENT_COUNTERS = {
    "completed": "medical.appointments_completed",
    "missed": "medical.appointments_missed",
    "cancelled": "medical.appointments_cancelled",
}


def _fold_appointment(changes: Mapping[str, Any], record: PlayerRecord, timestamp: datetime) -> Dict[str, Any]:
    result = _assign(_APPOINTMENT_FIELDS, changes)
    counter = _APPOINTMENT_COUNTERS.get(changes.get("status"))
    if counter:
        result[counter] = record.get_field(counter) + 1
    return result


_ATTENDANCE_FIELDS = _specs(
    FieldSpec("session_id", "str"),
    FieldSpec(
        "session_type",
        "str",
        choices=("team_training", "individual_training", "strength_conditioning", "skills_session"),
        target="training.last_session_type",
    ),
    FieldSpec(
        "status",
        "str",
        required=True,
        choices=("present", "absent", "late", "excused"),
        target="training.last_session_status",
    ),
    FieldSpec("participation_level", "str", choices=("full", "modified", "observer")),
    FieldSpec("date", "date"),
    FieldSpec("arrival_time", "str"),
    FieldSpec("notes", "str"),
)


def _fold_attendance(changes: Mapping[str, Any], record: PlayerRecord, timestamp: datetime) -> Dict[str, Any]:
    result = _assign(_ATTENDANCE_FIELDS, changes)
    training = record.training
    result["training.sessions_total"] = training.sessions_total + 1
    status = changes.get("status")
    if status == "absent":
        result["training.sessions_absent"] = training.sessions_absent + 1
    elif status == "late":
        result["training.sessions_late"] = training.sessions_late + 1
    return result


_INJURY_FIELDS = _specs(
    FieldSpec("injury_id", "str", required=True),
    FieldSpec("injury_type", "str", required=True, target="injuries.last_injury_type"),
    FieldSpec("severity", "str", required=True, choices=("minor", "moderate", "severe")),
    FieldSpec("status", "str", required=True, choices=("active", "recovering", "cleared")),
    FieldSpec("date", "date"),
    FieldSpec("expected_return", "date"),
    FieldSpec("description", "str"),
    FieldSpec("notes", "str"),
)


def _fold_injury(changes: Mapping[str, Any], record: PlayerRecord, timestamp: datetime) -> Dict[str, Any]:
    result = _assign(_INJURY_FIELDS, changes)
    injury_id = changes["injury_id"]
    open_injuries = dict(record.injuries.open_injuries)
    is_new = injury_id not in open_injuries
    if changes["status"] == "cleared":
        open_injuries.pop(injury_id, None)
    else:
        open_injuries[injury_id] = changes["severity"]
        if is_new:
            result["injuries.season_injury_count"] = record.injuries.season_injury_count + 1
    result["injuries.open_injuries"] = open_injuries
    return result


_GPS_FIELDS = _specs(
    FieldSpec("session_id", "str"),
    FieldSpec("session_type", "str", choices=("training", "match")),
    FieldSpec("date", "date", target="gps.last_session_date"),
    FieldSpec("duration_minutes", "float", required=True, minimum=1, maximum=240, target="gps.duration_minutes"),
    FieldSpec("total_distance", "float", required=True, minimum=0, maximum=15000, target="gps.total_distance"),
    FieldSpec("high_speed_distance", "float", minimum=0, maximum=5000, target="gps.high_speed_distance"),
    FieldSpec("sprint_distance", "float", minimum=0, maximum=2500, target="gps.sprint_distance"),
    FieldSpec("max_speed", "float", minimum=0, maximum=40, target="gps.max_speed"),
    FieldSpec("player_load", "float", minimum=0, maximum=1500, target="gps.player_load"),
)


def _fold_gps(changes: Mapping[str, Any], record: PlayerRecord, timestamp: datetime) -> Dict[str, Any]:
    result = _assign(_GPS_FIELDS, changes)
    result["gps.sessions_recorded"] = record.gps.sessions_recorded + 1
    return result


def _rating(name: str, target: str, *, required: bool = False) -> FieldSpec:
    return FieldSpec(name, "float", required=required, minimum=0, maximum=10, target=target)


_AI_FIELDS = _specs(
    _rating("overall_rating", "ai.overall_rating", required=True),
    _rating("physicality_rating", "ai.physicality_rating"),
    _rating("skillset_rating", "ai.skillset_rating"),
    _rating("game_impact_rating", "ai.game_impact_rating"),
    _rating("potential_rating", "ai.potential_rating"),
    FieldSpec("summary", "str", target="ai.summary"),
    FieldSpec("model", "str"),
)


def _fold_ai(changes: Mapping[str, Any], record: PlayerRecord, timestamp: datetime) -> Dict[str, Any]:
    result = _assign(_AI_FIELDS, changes)
    result["ai.analyses_count"] = record.ai.analyses_count + 1
    result["ai.last_analyzed_at"] = timestamp
    return result


_CSV_FIELDS = _specs(
    FieldSpec("weight_kg", "float", minimum=40, maximum=200, target="physical.weight_kg"),
    FieldSpec("height_cm", "float", minimum=140, maximum=220, target="physical.height_cm"),
    FieldSpec("body_fat_pct", "float", minimum=0, maximum=50, target="physical.body_fat_pct"),
    FieldSpec("sessions_total", "int", minimum=0, maximum=500, target="training.sessions_total"),
    FieldSpec("sessions_absent", "int", minimum=0, maximum=500, target="training.sessions_absent"),
    FieldSpec("sessions_late", "int", minimum=0, maximum=500, target="training.sessions_late"),
    _rating("teamwork_rating", "cohesion.teamwork_rating"),
    _rating("leadership_rating", "cohesion.leadership_rating"),
    FieldSpec("base_value", "float", minimum=0, maximum=5_000_000, target="financial.base_value"),
)

_EXTERNAL_FIELDS = _specs(
    FieldSpec("vendor", "str", required=True, choices=("statsports", "gain_line", "google_sheets")),
    FieldSpec("total_distance", "float", minimum=0, maximum=15000, target="gps.total_distance"),
    FieldSpec("max_speed", "float", minimum=0, maximum=40, target="gps.max_speed"),
    FieldSpec("player_load", "float", minimum=0, maximum=1500, target="gps.player_load"),
    _rating("teamwork_rating", "cohesion.teamwork_rating"),
    _rating("leadership_rating", "cohesion.leadership_rating"),
    FieldSpec("weight_kg", "float", minimum=40, maximum=200, target="physical.weight_kg"),
    FieldSpec("body_fat_pct", "float", minimum=0, maximum=50, target="physical.body_fat_pct"),
)

_OVERRIDE_FIELDS = _specs(
    FieldSpec("base_value", "float", minimum=0, maximum=5_000_000, target="financial.base_value"),
    FieldSpec("contract_value", "float", minimum=0, maximum=10_000_000, target="financial.contract_value"),
    _rating("teamwork_rating", "cohesion.teamwork_rating"),
    _rating("leadership_rating", "cohesion.leadership_rating"),
)


def _assigning(fields: Mapping[str, FieldSpec]) -> Fold:
    def fold(changes: Mapping[str, Any], record: PlayerRecord, timestamp: datetime) -> Dict[str, Any]:
        return _assign(fields, changes)

    return fold


_SOURCE_SCHEMAS: Dict[UpdateSource, SourceSchema] = {
    UpdateSource.MEDICAL_APPOINTMENT: SourceSchema(
        source=UpdateSource.MEDICAL_APPOINTMENT,
        domain="medical",
        fields=_APPOINTMENT_FIELDS,
        fold=_fold_appointment,
        sub_collection="appointments",
        description="Medical appointment outcome",
        id_field="appointment_id",
    ),
    UpdateSource.TRAINING_ATTENDANCE: SourceSchema(
        source=UpdateSource.TRAINING_ATTENDANCE,
        domain="training",
        fields=_ATTENDANCE_FIELDS,
        fold=_fold_attendance,
        sub_collection="attendance",
        description="Training session attendance",
        id_field="session_id",
    ),
    UpdateSource.INJURY: SourceSchema(
        source=UpdateSource.INJURY,
        domain="injuries",
        fields=_INJURY_FIELDS,
        fold=_fold_injury,
        sub_collection="injuries",
        description="Injury record from medical staff",
        id_field="injury_id",
    ),
    UpdateSource.GPS_SESSION: SourceSchema(
        source=UpdateSource.GPS_SESSION,
        domain="gps",
        fields=_GPS_FIELDS,
        fold=_fold_gps,
        sub_collection="gps_sessions",
        description="GPS tracking session",
        id_field="session_id",
    ),
    UpdateSource.AI_ANALYSIS: SourceSchema(
        source=UpdateSource.AI_ANALYSIS,
        domain="ai",
        fields=_AI_FIELDS,
        fold=_fold_ai,
        sub_collection="ai_analyses",
        description="AI performance analysis",
    ),
    UpdateSource.CSV_ROW: SourceSchema(
        source=UpdateSource.CSV_ROW,
        domain="physical",
        fields=_CSV_FIELDS,
        fold=_assigning(_CSV_FIELDS),
        description="Spreadsheet row",
    ),
    UpdateSource.EXTERNAL_SYNC: SourceSchema(
        source=UpdateSource.EXTERNAL_SYNC,
        domain="gps",
        fields=_EXTERNAL_FIELDS,
        fold=_assigning(_EXTERNAL_FIELDS),
        description="External vendor payload",
    ),
    UpdateSource.MANUAL_VALUE_OVERRIDE: SourceSchema(
        source=UpdateSource.MANUAL_VALUE_OVERRIDE,
        domain="financial",
        fields=_OVERRIDE_FIELDS,
        fold=_assigning(_OVERRIDE_FIELDS),
        description="Manual value override",
    ),
}


def iter_schemas() -> Iterable[SourceSchema]:
    """Return an iterator of all configured source schemas."""

    return _SOURCE_SCHEMAS.values()


def get_schema(source: Union[str, UpdateSource]) -> SourceSchema:
    """Fetch the schema for an update source, raising KeyError if missing."""

    try:
        key = UpdateSource(source)
    except ValueError as exc:
        raise KeyError(f"No schema configured for source={source!r}") from exc
    if key not in _SOURCE_SCHEMAS:
        raise KeyError(f"No schema configured for source={source!r}")
    return _SOURCE_SCHEMAS[key]


def infer_source(field_names: Iterable[str]) -> Optional[UpdateSource]:
    """First source whose schema declares every given field name."""

    names = set(field_names)
    if not names:
        return None
    for schema in _SOURCE_SCHEMAS.values():
        if names <= set(schema.fields):
            return schema.source
    return None


__all__ = [
    "FieldSpec",
    "Fold",
    "SourceSchema",
    "get_schema",
    "infer_source",
    "iter_schemas",
]
