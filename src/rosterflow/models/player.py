"""Canonical player document shared by the engine, store and API layers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


DOMAINS: Tuple[str, ...] = (
    "medical",
    "training",
    "gps",
    "financial",
    "cohesion",
    "injuries",
    "ai",
    "physical",
)


class _DomainBag(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class MedicalFields(_DomainBag):
    last_appointment_status: Optional[str] = None
    last_appointment_type: Optional[str] = None
    last_appointment_date: Optional[str] = None
    appointments_completed: int = Field(default=0, ge=0)
    appointments_missed: int = Field(default=0, ge=0)
    appointments_cancelled: int = Field(default=0, ge=0)


class TrainingFields(_DomainBag):
    # spreadsheet rows may set these directly; out-of-range values are kept and only warned about
    sessions_total: int = 0
    sessions_absent: int = 0
    sessions_late: int = 0
    last_session_status: Optional[str] = None
    last_session_type: Optional[str] = None


class GpsFields(_DomainBag):
    sessions_recorded: int = Field(default=0, ge=0)
    last_session_date: Optional[str] = None
    duration_minutes: Optional[float] = None
    total_distance: Optional[float] = None
    high_speed_distance: Optional[float] = None
    sprint_distance: Optional[float] = None
    max_speed: Optional[float] = None
    player_load: Optional[float] = None


class FinancialFields(_DomainBag):
    base_value: float = 0.0
    contract_value: Optional[float] = None


class CohesionFields(_DomainBag):
    teamwork_rating: float = 7.0
    leadership_rating: Optional[float] = None


class InjuryFields(_DomainBag):
    # injury id -> severity, for injuries still active or recovering
    open_injuries: Dict[str, str] = Field(default_factory=dict)
    season_injury_count: int = Field(default=0, ge=0)
    last_injury_type: Optional[str] = None


class AiFields(_DomainBag):
    overall_rating: Optional[float] = None
    physicality_rating: Optional[float] = None
    skillset_rating: Optional[float] = None
    game_impact_rating: Optional[float] = None
    potential_rating: Optional[float] = None
    summary: Optional[str] = None
    analyses_count: int = Field(default=0, ge=0)
    last_analyzed_at: Optional[datetime] = None


class PhysicalFields(_DomainBag):
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    body_fat_pct: Optional[float] = None


class DerivedValue(BaseModel):
    """A computed field plus the provenance needed to prove it is not stale."""

    value: Any = None
    computed_from: Tuple[str, ...] = ()
    last_computed_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class PlayerRecord(BaseModel):
    """Single player document: source fields grouped by domain plus derived fields."""

    player_id: str = Field(..., min_length=1)
    name: str = ""
    position: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    medical: MedicalFields = Field(default_factory=MedicalFields)
    training: TrainingFields = Field(default_factory=TrainingFields)
    gps: GpsFields = Field(default_factory=GpsFields)
    financial: FinancialFields = Field(default_factory=FinancialFields)
    cohesion: CohesionFields = Field(default_factory=CohesionFields)
    injuries: InjuryFields = Field(default_factory=InjuryFields)
    ai: AiFields = Field(default_factory=AiFields)
    physical: PhysicalFields = Field(default_factory=PhysicalFields)
    derived: Dict[str, DerivedValue] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @staticmethod
    def split_path(path: str) -> Tuple[str, str]:
        domain, sep, name = path.partition(".")
        if not sep or domain not in DOMAINS or not name:
            raise KeyError(f"Not a source field path: {path!r}")
        return domain, name

    @classmethod
    def has_source_field(cls, path: str) -> bool:
        try:
            domain, name = cls.split_path(path)
        except KeyError:
            return False
        bag_type = cls.model_fields[domain].annotation
        return name in bag_type.model_fields

    def get_field(self, name: str) -> Any:
        """Read a source field (``"medical.appointments_missed"``) or a derived field (``"medical_score"``)."""

        if "." in name:
            domain, field_name = self.split_path(name)
            bag = getattr(self, domain)
            if field_name not in type(bag).model_fields:
                raise KeyError(f"Unknown source field: {name!r}")
            return getattr(bag, field_name)
        derived = self.derived.get(name)
        return derived.value if derived is not None else None

    def with_source_changes(self, changes: Mapping[str, Any]) -> "PlayerRecord":
        if not changes:
            return self
        grouped: dict[str, dict[str, Any]] = {}
        for path, value in changes.items():
            domain, field_name = self.split_path(path)
            grouped.setdefault(domain, {})[field_name] = value
        updates: dict[str, Any] = {}
        for domain, values in grouped.items():
            bag = getattr(self, domain)
            unknown = set(values) - set(type(bag).model_fields)
            if unknown:
                raise KeyError(f"Unknown source fields for {domain}: {sorted(unknown)}")
            updates[domain] = bag.model_copy(update=values)
        return self.model_copy(update=updates)

    def with_derived(self, values: Mapping[str, DerivedValue]) -> "PlayerRecord":
        if not values:
            return self
        merged = dict(self.derived)
        merged.update(values)
        return self.model_copy(update={"derived": merged})

    def derived_values(self) -> dict[str, Any]:
        return {name: item.value for name, item in sorted(self.derived.items())}
