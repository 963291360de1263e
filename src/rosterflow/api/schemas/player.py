from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from rosterflow.models import (
    AiFields,
    CohesionFields,
    FinancialFields,
    GpsFields,
    InjuryFields,
    MedicalFields,
    PhysicalFields,
    PlayerRecord,
    TrainingFields,
)


class PlayerCreateRequest(BaseModel):
    player_id: str = Field(..., min_length=1)
    name: str = ""
    position: str = ""
    medical: MedicalFields = Field(default_factory=MedicalFields)
    training: TrainingFields = Field(default_factory=TrainingFields)
    gps: GpsFields = Field(default_factory=GpsFields)
    financial: FinancialFields = Field(default_factory=FinancialFields)
    cohesion: CohesionFields = Field(default_factory=CohesionFields)
    injuries: InjuryFields = Field(default_factory=InjuryFields)
    ai: AiFields = Field(default_factory=AiFields)
    physical: PhysicalFields = Field(default_factory=PhysicalFields)

    def to_record(self) -> PlayerRecord:
        return PlayerRecord(**self.model_dump())


class OnboardRequest(BaseModel):
    players: List[PlayerCreateRequest] = Field(..., min_length=1)


class ChunkResponse(BaseModel):
    index: int
    size: int
    committed: bool
    error: str | None = None
    retryable: bool = False


class OnboardResponse(BaseModel):
    committed: int
    failed: int
    chunks: List[ChunkResponse]


class DerivedFieldResponse(BaseModel):
    value: Any = None
    computed_from: List[str] = Field(default_factory=list)
    last_computed_at: datetime | None = None


class PlayerResponse(BaseModel):
    player_id: str
    name: str
    position: str
    created_at: datetime
    source: Dict[str, Dict[str, Any]]
    derived: Dict[str, DerivedFieldResponse]
