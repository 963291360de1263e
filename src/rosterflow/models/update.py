"""Request, result and audit models passed between engine stages."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UpdateSource(str, Enum):
    MEDICAL_APPOINTMENT = "medical_appointment"
    TRAINING_ATTENDANCE = "training_attendance"
    INJURY = "injury"
    GPS_SESSION = "gps_session"
    AI_ANALYSIS = "ai_analysis"
    CSV_ROW = "csv_row"
    EXTERNAL_SYNC = "external_sync"
    MANUAL_VALUE_OVERRIDE = "manual_value_override"


class UpdateRequest(BaseModel):
    """One change to a player's source of truth, as handed over by a front end."""

    player_id: str = Field(..., min_length=1)
    source: UpdateSource
    changes: Dict[str, Any] = Field(default_factory=dict)
    actor: str = "system"
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


IssueReason = Literal[
    "MissingField",
    "TypeMismatch",
    "UnknownField",
    "OutOfRange",
    "PlayerNotFound",
    "PersistenceError",
    "CascadeComputationError",
    "Canceled",
]


class ValidationIssue(BaseModel):
    field: str
    reason: IssueReason
    message: str = ""

    model_config = ConfigDict(frozen=True)


class ValidationResult(BaseModel):
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def valid(self) -> bool:
        return not self.errors


class FieldChange(BaseModel):
    """Before/after value of one field; ``rule_id`` is None for direct (source) changes."""

    field: str
    before: Any = None
    after: Any = None
    rule_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class AuditEntry(BaseModel):
    update_id: str
    player_id: str
    field: str
    before_value: Any = None
    after_value: Any = None
    source: UpdateSource
    actor: str
    reason: Optional[str] = None
    rule_id: Optional[str] = None
    timestamp: datetime
    sequence: Optional[int] = None

    model_config = ConfigDict(frozen=True)


RiskLevel = Literal["low", "medium", "high"]


class ImpactReport(BaseModel):
    player_id: str
    source: UpdateSource
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    direct_updates: List[str] = Field(default_factory=list)
    cascading_updates: List[str] = Field(default_factory=list)
    affected_subsystems: List[str] = Field(default_factory=list)
    risk_level: RiskLevel = "low"
    changes: List[FieldChange] = Field(default_factory=list)


class CommitResult(BaseModel):
    update_id: str
    player_id: str
    success: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    direct_updates: List[FieldChange] = Field(default_factory=list)
    cascading_updates: List[FieldChange] = Field(default_factory=list)
    audited: bool = False


RowStatus = Literal["succeeded", "failed", "skipped"]


class BulkRowResult(BaseModel):
    row: int
    player_id: str
    success: bool
    status: RowStatus
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    cascading_updates: List[FieldChange] = Field(default_factory=list)
    retryable: bool = False


class BulkSummary(BaseModel):
    job_id: Optional[str] = None
    processed: int
    successful: int
    failed: int
    skipped: int = 0
    canceled: bool = False
    results: List[BulkRowResult] = Field(default_factory=list)
