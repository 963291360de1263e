"""Pydantic models shared across the engine, store and API."""

from .player import (
    DOMAINS,
    AiFields,
    CohesionFields,
    DerivedValue,
    FinancialFields,
    GpsFields,
    InjuryFields,
    MedicalFields,
    PhysicalFields,
    PlayerRecord,
    TrainingFields,
)
from .update import (
    AuditEntry,
    BulkRowResult,
    BulkSummary,
    CommitResult,
    FieldChange,
    ImpactReport,
    UpdateRequest,
    UpdateSource,
    ValidationIssue,
    ValidationResult,
    utcnow,
)

__all__ = [
    "DOMAINS",
    "AiFields",
    "AuditEntry",
    "BulkRowResult",
    "BulkSummary",
    "CohesionFields",
    "CommitResult",
    "DerivedValue",
    "FieldChange",
    "FinancialFields",
    "GpsFields",
    "ImpactReport",
    "InjuryFields",
    "MedicalFields",
    "PhysicalFields",
    "PlayerRecord",
    "TrainingFields",
    "UpdateRequest",
    "UpdateSource",
    "ValidationIssue",
    "ValidationResult",
    "utcnow",
]
