"""Dry-run planning shared by impact analysis and the commit path."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rosterflow.config.rules import RuleRegistry
from rosterflow.config.schemas import SourceSchema
from rosterflow.models import FieldChange, ImpactReport, PlayerRecord, UpdateRequest, ValidationResult

from .cascade import CascadeOutcome, run_cascade


MEDIUM_RISK_CASCADE_COUNT = 2


@dataclass
class UpdatePlan:
    """Everything a commit would write, computed without touching the store."""

    request: UpdateRequest
    validation: ValidationResult
    before: PlayerRecord
    after: PlayerRecord
    source_changes: Dict[str, Any] = field(default_factory=dict)
    direct_updates: List[FieldChange] = field(default_factory=list)
    cascade: Optional[CascadeOutcome] = None

    @property
    def valid(self) -> bool:
        return self.validation.valid

    @property
    def cascading_updates(self) -> List[FieldChange]:
        return list(self.cascade.changes) if self.cascade else []


def fold_source_changes(
    record: PlayerRecord,
    request: UpdateRequest,
    schema: SourceSchema,
) -> Dict[str, Any]:
    """Translate request changes into source-field assignments, dropping no-ops."""

    folded = schema.fold(request.changes, record, request.timestamp)
    return {path: value for path, value in folded.items() if record.get_field(path) != value}


def plan_update(
    record: PlayerRecord,
    request: UpdateRequest,
    schema: SourceSchema,
    validation: ValidationResult,
    registry: RuleRegistry,
) -> UpdatePlan:
    plan = UpdatePlan(request=request, validation=validation, before=record, after=record)
    if not validation.valid:
        return plan

    source_changes = fold_source_changes(record, request, schema)
    plan.source_changes = source_changes
    plan.direct_updates = [
        FieldChange(field=path, before=record.get_field(path), after=value)
        for path, value in sorted(source_changes.items())
    ]
    updated = record.with_source_changes(source_changes)
    plan.cascade = run_cascade(updated, source_changes.keys(), registry, request.timestamp)
    plan.after = plan.cascade.record
    return plan


def risk_level(plan: UpdatePlan, registry: RuleRegistry) -> str:
    if plan.cascade is None:
        return "low"
    if any(registry.get(rule_id).high_impact for rule_id in plan.cascade.fired_rules):
        return "high"
    if len(plan.cascade.changes) >= MEDIUM_RISK_CASCADE_COUNT:
        return "medium"
    return "low"


def affected_subsystems(plan: UpdatePlan, registry: RuleRegistry) -> List[str]:
    subsystems: List[str] = []
    for change in plan.cascading_updates:
        label = registry.get(change.rule_id).subsystem
        if label and label not in subsystems:
            subsystems.append(label)
    return subsystems


def build_impact_report(plan: UpdatePlan, registry: RuleRegistry) -> ImpactReport:
    request = plan.request
    return ImpactReport(
        player_id=request.player_id,
        source=request.source,
        valid=plan.valid,
        errors=list(plan.validation.errors),
        warnings=list(plan.validation.warnings),
        direct_updates=sorted(request.changes),
        cascading_updates=[change.field for change in plan.cascading_updates],
        affected_subsystems=affected_subsystems(plan, registry),
        risk_level=risk_level(plan, registry),
        changes=plan.direct_updates + plan.cascading_updates,
    )
