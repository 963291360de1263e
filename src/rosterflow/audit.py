"""Append-only audit log and read-only integrity reporting."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from rosterflow.config.rules import RuleRegistry, default_registry
from rosterflow.engine.cascade import stale_derived_fields
from rosterflow.models import AuditEntry, PlayerRecord, utcnow
from rosterflow.persistence import PlayerStore, WriteOp


logger = logging.getLogger(__name__)

AI_ANALYSIS_MAX_AGE = timedelta(days=30)
ISSUE_PENALTY = 10


class IntegrityReport(BaseModel):
    player_id: str
    generated_at: datetime
    total_updates: int
    total_field_changes: int
    open_injuries: int
    recent_ai_analyses: int
    last_updated: Dict[str, datetime] = Field(default_factory=dict)
    stale_derived_fields: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    consistency_score: int = 100


class AuditLog:
    def __init__(
        self,
        store: PlayerStore,
        *,
        history_limit: int = 50,
        registry: RuleRegistry | None = None,
    ):
        self.store = store
        self.history_limit = history_limit
        self.registry = registry or default_registry()

    def record(self, entries: Iterable[AuditEntry]) -> bool:
        """Persist audit rows; returns False (and logs) instead of raising on failure."""

        ops = [WriteOp.append_audit(entry) for entry in entries]
        if not ops:
            return True
        report = self.store.batch_commit(ops)
        if not report.ok:
            logger.warning(
                "Audit write incomplete: %d of %d entries not recorded",
                report.failed_ops,
                len(ops),
            )
            return False
        return True

    def history(self, player_id: str, limit: Optional[int] = None) -> List[AuditEntry]:
        return self.store.list_audit(player_id, limit=limit or self.history_limit)

    def integrity_report(self, player_id: str, *, now: Optional[datetime] = None) -> IntegrityReport:
        record = self.store.get_player(player_id)
        if record is None:
            raise KeyError(f"Player {player_id} not found")
        now = now or utcnow()
        total_updates, total_field_changes = self.store.audit_counts(player_id)
        recent_ai = self.store.count_sub_records(player_id, "ai_analyses", since=now - AI_ANALYSIS_MAX_AGE)
        stale = stale_derived_fields(record, self.registry)
        issues, recommendations = self._consistency_checks(record, stale, now)
        return IntegrityReport(
            player_id=player_id,
            generated_at=now,
            total_updates=total_updates,
            total_field_changes=total_field_changes,
            open_injuries=len(record.injuries.open_injuries),
            recent_ai_analyses=recent_ai,
            last_updated=self._last_updated_by_domain(player_id),
            stale_derived_fields=stale,
            issues=issues,
            recommendations=recommendations,
            consistency_score=max(0, 100 - ISSUE_PENALTY * len(issues)),
        )

    def _last_updated_by_domain(self, player_id: str) -> Dict[str, datetime]:
        latest: Dict[str, datetime] = {}
        for field_name, stamp in self.store.audit_last_updated(player_id).items():
            domain = field_name.partition(".")[0] if "." in field_name else "derived"
            if domain not in latest or stamp > latest[domain]:
                latest[domain] = stamp
        return dict(sorted(latest.items()))

    def _consistency_checks(
        self,
        record: PlayerRecord,
        stale: List[str],
        now: datetime,
    ) -> tuple[List[str], List[str]]:
        issues: List[str] = []
        recommendations: List[str] = []

        if record.get_field("medical_status") == "cleared" and record.injuries.open_injuries:
            issues.append("Medical status shows cleared but active injuries exist")
            recommendations.append("Review and update medical status or injury records")

        analyzed_at = record.ai.last_analyzed_at
        if analyzed_at is not None:
            if analyzed_at.tzinfo is None:
                analyzed_at = analyzed_at.replace(tzinfo=timezone.utc)
            if now - analyzed_at > AI_ANALYSIS_MAX_AGE:
                issues.append("AI rating has not been updated in over 30 days")
                recommendations.append("Schedule AI rating refresh")

        if record.physical.weight_kg is None or record.physical.height_cm is None:
            issues.append("No recent physical attributes recorded")
            recommendations.append("Schedule physical assessment")

        if record.gps.total_distance is None:
            issues.append("No GPS session data recorded")
            recommendations.append("Sync the latest GPS sessions")

        if stale:
            issues.append(f"Derived fields out of date: {', '.join(stale)}")
            recommendations.append("Recompute derived fields for this player")

        return issues, recommendations
