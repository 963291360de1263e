"""Update orchestration: validate, cascade, persist, audit."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError

from rosterflow.audit import AuditLog
from rosterflow.config.rules import RuleRegistry, default_registry
from rosterflow.config.schemas import SourceSchema, get_schema, infer_source
from rosterflow.config_loader import EngineSettings
from rosterflow.engine import (
    CascadeComputationError,
    UpdatePlan,
    build_impact_report,
    plan_update,
    recompute_all,
    validate_request,
)
from rosterflow.models import (
    AuditEntry,
    BulkRowResult,
    BulkSummary,
    CommitResult,
    FieldChange,
    ImpactReport,
    PlayerRecord,
    UpdateRequest,
    UpdateSource,
    ValidationIssue,
    ValidationResult,
    utcnow,
)
from rosterflow.persistence import BatchCommitReport, PersistenceError, PlayerStore, WriteOp

from .locks import PlayerLockRegistry


logger = logging.getLogger("uvicorn.error")
logger.setLevel(logging.INFO)

NOTE_SOURCES = {UpdateSource.INJURY, UpdateSource.MEDICAL_APPOINTMENT}

BulkRow = Union[UpdateRequest, Mapping[str, Any]]


def _not_found(player_id: str) -> ValidationIssue:
    return ValidationIssue(field="player_id", reason="PlayerNotFound", message=f"Player {player_id} not found")


def _issues_from_validation_error(exc: ValidationError) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "row"
        reason = "MissingField" if error.get("type") == "missing" else "TypeMismatch"
        issues.append(ValidationIssue(field=location, reason=reason, message=error.get("msg", "")))
    return issues


class UpdateOrchestrator:
    """Facade sequencing validator, cascade engine, store and audit log.

    Updates for one player are serialized through :class:`PlayerLockRegistry`;
    different players proceed in parallel.
    """

    def __init__(
        self,
        store: PlayerStore,
        *,
        settings: EngineSettings | None = None,
        registry: RuleRegistry | None = None,
        audit: AuditLog | None = None,
        locks: PlayerLockRegistry | None = None,
    ):
        self.settings = settings or EngineSettings()
        self.store = store
        self.registry = registry or default_registry()
        self.audit = audit or AuditLog(store, history_limit=self.settings.history_limit, registry=self.registry)
        self.locks = locks or PlayerLockRegistry()

    # ------------------------------------------------------------------
    # onboarding

    def onboard_players(self, records: Iterable[PlayerRecord]) -> BatchCommitReport:
        now = utcnow()
        ops: List[WriteOp] = []
        for record in records:
            outcome = recompute_all(record, self.registry, now)
            ops.append(WriteOp.create_player(record.with_derived(outcome.derived)))
        report = self.store.batch_commit(ops)
        logger.info(
            "Onboarded %d players (%d failed) in %d chunks",
            report.committed_ops,
            report.failed_ops,
            len(report.chunks),
        )
        return report

    # ------------------------------------------------------------------
    # dry runs

    def validate(self, request: UpdateRequest) -> ValidationResult:
        return validate_request(request, get_schema)

    def analyze_impact(
        self,
        player_id: str,
        changes: Mapping[str, Any],
        source: Optional[Union[str, UpdateSource]] = None,
    ) -> ImpactReport:
        """Preview the cascade of ``changes`` without writing anything.

        When ``source`` is omitted it is inferred from the changed field names.
        """

        if source is None:
            source = infer_source(changes)
            if source is None:
                raise ValueError(f"Could not infer an update source for fields: {sorted(changes)}")
        request = UpdateRequest(player_id=player_id, source=source, changes=dict(changes))
        validation = self.validate(request)
        record = self.store.get_player(player_id)
        if record is None:
            return ImpactReport(
                player_id=player_id,
                source=request.source,
                valid=False,
                errors=[_not_found(player_id)] + list(validation.errors),
                warnings=list(validation.warnings),
                direct_updates=sorted(request.changes),
            )
        plan = plan_update(record, request, get_schema(request.source), validation, self.registry)
        return build_impact_report(plan, self.registry)

    # ------------------------------------------------------------------
    # commits

    def submit(self, request: UpdateRequest) -> CommitResult:
        """Run the full pipeline for one update.

        Validation problems and unknown players come back as a failed
        :class:`CommitResult`. :class:`PersistenceError` and
        :class:`CascadeComputationError` propagate; in both cases nothing was
        written.
        """

        update_id = uuid4().hex
        validation = self.validate(request)
        if not validation.valid:
            return CommitResult(
                update_id=update_id,
                player_id=request.player_id,
                success=False,
                errors=list(validation.errors),
                warnings=list(validation.warnings),
            )

        schema = get_schema(request.source)
        with self.locks.hold(request.player_id):
            stored = self.store.load_player(request.player_id)
            if stored is None:
                return CommitResult(
                    update_id=update_id,
                    player_id=request.player_id,
                    success=False,
                    errors=[_not_found(request.player_id)],
                    warnings=list(validation.warnings),
                )
            plan = plan_update(stored.record, request, schema, validation, self.registry)
            self.store.upsert_fields(
                request.player_id,
                plan.source_changes,
                plan.cascade.derived if plan.cascade else {},
                sub_records=self._sub_records(schema, request, update_id),
                expected_version=stored.version,
            )
            # audit sequence must follow commit order for this player
            audited = self.audit.record(self._audit_entries(plan, update_id))

        logger.info(
            "Committed %s update %s for %s: %d direct, %d cascading",
            request.source.value,
            update_id,
            request.player_id,
            len(plan.direct_updates),
            len(plan.cascading_updates),
        )
        return CommitResult(
            update_id=update_id,
            player_id=request.player_id,
            success=True,
            warnings=list(validation.warnings),
            direct_updates=plan.direct_updates,
            cascading_updates=plan.cascading_updates,
            audited=audited,
        )

    def _sub_records(
        self,
        schema: SourceSchema,
        request: UpdateRequest,
        update_id: str,
    ) -> List[Tuple[str, Dict[str, Any]]]:
        rows: List[Tuple[str, Dict[str, Any]]] = []
        if schema.sub_collection:
            row = dict(request.changes)
            if schema.id_field and not row.get(schema.id_field):
                row[schema.id_field] = update_id
            row.update(update_id=update_id, actor=request.actor, recorded_at=request.timestamp)
            rows.append((schema.sub_collection, row))
        note = request.changes.get("notes")
        if note and request.source in NOTE_SOURCES:
            rows.append(
                (
                    "notes",
                    {
                        "update_id": update_id,
                        "source": request.source.value,
                        "note": note,
                        "actor": request.actor,
                        "recorded_at": request.timestamp,
                    },
                )
            )
        return rows

    def _audit_entries(self, plan: UpdatePlan, update_id: str) -> List[AuditEntry]:
        request = plan.request
        changes: List[FieldChange] = plan.direct_updates + plan.cascading_updates
        return [
            AuditEntry(
                update_id=update_id,
                player_id=request.player_id,
                field=change.field,
                before_value=change.before,
                after_value=change.after,
                source=request.source,
                actor=request.actor,
                reason=request.reason,
                rule_id=change.rule_id,
                timestamp=request.timestamp,
            )
            for change in changes
        ]

    # ------------------------------------------------------------------
    # bulk

    def bulk_update(
        self,
        rows: Sequence[BulkRow],
        *,
        cancel_event: threading.Event | None = None,
        job_id: str | None = None,
    ) -> BulkSummary:
        """Apply many updates with per-row isolation.

        Rows for one player run in input order; distinct players run on a
        thread pool. Cancellation is checked before each row: the in-flight
        row finishes and rows never started are reported as ``skipped``.
        """

        total = len(rows)
        if job_id is not None and self.store.get_job(job_id) is None:
            self.store.create_job(job_id=job_id, total_rows=total)
        run_start = time.perf_counter()
        logger.info(
            "Starting bulk update – rows=%s, workers=%s, job=%s",
            total,
            self.settings.max_workers,
            job_id or "-",
        )

        results: List[Optional[BulkRowResult]] = [None] * total
        partitions: "OrderedDict[str, List[Tuple[int, UpdateRequest]]]" = OrderedDict()
        for index, raw in enumerate(rows):
            try:
                request = raw if isinstance(raw, UpdateRequest) else UpdateRequest.model_validate(raw)
            except ValidationError as exc:
                player_id = str(raw.get("player_id", "")) if isinstance(raw, Mapping) else ""
                results[index] = BulkRowResult(
                    row=index,
                    player_id=player_id,
                    success=False,
                    status="failed",
                    errors=_issues_from_validation_error(exc),
                )
                logger.warning("Bulk row %s rejected: malformed request", index)
                continue
            partitions.setdefault(request.player_id, []).append((index, request))

        def should_stop() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            if job_id is not None:
                job = self.store.get_job(job_id)
                return job is not None and job.state == "cancel_requested"
            return False

        def run_partition(items: List[Tuple[int, UpdateRequest]]) -> None:
            for position, (index, request) in enumerate(items):
                if should_stop():
                    for skipped_index, skipped in items[position:]:
                        results[skipped_index] = self._skipped_row(skipped_index, skipped)
                    return
                results[index] = self._run_row(index, request)

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            futures = [pool.submit(run_partition, items) for items in partitions.values()]
            for future in futures:
                future.result()

        final = [result for result in results if result is not None]
        successful = sum(1 for result in final if result.status == "succeeded")
        failed = sum(1 for result in final if result.status == "failed")
        skipped = sum(1 for result in final if result.status == "skipped")
        summary = BulkSummary(
            job_id=job_id,
            processed=successful + failed,
            successful=successful,
            failed=failed,
            skipped=skipped,
            canceled=skipped > 0,
            results=final,
        )
        logger.info(
            "Bulk update finished – processed=%s, successful=%s, failed=%s, skipped=%s (%.2fs)",
            summary.processed,
            successful,
            failed,
            skipped,
            time.perf_counter() - run_start,
        )
        if job_id is not None:
            state = "canceled" if summary.canceled else "completed"
            message = f"{successful} succeeded, {failed} failed, {skipped} skipped"
            self.store.update_job_state(
                job_id,
                state=state,
                message=message,
                summary=summary.model_dump(mode="json", exclude={"results"}),
            )
        return summary

    def _run_row(self, index: int, request: UpdateRequest) -> BulkRowResult:
        try:
            result = self.submit(request)
        except PersistenceError as exc:
            logger.warning("Bulk row %s for %s failed to persist: %s", index, request.player_id, exc)
            return BulkRowResult(
                row=index,
                player_id=request.player_id,
                success=False,
                status="failed",
                errors=[ValidationIssue(field="*", reason="PersistenceError", message=str(exc))],
                retryable=exc.retryable,
            )
        except CascadeComputationError as exc:
            logger.warning("Bulk row %s for %s failed in cascade: %s", index, request.player_id, exc)
            return BulkRowResult(
                row=index,
                player_id=request.player_id,
                success=False,
                status="failed",
                errors=[ValidationIssue(field="*", reason="CascadeComputationError", message=str(exc))],
            )
        if not result.success:
            logger.warning(
                "Bulk row %s for %s rejected: %s",
                index,
                request.player_id,
                ", ".join(f"{issue.field}:{issue.reason}" for issue in result.errors),
            )
        return BulkRowResult(
            row=index,
            player_id=request.player_id,
            success=result.success,
            status="succeeded" if result.success else "failed",
            errors=result.errors,
            warnings=result.warnings,
            cascading_updates=result.cascading_updates,
        )

    @staticmethod
    def _skipped_row(index: int, request: UpdateRequest) -> BulkRowResult:
        return BulkRowResult(
            row=index,
            player_id=request.player_id,
            success=False,
            status="skipped",
            errors=[ValidationIssue(field="*", reason="Canceled", message="Not started: bulk update canceled")],
        )
