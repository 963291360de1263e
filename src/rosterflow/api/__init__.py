"""REST API for the rosterflow update engine."""

from __future__ import annotations

from typing import List
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query
from fastapi.concurrency import run_in_threadpool

from rosterflow.api.schemas import (
    BulkJobResponse,
    BulkUpdatePayload,
    ChunkResponse,
    DerivedFieldResponse,
    ImpactPayload,
    OnboardRequest,
    OnboardResponse,
    PlayerResponse,
    UpdatePayload,
    ValidateResponse,
)
from rosterflow.audit import IntegrityReport
from rosterflow.config_loader import EngineSettings
from rosterflow.engine import CascadeComputationError
from rosterflow.models import DOMAINS, AuditEntry, BulkSummary, CommitResult, ImpactReport, PlayerRecord
from rosterflow.orchestrator import UpdateOrchestrator
from rosterflow.persistence import BulkJob, PersistenceError, PlayerStore


def player_to_response(record: PlayerRecord) -> PlayerResponse:
    return PlayerResponse(
        player_id=record.player_id,
        name=record.name,
        position=record.position,
        created_at=record.created_at,
        source={domain: getattr(record, domain).model_dump(mode="json") for domain in DOMAINS},
        derived={
            name: DerivedFieldResponse(
                value=item.value,
                computed_from=list(item.computed_from),
                last_computed_at=item.last_computed_at,
            )
            for name, item in sorted(record.derived.items())
        },
    )


def job_to_response(job: BulkJob) -> BulkJobResponse:
    return BulkJobResponse(
        job_id=job.job_id,
        state=job.state,
        total_rows=job.total_rows,
        message=job.message,
        created_at=job.created_at,
        updated_at=job.updated_at,
        cancel_requested_at=job.cancel_requested_at,
        completed_at=job.completed_at,
        summary=job.summary,
    )


def _persistence_http_error(exc: PersistenceError) -> HTTPException:
    return HTTPException(status_code=503 if exc.retryable else 409, detail=str(exc))


def create_app(settings: EngineSettings | None = None) -> FastAPI:
    settings = settings or EngineSettings.resolve()
    app = FastAPI(title="rosterflow")
    store = PlayerStore(
        settings.db_path,
        batch_size=settings.batch_size,
        write_timeout=settings.write_timeout,
    )
    orchestrator = UpdateOrchestrator(store, settings=settings)
    app.state.settings = settings
    app.state.player_store = store
    app.state.orchestrator = orchestrator

    def _fetch_player_or_404(player_id: str) -> PlayerRecord:
        record = store.get_player(player_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Player not found")
        return record

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/players", response_model=OnboardResponse)
    async def onboard(payload: OnboardRequest) -> OnboardResponse:
        records = [player.to_record() for player in payload.players]
        report = await run_in_threadpool(orchestrator.onboard_players, records)
        return OnboardResponse(
            committed=report.committed_ops,
            failed=report.failed_ops,
            chunks=[
                ChunkResponse(
                    index=chunk.index,
                    size=chunk.size,
                    committed=chunk.committed,
                    error=chunk.error,
                    retryable=chunk.retryable,
                )
                for chunk in report.chunks
            ],
        )

    @app.get("/players", response_model=List[PlayerResponse])
    async def list_players(limit: int = Query(100, ge=1, le=1000)):
        return [player_to_response(record) for record in store.list_players(limit=limit)]

    @app.get("/players/{player_id}", response_model=PlayerResponse)
    async def get_player(player_id: str):
        return player_to_response(_fetch_player_or_404(player_id))

    @app.get("/players/{player_id}/history", response_model=List[AuditEntry])
    async def history(player_id: str, limit: int | None = Query(None, ge=1, le=1000)):
        _fetch_player_or_404(player_id)
        return orchestrator.audit.history(player_id, limit=limit)

    @app.get("/players/{player_id}/integrity-report", response_model=IntegrityReport)
    async def integrity_report(player_id: str):
        _fetch_player_or_404(player_id)
        return orchestrator.audit.integrity_report(player_id)

    @app.post("/updates", response_model=CommitResult)
    async def submit(payload: UpdatePayload) -> CommitResult:
        try:
            result = await run_in_threadpool(orchestrator.submit, payload.to_request())
        except PersistenceError as exc:
            raise _persistence_http_error(exc) from exc
        except CascadeComputationError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        if any(issue.reason == "PlayerNotFound" for issue in result.errors):
            raise HTTPException(status_code=404, detail="Player not found")
        return result

    @app.post("/updates/validate", response_model=ValidateResponse)
    async def validate(payload: UpdatePayload) -> ValidateResponse:
        result = orchestrator.validate(payload.to_request())
        return ValidateResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)

    @app.post("/updates/impact", response_model=ImpactReport)
    async def impact(payload: ImpactPayload) -> ImpactReport:
        try:
            report = orchestrator.analyze_impact(payload.player_id, payload.changes, payload.source)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CascadeComputationError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        if any(issue.reason == "PlayerNotFound" for issue in report.errors):
            raise HTTPException(status_code=404, detail="Player not found")
        return report

    @app.post("/updates/bulk", response_model=BulkSummary)
    async def bulk(payload: BulkUpdatePayload) -> BulkSummary:
        job_id = payload.job_id or uuid4().hex
        if store.get_job(job_id) is not None:
            raise HTTPException(status_code=409, detail=f"Bulk job {job_id} already exists")
        store.create_job(job_id=job_id, total_rows=len(payload.rows))
        try:
            return await run_in_threadpool(orchestrator.bulk_update, payload.rows, job_id=job_id)
        except Exception as exc:
            store.update_job_state(job_id, state="failed", message=str(exc))
            raise

    @app.get("/bulk/jobs", response_model=List[BulkJobResponse])
    async def list_jobs(limit: int = Query(50, ge=1, le=500)):
        return [job_to_response(job) for job in store.list_jobs(limit=limit)]

    @app.get("/bulk/jobs/{job_id}", response_model=BulkJobResponse)
    async def get_job(job_id: str):
        job = store.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Bulk job not found")
        return job_to_response(job)

    @app.post("/bulk/jobs/{job_id}/cancel", response_model=BulkJobResponse)
    async def cancel_job(job_id: str):
        job = store.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Bulk job not found")
        if job.state in {"completed", "failed", "canceled"}:
            return job_to_response(job)
        updated = store.mark_job_cancel_requested(job_id, message=job.message or "Cancellation requested")
        return job_to_response(updated)

    return app


__all__ = ["create_app", "job_to_response", "player_to_response"]
