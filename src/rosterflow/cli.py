"""Command-line interface for onboarding players and applying updates."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from rosterflow.config_loader import EngineSettings
from rosterflow.models import PlayerRecord, UpdateRequest
from rosterflow.orchestrator import UpdateOrchestrator
from rosterflow.persistence import PersistenceError, PlayerStore


def _add_update_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--player", required=True, help="Player ID")
    parser.add_argument("--source", required=True, help="Update source (e.g., medical_appointment)")
    parser.add_argument("--changes", required=True, help="JSON object of field changes")
    parser.add_argument("--actor", default="cli", help="Who is making the change")
    parser.add_argument("--reason", default=None, help="Optional reason recorded in the audit log")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply cascading player data updates")
    parser.add_argument("--profile", type=Path, default=None, help="Load engine settings JSON")
    parser.add_argument("--save-profile", type=Path, default=None, help="Save the resolved settings JSON")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides profile and env)")
    sub = parser.add_subparsers(dest="command", required=True)

    onboard = sub.add_parser("onboard", help="Create players from a JSON list")
    onboard.add_argument("players", type=Path, help="Path to players JSON")

    _add_update_arguments(sub.add_parser("submit", help="Validate, cascade and commit one update"))
    _add_update_arguments(sub.add_parser("validate", help="Dry-run validation of one update"))

    impact = sub.add_parser("impact", help="Preview the cascade of a change set")
    impact.add_argument("--player", required=True, help="Player ID")
    impact.add_argument("--changes", required=True, help="JSON object of field changes")
    impact.add_argument("--source", default=None, help="Update source (inferred when omitted)")

    bulk = sub.add_parser("bulk", help="Apply a JSON list of update requests")
    bulk.add_argument("rows", type=Path, help="Path to update rows JSON")
    bulk.add_argument("--job-id", default=None, help="Track the run as a bulk job")

    history = sub.add_parser("history", help="Show audit history for a player")
    history.add_argument("--player", required=True, help="Player ID")
    history.add_argument("--limit", type=int, default=None, help="Maximum entries to show")

    report = sub.add_parser("report", help="Integrity report for a player")
    report.add_argument("--player", required=True, help="Player ID")

    serve = sub.add_parser("serve", help="Run the REST API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def _load_json(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON: {exc}") from exc


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _resolve_settings(args: argparse.Namespace) -> EngineSettings:
    settings = EngineSettings.resolve(args.profile)
    if args.db:
        settings.db_path = args.db
    if args.save_profile:
        settings.save(args.save_profile)
        print(f"Settings saved to {args.save_profile}")
    return settings


def _build_request(args: argparse.Namespace) -> UpdateRequest:
    try:
        return UpdateRequest(
            player_id=args.player,
            source=args.source,
            changes=_load_json(args.changes),
            actor=args.actor,
            reason=args.reason,
        )
    except ValidationError as exc:
        raise SystemExit(f"Invalid update request: {exc}") from exc


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = _parse_args(argv)
    settings = _resolve_settings(args)

    if args.command == "serve":
        import uvicorn

        from rosterflow.api import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return

    store = PlayerStore(settings.db_path, batch_size=settings.batch_size, write_timeout=settings.write_timeout)
    orchestrator = UpdateOrchestrator(store, settings=settings)

    if args.command == "onboard":
        rows = _load_json(args.players.read_text(encoding="utf-8"))
        records = [PlayerRecord.model_validate(row) for row in rows]
        report = orchestrator.onboard_players(records)
        print(f"Onboarded {report.committed_ops} players ({report.failed_ops} failed)")
        for chunk in report.chunks:
            if not chunk.committed:
                print(f"  chunk {chunk.index}: {chunk.error}")
    elif args.command == "submit":
        try:
            result = orchestrator.submit(_build_request(args))
        except PersistenceError as exc:
            hint = "retry later" if exc.retryable else "not retryable"
            raise SystemExit(f"Update not persisted ({hint}): {exc}") from exc
        _print(result.model_dump(mode="json"))
        if not result.success:
            raise SystemExit(1)
    elif args.command == "validate":
        result = orchestrator.validate(_build_request(args))
        _print({"valid": result.valid, **result.model_dump(mode="json")})
    elif args.command == "impact":
        try:
            report = orchestrator.analyze_impact(args.player, _load_json(args.changes), args.source)
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
        _print(report.model_dump(mode="json"))
    elif args.command == "bulk":
        rows = _load_json(args.rows.read_text(encoding="utf-8"))
        summary = orchestrator.bulk_update(rows, job_id=args.job_id)
        _print(summary.model_dump(mode="json"))
    elif args.command == "history":
        entries = orchestrator.audit.history(args.player, limit=args.limit)
        _print([entry.model_dump(mode="json") for entry in entries])
    elif args.command == "report":
        try:
            report = orchestrator.audit.integrity_report(args.player)
        except KeyError as exc:
            raise SystemExit(str(exc)) from exc
        _print(report.model_dump(mode="json"))


if __name__ == "__main__":
    main()
