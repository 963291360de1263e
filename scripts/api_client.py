"""Lightweight REST client for the rosterflow API."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import httpx


def parse_changes(raw: str) -> dict:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid changes JSON: {exc}") from exc


def _show(resp: httpx.Response) -> None:
    if resp.status_code == 404:
        raise SystemExit(resp.json().get("detail", "not found"))
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Interact with the rosterflow REST API")
    parser.add_argument("base_url", help="Base URL of the API, e.g. http://localhost:8000")
    parser.add_argument("--player", help="Player ID for update, impact, history and report calls")
    parser.add_argument("--source", help="Update source, e.g. medical_appointment")
    parser.add_argument("--changes", default="", help="JSON object of field changes")
    parser.add_argument("--actor", default="api-client", help="Actor recorded in the audit log")
    parser.add_argument("--dry-run", action="store_true", help="Validate and preview impact without committing")
    parser.add_argument("--onboard", type=Path, metavar="PLAYERS_JSON", help="Create players from a JSON list")
    parser.add_argument("--bulk", type=Path, metavar="ROWS_JSON", help="Submit a JSON list of update rows")
    parser.add_argument("--history", action="store_true", help="Print audit history for --player")
    parser.add_argument("--report", action="store_true", help="Print integrity report for --player")
    parser.add_argument("--list-jobs", action="store_true", help="List recent bulk jobs")
    parser.add_argument("--cancel-job", metavar="JOB_ID", help="Request cancellation of a bulk job")
    args = parser.parse_args()

    with httpx.Client(base_url=args.base_url, timeout=60.0) as client:
        if args.onboard:
            players = json.loads(args.onboard.read_text(encoding="utf-8"))
            _show(client.post("/players", json={"players": players}))
            return
        if args.bulk:
            rows = json.loads(args.bulk.read_text(encoding="utf-8"))
            _show(client.post("/updates/bulk", json={"rows": rows}))
            return
        if args.list_jobs:
            _show(client.get("/bulk/jobs"))
            return
        if args.cancel_job:
            _show(client.post(f"/bulk/jobs/{args.cancel_job}/cancel"))
            return

        if not args.player:
            raise SystemExit("--player is required for update, history and report calls")
        if args.history:
            _show(client.get(f"/players/{args.player}/history"))
            return
        if args.report:
            _show(client.get(f"/players/{args.player}/integrity-report"))
            return

        changes = parse_changes(args.changes)
        if not changes:
            raise SystemExit("--changes is required")
        if args.dry_run:
            impact = {"player_id": args.player, "changes": changes}
            if args.source:
                impact["source"] = args.source
            _show(client.post("/updates/impact", json=impact))
            return
        if not args.source:
            raise SystemExit("--source is required to submit an update")
        _show(
            client.post(
                "/updates",
                json={"player_id": args.player, "source": args.source, "changes": changes, "actor": args.actor},
            )
        )


if __name__ == "__main__":
    main()
