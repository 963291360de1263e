import threading
import time

import pytest

from rosterflow.engine import CascadeComputationError
from rosterflow.models import UpdateRequest, UpdateSource
from rosterflow.orchestrator import UpdateOrchestrator
from rosterflow.persistence import PersistenceError, PlayerStore

from tests.fixtures import gps_session, make_player, missed_appointment, severe_injury


def _attendance_row(player_id: str, status: str = "present") -> dict:
    return {
        "player_id": player_id,
        "source": "training_attendance",
        "changes": {"status": status, "session_type": "team_training"},
    }


def test_onboarding_computes_derived_fields(onboarded: UpdateOrchestrator):
    record = onboarded.store.get_player("p1")
    assert record.get_field("attendance_score") == 9.2
    assert record.get_field("player_value") == 147000
    assert record.get_field("selection_risk") == "low"


def test_submit_missed_appointment_commits_and_audits(onboarded: UpdateOrchestrator):
    request = missed_appointment()
    result = onboarded.submit(request)

    assert result.success
    assert result.audited
    assert [change.field for change in result.cascading_updates] == [
        "attendance_score",
        "medical_score",
        "player_value",
        "cohesion_reliability",
    ]
    record = onboarded.store.get_player("p1")
    assert record.medical.appointments_missed == 1
    assert record.get_field("player_value") == 143500
    # every derived field fed by a changed input carries the update timestamp
    for name in ("attendance_score", "medical_score", "player_value", "cohesion_reliability"):
        assert record.derived[name].last_computed_at >= request.timestamp

    history = onboarded.audit.history("p1")
    assert {entry.update_id for entry in history} == {result.update_id}
    assert len(history) == len(result.direct_updates) + len(result.cascading_updates)
    assert onboarded.store.count_sub_records("p1", "appointments") == 1


def test_unknown_field_mutates_nothing(onboarded: UpdateOrchestrator):
    before = onboarded.store.get_player("p1")
    result = onboarded.submit(
        UpdateRequest(player_id="p1", source=UpdateSource.CSV_ROW, changes={"unknownField": 1})
    )

    assert not result.success
    assert [(issue.field, issue.reason) for issue in result.errors] == [("unknownField", "UnknownField")]
    assert onboarded.store.get_player("p1") == before
    assert onboarded.audit.history("p1") == []


def test_warnings_do_not_block(onboarded: UpdateOrchestrator):
    result = onboarded.submit(gps_session(16500))

    assert result.success
    assert [issue.reason for issue in result.warnings] == ["OutOfRange"]
    assert onboarded.store.get_player("p1").gps.total_distance == 16500.0


def test_unknown_player_reported(orchestrator: UpdateOrchestrator):
    result = orchestrator.submit(missed_appointment("ghost"))
    assert not result.success
    assert [issue.reason for issue in result.errors] == ["PlayerNotFound"]


def test_injury_writes_injury_and_note_rows(onboarded: UpdateOrchestrator):
    result = onboarded.submit(severe_injury())

    assert result.success
    record = onboarded.store.get_player("p1")
    assert record.get_field("medical_status") == "unavailable"
    assert record.get_field("selection_risk") == "high"
    injuries = onboarded.store.list_sub_records("p1", "injuries")
    notes = onboarded.store.list_sub_records("p1", "notes")
    assert injuries[0].record["injury_id"] == "inj-1"
    assert notes[0].record["note"] == "Grade 2 strain"


def test_clearing_injury_restores_availability(onboarded: UpdateOrchestrator):
    onboarded.submit(severe_injury())
    cleared = severe_injury().model_copy(
        update={"changes": {"injury_id": "inj-1", "injury_type": "hamstring", "severity": "severe", "status": "cleared"}}
    )
    result = onboarded.submit(cleared)

    assert result.success
    record = onboarded.store.get_player("p1")
    assert record.injuries.open_injuries == {}
    assert record.injuries.season_injury_count == 3
    assert record.get_field("medical_status") == "cleared"
    assert record.get_field("availability_status") == "available"


def test_impact_analysis_does_not_write(onboarded: UpdateOrchestrator):
    report = onboarded.analyze_impact("p1", {"status": "missed"})

    assert report.source == UpdateSource.MEDICAL_APPOINTMENT
    assert report.valid
    assert report.risk_level == "high"
    assert report.cascading_updates == ["attendance_score", "medical_score", "player_value", "cohesion_reliability"]
    assert onboarded.store.get_player("p1").medical.appointments_missed == 0
    assert onboarded.audit.history("p1") == []


def test_impact_analysis_low_and_medium_risk(onboarded: UpdateOrchestrator):
    low = onboarded.analyze_impact("p1", {"teamwork_rating": 8.7}, source="manual_value_override")
    assert low.risk_level == "low"
    assert low.cascading_updates == []

    medium = onboarded.analyze_impact("p1", {"base_value": 70000, "teamwork_rating": 9.2}, source="manual_value_override")
    assert medium.cascading_updates == ["player_value", "cohesion_reliability"]
    assert medium.risk_level == "medium"


def test_impact_analysis_requires_inferable_source(onboarded: UpdateOrchestrator):
    with pytest.raises(ValueError):
        onboarded.analyze_impact("p1", {"favourite_colour": "green"})


def test_bulk_isolates_malformed_row(onboarded: UpdateOrchestrator):
    onboarded.onboard_players([make_player(f"p{i}") for i in range(2, 6)])
    rows = [_attendance_row(f"p{1 + i % 5}", "absent" if i % 3 == 0 else "present") for i in range(10)]
    rows[6] = _attendance_row("p2", "asleep")

    summary = onboarded.bulk_update(rows)

    assert (summary.processed, summary.successful, summary.failed) == (10, 9, 1)
    assert [result.row for result in summary.results] == list(range(10))
    failed = summary.results[6]
    assert failed.status == "failed"
    assert [(issue.field, issue.reason) for issue in failed.errors] == [("status", "TypeMismatch")]
    assert all(result.success for index, result in enumerate(summary.results) if index != 6)


def test_bulk_reports_unparseable_rows(onboarded: UpdateOrchestrator):
    rows = [_attendance_row("p1"), {"player_id": "p1", "source": "carrier_pigeon", "changes": {}}]

    summary = onboarded.bulk_update(rows)

    assert (summary.successful, summary.failed) == (1, 1)
    assert summary.results[1].errors[0].field == "source"


def test_bulk_preserves_per_player_order(onboarded: UpdateOrchestrator):
    rows = [_attendance_row("p1", status) for status in ("absent", "late", "present", "absent")]
    summary = onboarded.bulk_update(rows)

    assert summary.successful == 4
    record = onboarded.store.get_player("p1")
    assert record.training.sessions_total == 29
    assert record.training.sessions_absent == 4
    assert record.training.sessions_late == 1
    assert record.training.last_session_status == "absent"


def test_bulk_cancel_event_skips_unstarted_rows(onboarded: UpdateOrchestrator):
    cancel = threading.Event()
    cancel.set()

    summary = onboarded.bulk_update([_attendance_row("p1"), _attendance_row("p1")], cancel_event=cancel)

    assert summary.canceled
    assert (summary.processed, summary.skipped) == (0, 2)
    assert {result.status for result in summary.results} == {"skipped"}
    assert onboarded.store.get_player("p1").training.sessions_total == 25


class _CancelAfterFirstWrite(PlayerStore):
    def __init__(self, *args, cancel: threading.Event, **kwargs):
        super().__init__(*args, **kwargs)
        self.cancel = cancel

    def upsert_fields(self, *args, **kwargs):
        version = super().upsert_fields(*args, **kwargs)
        self.cancel.set()
        return version


def test_bulk_cancel_finishes_in_flight_row(tmp_path, settings):
    cancel = threading.Event()
    store = _CancelAfterFirstWrite(tmp_path / "cancel.sqlite", cancel=cancel)
    orchestrator = UpdateOrchestrator(store, settings=settings)
    orchestrator.onboard_players([make_player("p1")])

    summary = orchestrator.bulk_update([_attendance_row("p1") for _ in range(3)], cancel_event=cancel)

    assert [result.status for result in summary.results] == ["succeeded", "skipped", "skipped"]
    assert store.get_player("p1").training.sessions_total == 26


def test_bulk_job_cancel_requested_before_start(onboarded: UpdateOrchestrator):
    onboarded.store.create_job(job_id="job-1", total_rows=2)
    onboarded.store.mark_job_cancel_requested("job-1")

    summary = onboarded.bulk_update([_attendance_row("p1"), _attendance_row("p1")], job_id="job-1")

    assert summary.canceled
    job = onboarded.store.get_job("job-1")
    assert job.state == "canceled"
    assert job.summary["skipped"] == 2


def test_bulk_job_completes(onboarded: UpdateOrchestrator):
    summary = onboarded.bulk_update([_attendance_row("p1")], job_id="job-2")

    assert summary.job_id == "job-2"
    job = onboarded.store.get_job("job-2")
    assert job.state == "completed"
    assert job.summary["successful"] == 1


class _UnavailableStore(PlayerStore):
    def upsert_fields(self, *args, **kwargs):
        raise PersistenceError("database is locked", retryable=True)


def test_persistence_error_propagates_and_is_isolated_in_bulk(tmp_path, settings):
    store = _UnavailableStore(tmp_path / "down.sqlite")
    orchestrator = UpdateOrchestrator(store, settings=settings)
    orchestrator.onboard_players([make_player("p1")])

    with pytest.raises(PersistenceError):
        orchestrator.submit(missed_appointment())

    summary = orchestrator.bulk_update([_attendance_row("p1")])
    result = summary.results[0]
    assert result.status == "failed"
    assert result.retryable
    assert result.errors[0].reason == "PersistenceError"
    assert orchestrator.audit.history("p1") == []


def test_cascade_error_leaves_record_untouched(onboarded: UpdateOrchestrator, monkeypatch):
    before = onboarded.store.get_player("p1")

    def broken(*args, **kwargs):
        raise CascadeComputationError("rule graph bug")

    monkeypatch.setattr("rosterflow.engine.impact.run_cascade", broken)
    with pytest.raises(CascadeComputationError):
        onboarded.submit(missed_appointment())
    assert onboarded.store.get_player("p1") == before


class _SlowReadStore(PlayerStore):
    def load_player(self, player_id):
        stored = super().load_player(player_id)
        time.sleep(0.05)
        return stored


def test_concurrent_updates_to_one_player_are_serialized(tmp_path, settings):
    store = _SlowReadStore(tmp_path / "race.sqlite", write_timeout=5.0)
    orchestrator = UpdateOrchestrator(store, settings=settings)
    orchestrator.onboard_players([make_player("p1")])

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(orchestrator.submit(missed_appointment())))
        for _ in range(2)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert [result.success for result in results] == [True, True]
    record = store.get_player("p1")
    assert record.medical.appointments_missed == 2
    assert record.get_field("attendance_score") == 8.2
    assert record.get_field("medical_score") == 7.8


def test_audit_failure_does_not_fail_commit(onboarded: UpdateOrchestrator, monkeypatch):
    monkeypatch.setattr(onboarded.audit, "record", lambda entries: False)
    result = onboarded.submit(missed_appointment())

    assert result.success
    assert not result.audited
    assert onboarded.store.get_player("p1").medical.appointments_missed == 1


def test_out_of_range_values_warn_and_commit(onboarded: UpdateOrchestrator):
    override = UpdateRequest(
        player_id="p1",
        source=UpdateSource.MANUAL_VALUE_OVERRIDE,
        changes={"base_value": -5000},
    )
    assert onboarded.validate(override).valid
    assert onboarded.analyze_impact("p1", override.changes, override.source).valid

    result = onboarded.submit(override)

    assert result.success
    assert [issue.reason for issue in result.warnings] == ["OutOfRange"]
    record = onboarded.store.get_player("p1")
    assert record.financial.base_value == -5000.0
    assert record.get_field("player_value") == 75000

    csv = onboarded.submit(
        UpdateRequest(player_id="p1", source=UpdateSource.CSV_ROW, changes={"sessions_absent": -1})
    )
    assert csv.success
    assert onboarded.store.get_player("p1").training.sessions_absent == -1


def test_bulk_commits_out_of_range_rows(onboarded: UpdateOrchestrator):
    summary = onboarded.bulk_update(
        [{"player_id": "p1", "source": "csv_row", "changes": {"sessions_late": -2}}]
    )

    assert (summary.successful, summary.failed) == (1, 0)
    assert summary.results[0].warnings[0].reason == "OutOfRange"


def test_audit_history_follows_commit_order(onboarded: UpdateOrchestrator, monkeypatch):
    record = onboarded.audit.record
    first_started = threading.Event()

    def slow_first_record(entries):
        if not first_started.is_set():
            first_started.set()
            time.sleep(0.3)
        return record(entries)

    monkeypatch.setattr(onboarded.audit, "record", slow_first_record)
    results = []
    worker = threading.Thread(target=lambda: results.append(onboarded.submit(missed_appointment())))
    worker.start()
    assert first_started.wait(timeout=5)

    second = onboarded.submit(missed_appointment())
    worker.join()
    first = results[0]

    history = onboarded.audit.history("p1")
    assert history[0].update_id == second.update_id
    assert history[-1].update_id == first.update_id
    assert onboarded.store.get_player("p1").medical.appointments_missed == 2
