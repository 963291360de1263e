import sqlite3

import pytest

from rosterflow.models import AuditEntry, DerivedValue, UpdateSource
from rosterflow.persistence import PersistenceError, PlayerStore, WriteOp

from tests.fixtures import FIXED_TS, make_player


def test_create_and_get_player(store: PlayerStore):
    store.create_player(make_player("p1"))
    stored = store.load_player("p1")

    assert stored is not None
    assert stored.version == 1
    assert stored.record.financial.base_value == 67000.0
    assert store.get_player("missing") is None
    assert [record.player_id for record in store.list_players()] == ["p1"]


def test_duplicate_player_is_not_retryable(store: PlayerStore):
    store.create_player(make_player("p1"))
    with pytest.raises(PersistenceError) as excinfo:
        store.create_player(make_player("p1"))
    assert excinfo.value.retryable is False


def test_upsert_fields_writes_source_derived_and_sub_records(store: PlayerStore):
    store.create_player(make_player("p1"))
    version = store.upsert_fields(
        "p1",
        {"medical.appointments_missed": 1},
        {"attendance_score": DerivedValue(value=8.7, computed_from=("medical.appointments_missed",), last_computed_at=FIXED_TS)},
        sub_records=[("appointments", {"status": "missed", "recorded_at": FIXED_TS})],
        expected_version=1,
    )

    assert version == 2
    record = store.get_player("p1")
    assert record.medical.appointments_missed == 1
    assert record.derived["attendance_score"].value == 8.7
    assert record.derived["attendance_score"].last_computed_at == FIXED_TS
    rows = store.list_sub_records("p1", "appointments")
    assert [row.record["status"] for row in rows] == ["missed"]
    assert store.count_sub_records("p1", "appointments") == 1


def test_version_conflict_leaves_record_untouched(store: PlayerStore):
    store.create_player(make_player("p1"))
    with pytest.raises(PersistenceError, match="concurrently") as excinfo:
        store.upsert_fields("p1", {"medical.appointments_missed": 3}, {}, expected_version=7)

    assert excinfo.value.retryable is False
    assert store.get_player("p1").medical.appointments_missed == 0
    assert store.load_player("p1").version == 1


def test_rejected_document_rolls_back_sub_records(store: PlayerStore):
    store.create_player(make_player("p1"))
    with pytest.raises(PersistenceError) as excinfo:
        store.upsert_fields(
            "p1",
            {"medical.appointments_missed": -1},
            {},
            sub_records=[("appointments", {"status": "missed"})],
        )

    assert excinfo.value.retryable is False
    assert store.get_player("p1").medical.appointments_missed == 0
    assert store.count_sub_records("p1", "appointments") == 0


def test_locked_store_is_retryable(tmp_path):
    path = tmp_path / "locked.sqlite"
    store = PlayerStore(path, write_timeout=0.1)
    store.create_player(make_player("p1"))

    blocker = sqlite3.connect(path, isolation_level=None)
    blocker.execute("BEGIN EXCLUSIVE")
    try:
        with pytest.raises(PersistenceError) as excinfo:
            store.upsert_fields("p1", {"medical.appointments_missed": 1}, {})
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()

    assert excinfo.value.retryable is True
    assert store.get_player("p1").medical.appointments_missed == 0


def test_batch_commit_reports_per_chunk(tmp_path):
    store = PlayerStore(tmp_path / "batch.sqlite", batch_size=2)
    store.create_player(make_player("dup"))
    ops = [
        WriteOp.create_player(make_player("a")),
        WriteOp.create_player(make_player("b")),
        WriteOp.create_player(make_player("c")),
        WriteOp.create_player(make_player("dup")),
        WriteOp.create_player(make_player("e")),
    ]

    report = store.batch_commit(ops)

    assert [chunk.committed for chunk in report.chunks] == [True, False, True]
    assert report.committed_ops == 3
    assert report.failed_ops == 2
    assert not report.ok
    ids = {record.player_id for record in store.list_players()}
    # the failed chunk is rolled back as a whole; earlier and later chunks stay committed
    assert ids == {"a", "b", "dup", "e"}


def test_audit_entries_get_monotonic_sequence(store: PlayerStore):
    store.create_player(make_player("p1"))
    entries = [
        AuditEntry(
            update_id="u1",
            player_id="p1",
            field=field,
            before_value=before,
            after_value=after,
            source=UpdateSource.MEDICAL_APPOINTMENT,
            actor="physio",
            timestamp=FIXED_TS,
        )
        for field, before, after in [("medical.appointments_missed", 0, 1), ("attendance_score", 9.2, 8.7)]
    ]
    stored = store.append_audit(entries)

    assert stored[0].sequence < stored[1].sequence
    history = store.list_audit("p1")
    assert [entry.field for entry in history] == ["attendance_score", "medical.appointments_missed"]
    assert history[0].before_value == 9.2
    assert store.audit_counts("p1") == (1, 2)


def test_bulk_job_state_machine(store: PlayerStore):
    job = store.create_job(job_id="job-1", total_rows=3)
    assert job.state == "running"
    assert job.completed_at is None

    job = store.mark_job_cancel_requested("job-1")
    assert job.state == "cancel_requested"
    assert job.cancel_requested_at is not None

    job = store.update_job_state("job-1", state="canceled", summary={"processed": 1})
    assert job.state == "canceled"
    assert job.completed_at is not None
    assert job.summary == {"processed": 1}
    assert [item.job_id for item in store.list_jobs()] == ["job-1"]

    with pytest.raises(KeyError):
        store.update_job_state("missing", state="completed")


def test_append_sub_record(store: PlayerStore):
    store.create_player(make_player("p1"))
    first = store.append_sub_record("p1", "notes", {"note": "Cleared for contact"})
    second = store.append_sub_record("p1", "notes", {"note": "Rest day"})

    assert second > first
    assert [row.record["note"] for row in store.list_sub_records("p1", "notes")] == ["Rest day", "Cleared for contact"]

    with pytest.raises(PersistenceError, match="not found") as excinfo:
        store.append_sub_record("ghost", "notes", {"note": "?"})
    assert excinfo.value.retryable is False
    assert store.count_sub_records("ghost", "notes") == 0


def test_batch_commit_mixed_operations(tmp_path):
    store = PlayerStore(tmp_path / "mixed.sqlite", batch_size=3)
    store.create_player(make_player("p1"))
    entry = AuditEntry(
        update_id="sync-1",
        player_id="p1",
        field="gps.total_distance",
        before_value=6800.0,
        after_value=7600.0,
        source=UpdateSource.EXTERNAL_SYNC,
        actor="statsports",
        timestamp=FIXED_TS,
    )
    ops = [
        WriteOp.upsert_fields(
            "p1",
            {"gps.total_distance": 7600.0},
            {"fitness_rating": DerivedValue(value=9.2, computed_from=("gps.total_distance",), last_computed_at=FIXED_TS)},
        ),
        WriteOp.append_sub_record("p1", "gps_sessions", {"session_id": "sync-1", "total_distance": 7600.0}),
        WriteOp.append_audit(entry),
        WriteOp.append_sub_record("ghost", "gps_sessions", {"session_id": "sync-2"}),
    ]

    report = store.batch_commit(ops)

    assert [chunk.committed for chunk in report.chunks] == [True, False]
    assert report.committed_ops == 3
    record = store.get_player("p1")
    assert record.gps.total_distance == 7600.0
    assert record.derived["fitness_rating"].value == 9.2
    assert store.load_player("p1").version == 2
    assert store.count_sub_records("p1", "gps_sessions") == 1
    assert [item.update_id for item in store.list_audit("p1")] == ["sync-1"]
