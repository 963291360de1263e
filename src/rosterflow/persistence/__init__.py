"""SQLite-backed store for player documents, sub-records, audit rows and bulk jobs."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from rosterflow.models import AuditEntry, DerivedValue, PlayerRecord


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
DEFAULT_WRITE_TIMEOUT = 5.0

JOB_TERMINAL_STATES = {"completed", "failed", "canceled"}


class PersistenceError(RuntimeError):
    """A store write or read failed.

    ``retryable`` is True when the store was unavailable (locked, timed out)
    and False when the write was rejected by a constraint or by validation.
    """

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class StoredPlayer:
    record: PlayerRecord
    version: int
    updated_at: datetime


@dataclass
class SubRecord:
    record_id: int
    player_id: str
    collection: str
    record: dict
    created_at: datetime


@dataclass
class BulkJob:
    job_id: str
    state: str
    total_rows: int
    created_at: datetime
    updated_at: datetime
    message: Optional[str]
    cancel_requested_at: Optional[datetime]
    completed_at: Optional[datetime]
    summary: Optional[dict]


@dataclass(frozen=True)
class WriteOp:
    """One deferred store operation for :meth:`PlayerStore.batch_commit`."""

    kind: str
    player_id: str
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create_player(cls, record: PlayerRecord) -> "WriteOp":
        return cls("create_player", record.player_id, {"record": record})

    @classmethod
    def upsert_fields(
        cls,
        player_id: str,
        source_changes: Mapping[str, Any],
        derived_changes: Mapping[str, DerivedValue],
    ) -> "WriteOp":
        return cls(
            "upsert_fields",
            player_id,
            {"source_changes": dict(source_changes), "derived_changes": dict(derived_changes)},
        )

    @classmethod
    def append_sub_record(cls, player_id: str, collection: str, record: Mapping[str, Any]) -> "WriteOp":
        return cls("append_sub_record", player_id, {"collection": collection, "record": dict(record)})

    @classmethod
    def append_audit(cls, entry: AuditEntry) -> "WriteOp":
        return cls("append_audit", entry.player_id, {"entry": entry})


@dataclass
class ChunkResult:
    index: int
    size: int
    committed: bool
    error: Optional[str] = None
    retryable: bool = False


@dataclass
class BatchCommitReport:
    chunks: List[ChunkResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(chunk.committed for chunk in self.chunks)

    @property
    def committed_ops(self) -> int:
        return sum(chunk.size for chunk in self.chunks if chunk.committed)

    @property
    def failed_ops(self) -> int:
        return sum(chunk.size for chunk in self.chunks if not chunk.committed)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class PlayerStore:
    """Document store adapter.

    Every public write runs in its own ``BEGIN IMMEDIATE`` transaction, so the
    source and derived changes for one player land together or not at all.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._use_uri = isinstance(db_path, str) and db_path.startswith("file:")
        self.db_path: Path | str = db_path if self._use_uri else Path(db_path)
        self.batch_size = batch_size
        self.write_timeout = write_timeout
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.write_timeout,
            uri=self._use_uri,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except PersistenceError:
            raise
        except sqlite3.IntegrityError as exc:
            raise PersistenceError(f"Write rejected by store constraint: {exc}", retryable=False) from exc
        except sqlite3.OperationalError as exc:
            raise PersistenceError(f"Store unavailable: {exc}", retryable=True) from exc
        except ValidationError as exc:
            raise PersistenceError(f"Write rejected by record validation: {exc}", retryable=False) from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._translate_errors():
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        with self._translate_errors():
            conn = self._connect()
            try:
                yield conn
            finally:
                conn.close()

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS players (
                id TEXT PRIMARY KEY,
                name TEXT,
                position TEXT,
                document_json TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sub_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                player_id TEXT NOT NULL REFERENCES players(id),
                collection TEXT NOT NULL,
                record_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sub_records_player ON sub_records (player_id, collection)"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_entries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                update_id TEXT NOT NULL,
                player_id TEXT NOT NULL,
                field TEXT NOT NULL,
                before_json TEXT,
                after_json TEXT,
                source TEXT NOT NULL,
                actor TEXT NOT NULL,
                reason TEXT,
                rule_id TEXT,
                timestamp TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_player ON audit_entries (player_id, seq)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS bulk_jobs (
                id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                total_rows INTEGER NOT NULL,
                message TEXT,
                summary_json TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                cancel_requested_at TEXT,
                completed_at TEXT
            )
            """
        )

    # ------------------------------------------------------------------
    # players

    def create_player(self, record: PlayerRecord) -> PlayerRecord:
        with self._transaction() as conn:
            self._insert_player(conn, record)
        return record

    def get_player(self, player_id: str) -> Optional[PlayerRecord]:
        stored = self.load_player(player_id)
        return stored.record if stored else None

    def load_player(self, player_id: str) -> Optional[StoredPlayer]:
        with self._reader() as conn:
            row = conn.execute("SELECT * FROM players WHERE id = ?", (player_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_player(row)

    def list_players(self, limit: int = 100) -> List[PlayerRecord]:
        with self._reader() as conn:
            rows = conn.execute("SELECT * FROM players ORDER BY id LIMIT ?", (limit,)).fetchall()
        return [self._row_to_player(row).record for row in rows]

    def upsert_fields(
        self,
        player_id: str,
        source_changes: Mapping[str, Any],
        derived_changes: Mapping[str, DerivedValue],
        sub_records: Sequence[Tuple[str, Mapping[str, Any]]] = (),
        expected_version: Optional[int] = None,
    ) -> int:
        """Apply source and derived changes (plus sub-record rows) atomically.

        Returns the new document version. Raises a non-retryable
        :class:`PersistenceError` when ``expected_version`` no longer matches.
        """

        with self._transaction() as conn:
            version = self._upsert_fields(conn, player_id, source_changes, derived_changes, expected_version)
            for collection, record in sub_records:
                self._insert_sub_record(conn, player_id, collection, record)
        return version

    def _insert_player(self, conn: sqlite3.Connection, record: PlayerRecord) -> None:
        now_iso = datetime.now(timezone.utc).isoformat()
        conn.execute(
            """
            INSERT INTO players (id, name, position, document_json, version, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.player_id,
                record.name,
                record.position,
                record.model_dump_json(),
                1,
                record.created_at.isoformat(),
                now_iso,
            ),
        )

    def _upsert_fields(
        self,
        conn: sqlite3.Connection,
        player_id: str,
        source_changes: Mapping[str, Any],
        derived_changes: Mapping[str, DerivedValue],
        expected_version: Optional[int],
    ) -> int:
        row = conn.execute("SELECT * FROM players WHERE id = ?", (player_id,)).fetchone()
        if row is None:
            raise PersistenceError(f"Player {player_id} not found", retryable=False)
        stored = self._row_to_player(row)
        if expected_version is not None and stored.version != expected_version:
            raise PersistenceError(
                f"Player {player_id} changed concurrently (version {stored.version}, expected {expected_version})",
                retryable=False,
            )
        try:
            merged = stored.record.with_source_changes(source_changes).with_derived(derived_changes)
        except KeyError as exc:
            raise PersistenceError(f"Write rejected: {exc}", retryable=False) from exc
        validated = PlayerRecord.model_validate(merged.model_dump())
        new_version = stored.version + 1
        conn.execute(
            "UPDATE players SET document_json = ?, version = ?, updated_at = ? WHERE id = ?",
            (
                validated.model_dump_json(),
                new_version,
                datetime.now(timezone.utc).isoformat(),
                player_id,
            ),
        )
        return new_version

    def _row_to_player(self, row: sqlite3.Row) -> StoredPlayer:
        return StoredPlayer(
            record=PlayerRecord.model_validate_json(row["document_json"]),
            version=row["version"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # sub-records

    def append_sub_record(self, player_id: str, collection: str, record: Mapping[str, Any]) -> int:
        with self._transaction() as conn:
            return self._insert_sub_record(conn, player_id, collection, record)

    def _insert_sub_record(
        self,
        conn: sqlite3.Connection,
        player_id: str,
        collection: str,
        record: Mapping[str, Any],
    ) -> int:
        exists = conn.execute("SELECT 1 FROM players WHERE id = ?", (player_id,)).fetchone()
        if exists is None:
            raise PersistenceError(f"Player {player_id} not found", retryable=False)
        cursor = conn.execute(
            "INSERT INTO sub_records (player_id, collection, record_json, created_at) VALUES (?, ?, ?, ?)",
            (player_id, collection, _dumps(dict(record)), datetime.now(timezone.utc).isoformat()),
        )
        return int(cursor.lastrowid)

    def list_sub_records(
        self,
        player_id: str,
        collection: str,
        *,
        limit: int = 50,
    ) -> List[SubRecord]:
        with self._reader() as conn:
            rows = conn.execute(
                """
                SELECT * FROM sub_records
                WHERE player_id = ? AND collection = ?
                ORDER BY id DESC LIMIT ?
                """,
                (player_id, collection, limit),
            ).fetchall()
        return [
            SubRecord(
                record_id=row["id"],
                player_id=row["player_id"],
                collection=row["collection"],
                record=json.loads(row["record_json"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def count_sub_records(self, player_id: str, collection: str, *, since: Optional[datetime] = None) -> int:
        query = "SELECT COUNT(*) FROM sub_records WHERE player_id = ? AND collection = ?"
        params: list[Any] = [player_id, collection]
        if since is not None:
            query += " AND datetime(created_at) >= datetime(?)"
            params.append(since.isoformat())
        with self._reader() as conn:
            return int(conn.execute(query, tuple(params)).fetchone()[0])

    # ------------------------------------------------------------------
    # audit entries

    def append_audit(self, entries: Iterable[AuditEntry]) -> List[AuditEntry]:
        stored: List[AuditEntry] = []
        with self._transaction() as conn:
            for entry in entries:
                stored.append(self._insert_audit(conn, entry))
        return stored

    def _insert_audit(self, conn: sqlite3.Connection, entry: AuditEntry) -> AuditEntry:
        payload = entry.model_dump(mode="json")
        cursor = conn.execute(
            """
            INSERT INTO audit_entries (
                update_id, player_id, field, before_json, after_json,
                source, actor, reason, rule_id, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.update_id,
                entry.player_id,
                entry.field,
                json.dumps(payload["before_value"]),
                json.dumps(payload["after_value"]),
                payload["source"],
                entry.actor,
                entry.reason,
                entry.rule_id,
                entry.timestamp.isoformat(),
            ),
        )
        return entry.model_copy(update={"sequence": int(cursor.lastrowid)})

    def list_audit(self, player_id: str, limit: int = 50) -> List[AuditEntry]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_entries WHERE player_id = ? ORDER BY seq DESC LIMIT ?",
                (player_id, limit),
            ).fetchall()
        return [self._row_to_audit(row) for row in rows]

    def audit_counts(self, player_id: str) -> Tuple[int, int]:
        """Return ``(distinct update ids, field changes)`` recorded for a player."""

        with self._reader() as conn:
            row = conn.execute(
                "SELECT COUNT(DISTINCT update_id), COUNT(*) FROM audit_entries WHERE player_id = ?",
                (player_id,),
            ).fetchone()
        return int(row[0]), int(row[1])

    def audit_last_updated(self, player_id: str) -> Dict[str, datetime]:
        """Latest audit timestamp per field name."""

        with self._reader() as conn:
            rows = conn.execute(
                """
                SELECT field, timestamp FROM audit_entries
                WHERE player_id = ? ORDER BY seq
                """,
                (player_id,),
            ).fetchall()
        latest: Dict[str, datetime] = {}
        for row in rows:
            latest[row["field"]] = datetime.fromisoformat(row["timestamp"])
        return latest

    def _row_to_audit(self, row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            update_id=row["update_id"],
            player_id=row["player_id"],
            field=row["field"],
            before_value=json.loads(row["before_json"]) if row["before_json"] is not None else None,
            after_value=json.loads(row["after_json"]) if row["after_json"] is not None else None,
            source=row["source"],
            actor=row["actor"],
            reason=row["reason"],
            rule_id=row["rule_id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            sequence=row["seq"],
        )

    # ------------------------------------------------------------------
    # batches

    def batch_commit(self, ops: Iterable[WriteOp]) -> BatchCommitReport:
        """Commit ``ops`` in chunks of ``batch_size``.

        Chunks commit sequentially and independently: a failed chunk is rolled
        back and reported, chunks already committed stay committed, and the
        remaining chunks are still attempted.
        """

        report = BatchCommitReport()
        pending = list(ops)
        for index, start in enumerate(range(0, len(pending), self.batch_size)):
            chunk = pending[start : start + self.batch_size]
            try:
                with self._transaction() as conn:
                    for op in chunk:
                        self._apply_op(conn, op)
            except PersistenceError as exc:
                logger.warning("Batch chunk %d (%d ops) failed: %s", index, len(chunk), exc)
                report.chunks.append(
                    ChunkResult(index=index, size=len(chunk), committed=False, error=str(exc), retryable=exc.retryable)
                )
                continue
            report.chunks.append(ChunkResult(index=index, size=len(chunk), committed=True))
        return report

    def _apply_op(self, conn: sqlite3.Connection, op: WriteOp) -> None:
        if op.kind == "create_player":
            self._insert_player(conn, op.data["record"])
        elif op.kind == "upsert_fields":
            self._upsert_fields(
                conn,
                op.player_id,
                op.data.get("source_changes", {}),
                op.data.get("derived_changes", {}),
                None,
            )
        elif op.kind == "append_sub_record":
            self._insert_sub_record(conn, op.player_id, op.data["collection"], op.data["record"])
        elif op.kind == "append_audit":
            self._insert_audit(conn, op.data["entry"])
        else:
            raise PersistenceError(f"Unsupported write operation: {op.kind}", retryable=False)

    # ------------------------------------------------------------------
    # bulk jobs

    def create_job(self, *, job_id: str, total_rows: int, state: str = "running", message: Optional[str] = None) -> BulkJob:
        now_iso = datetime.now(timezone.utc).isoformat()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO bulk_jobs (
                    id, state, total_rows, message, summary_json,
                    created_at, updated_at, cancel_requested_at, completed_at
                ) VALUES (?, ?, ?, ?, NULL, ?, ?, NULL, ?)
                """,
                (
                    job_id,
                    state,
                    total_rows,
                    message,
                    now_iso,
                    now_iso,
                    now_iso if state in JOB_TERMINAL_STATES else None,
                ),
            )
        job = self.get_job(job_id)
        if job is None:  # pragma: no cover
            raise KeyError(f"Job {job_id} not found after insert")
        return job

    def update_job_state(
        self,
        job_id: str,
        *,
        state: str,
        message: Optional[str] = None,
        summary: Optional[dict] = None,
    ) -> BulkJob:
        now_iso = datetime.now(timezone.utc).isoformat()
        with self._transaction() as conn:
            existing = conn.execute("SELECT * FROM bulk_jobs WHERE id = ?", (job_id,)).fetchone()
            if existing is None:
                raise KeyError(f"Job {job_id} not found")
            cancel_requested_at = existing["cancel_requested_at"]
            completed_at = existing["completed_at"]
            if state == "cancel_requested":
                cancel_requested_at = now_iso
            if state in JOB_TERMINAL_STATES:
                completed_at = now_iso
            conn.execute(
                """
                UPDATE bulk_jobs
                SET state = ?, message = ?, summary_json = ?, updated_at = ?,
                    cancel_requested_at = ?, completed_at = ?
                WHERE id = ?
                """,
                (
                    state,
                    message if message is not None else existing["message"],
                    _dumps(summary) if summary is not None else existing["summary_json"],
                    now_iso,
                    cancel_requested_at,
                    completed_at,
                    job_id,
                ),
            )
        job = self.get_job(job_id)
        if job is None:  # pragma: no cover
            raise KeyError(f"Job {job_id} not found after update")
        return job

    def mark_job_cancel_requested(self, job_id: str, *, message: Optional[str] = None) -> BulkJob:
        return self.update_job_state(job_id, state="cancel_requested", message=message)

    def get_job(self, job_id: str) -> Optional[BulkJob]:
        with self._reader() as conn:
            row = conn.execute("SELECT * FROM bulk_jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_job(row)

    def list_jobs(self, limit: int = 50) -> List[BulkJob]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM bulk_jobs ORDER BY datetime(created_at) DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def _row_to_job(self, row: sqlite3.Row) -> BulkJob:
        return BulkJob(
            job_id=row["id"],
            state=row["state"],
            total_rows=row["total_rows"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            message=row["message"],
            cancel_requested_at=_parse_ts(row["cancel_requested_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            summary=json.loads(row["summary_json"]) if row["summary_json"] else None,
        )


__all__ = [
    "BatchCommitReport",
    "BulkJob",
    "ChunkResult",
    "DEFAULT_BATCH_SIZE",
    "PersistenceError",
    "PlayerStore",
    "StoredPlayer",
    "SubRecord",
    "WriteOp",
]
