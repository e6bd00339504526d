"""
SQLite-backed stores.

Manifesto:
    A single-node deployment needs bronze, silver and run history to
    survive restarts. All four stores share one :class:`SqliteConnection`
    and its lock, so the materialize worker thread and API readers never
    interleave statements on the shared cursor.

Architecture:
    ::

        raw_batches   (batch_id PK, produced_at)
        raw_records   (batch_id, position, entity_id, observed_at, payload)
        silver_rows   (seq PK AUTOINCREMENT, entity_id, observed_at, payload,
                       source_file, file_crawl_time, ingestion_time)
        gold_rows     (entity_id, observed_at PK, fields, source_file, ingestion_time)
        gold_meta     (id=1, version, built_at, content_hash, row_count)
        runs          (run_id PK, ..., steps JSON)

    Gold publishing uses the delete+insert pattern inside one transaction,
    so an external reader of ``gold_rows`` sees either the old or the new
    snapshot.

Tags:
    sqlite, persistence, bronze, silver, gold, audit
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from medallion.core.errors import MaterializeError, ProducerError
from medallion.core.logging import get_logger
from medallion.core.models import (
    FailureReason,
    RawBatch,
    RawRecord,
    RunRecord,
    RunStatus,
    SilverRow,
    StepName,
    StepState,
    StepStatus,
    TriggerKind,
)
from medallion.core.timestamps import from_iso8601, to_iso8601

if TYPE_CHECKING:
    from medallion.transform.gold import GoldSnapshot

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS raw_batches (
    batch_id TEXT PRIMARY KEY,
    produced_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS raw_records (
    batch_id TEXT NOT NULL REFERENCES raw_batches(batch_id),
    position INTEGER NOT NULL,
    entity_id TEXT NOT NULL,
    observed_at TEXT NOT NULL,
    payload TEXT NOT NULL,
    PRIMARY KEY (batch_id, position)
);

CREATE TABLE IF NOT EXISTS silver_rows (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id TEXT NOT NULL,
    observed_at TEXT NOT NULL,
    payload TEXT NOT NULL,
    source_file TEXT NOT NULL,
    file_crawl_time TEXT NOT NULL,
    ingestion_time TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_silver_key ON silver_rows (entity_id, observed_at);

CREATE TABLE IF NOT EXISTS gold_rows (
    entity_id TEXT NOT NULL,
    observed_at TEXT NOT NULL,
    fields TEXT NOT NULL,
    source_file TEXT NOT NULL,
    ingestion_time TEXT NOT NULL,
    PRIMARY KEY (entity_id, observed_at)
);

CREATE TABLE IF NOT EXISTS gold_meta (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    version INTEGER NOT NULL,
    built_at TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    row_count INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    trigger_kind TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    failure_reason TEXT,
    error TEXT,
    batch_id TEXT,
    appended_count INTEGER NOT NULL DEFAULT 0,
    gold_row_count INTEGER,
    steps TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_runs_started ON runs (started_at);
"""


def _dumps(value: Any) -> str:
    return json.dumps(dict(value), sort_keys=True, default=str)


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor guarded by ``lock``; callers that need more
    than one statement to be atomic use :meth:`transaction`.
    """

    def __init__(self, path: str = ":memory:", *, row_factory: Any = sqlite3.Row) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._cursor = self._conn.cursor()
        self.lock = threading.RLock()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        self._cursor.execute(sql, params)
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        self._cursor.executemany(sql, params)
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    def init_schema(self) -> None:
        with self.lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[SqliteConnection]:
        """Hold the lock for a group of statements; commit or roll back."""
        with self.lock:
            try:
                yield self
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"


# ---------------------------------------------------------------------------
# Bronze
# ---------------------------------------------------------------------------


class SqliteRawStore:
    """Raw batches in ``raw_batches`` / ``raw_records``."""

    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn

    def put(self, batch: RawBatch) -> None:
        try:
            with self.conn.transaction() as tx:
                tx.execute(
                    "INSERT INTO raw_batches (batch_id, produced_at) VALUES (?, ?)",
                    (batch.batch_id, to_iso8601(batch.produced_at)),
                )
                tx.executemany(
                    "INSERT INTO raw_records (batch_id, position, entity_id, observed_at, payload) "
                    "VALUES (?, ?, ?, ?, ?)",
                    [
                        (batch.batch_id, i, r.entity_id, to_iso8601(r.observed_at), _dumps(r.payload))
                        for i, r in enumerate(batch.records)
                    ],
                )
        except sqlite3.IntegrityError as e:
            raise ProducerError(f"Raw batch {batch.batch_id} already committed", cause=e).with_context(
                batch_id=batch.batch_id
            ) from e
        except sqlite3.Error as e:
            raise ProducerError(f"Raw store write failed: {e}", cause=e).with_context(
                batch_id=batch.batch_id
            ) from e

    def get(self, batch_id: str) -> RawBatch | None:
        with self.conn.lock:
            self.conn.execute("SELECT produced_at FROM raw_batches WHERE batch_id = ?", (batch_id,))
            head = self.conn.fetchone()
            if head is None:
                return None
            self.conn.execute(
                "SELECT entity_id, observed_at, payload FROM raw_records WHERE batch_id = ? ORDER BY position",
                (batch_id,),
            )
            rows = self.conn.fetchall()
        records = tuple(
            RawRecord(
                entity_id=row["entity_id"],
                observed_at=from_iso8601(row["observed_at"]),
                payload=json.loads(row["payload"]),
                source_batch_id=batch_id,
            )
            for row in rows
        )
        return RawBatch(batch_id=batch_id, produced_at=from_iso8601(head["produced_at"]), records=records)

    def batch_ids(self) -> list[str]:
        with self.conn.lock:
            self.conn.execute("SELECT batch_id FROM raw_batches ORDER BY produced_at, batch_id")
            return [row["batch_id"] for row in self.conn.fetchall()]


# ---------------------------------------------------------------------------
# Silver
# ---------------------------------------------------------------------------


class SqliteSilverLog:
    """Append-only ``silver_rows``; ``seq`` preserves append order."""

    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn

    def append(self, rows: Sequence[SilverRow]) -> int:
        params = [
            (
                row.entity_id,
                to_iso8601(row.observed_at),
                _dumps(row.payload),
                row.source_file,
                to_iso8601(row.file_crawl_time),
                to_iso8601(row.ingestion_time),
            )
            for row in rows
        ]
        try:
            with self.conn.transaction() as tx:
                tx.executemany(
                    "INSERT INTO silver_rows "
                    "(entity_id, observed_at, payload, source_file, file_crawl_time, ingestion_time) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    params,
                )
        except sqlite3.Error as e:
            raise MaterializeError(f"Silver append failed: {e}", cause=e) from e
        return len(params)

    def scan(self) -> list[SilverRow]:
        try:
            with self.conn.lock:
                self.conn.execute(
                    "SELECT entity_id, observed_at, payload, source_file, file_crawl_time, ingestion_time "
                    "FROM silver_rows ORDER BY seq"
                )
                rows = self.conn.fetchall()
        except sqlite3.Error as e:
            raise MaterializeError(f"Silver scan failed: {e}", cause=e) from e
        return [
            SilverRow(
                entity_id=row["entity_id"],
                observed_at=from_iso8601(row["observed_at"]),
                payload=json.loads(row["payload"]),
                source_file=row["source_file"],
                file_crawl_time=from_iso8601(row["file_crawl_time"]),
                ingestion_time=from_iso8601(row["ingestion_time"]),
            )
            for row in rows
        ]

    def count(self) -> int:
        with self.conn.lock:
            self.conn.execute("SELECT COUNT(*) AS n FROM silver_rows")
            return self.conn.fetchone()["n"]


# ---------------------------------------------------------------------------
# Gold
# ---------------------------------------------------------------------------


class SqliteGoldStore:
    """Publishes each gold snapshot into ``gold_rows`` with delete+insert."""

    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn

    def replace(self, snapshot: GoldSnapshot) -> None:
        try:
            with self.conn.transaction() as tx:
                tx.execute("DELETE FROM gold_rows")
                tx.executemany(
                    "INSERT INTO gold_rows (entity_id, observed_at, fields, source_file, ingestion_time) "
                    "VALUES (?, ?, ?, ?, ?)",
                    [
                        (
                            row.entity_id,
                            to_iso8601(row.observed_at),
                            _dumps(row.fields),
                            row.source_file,
                            to_iso8601(row.ingestion_time),
                        )
                        for row in snapshot.rows
                    ],
                )
                tx.execute(
                    "INSERT INTO gold_meta (id, version, built_at, content_hash, row_count) "
                    "VALUES (1, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET version = excluded.version, built_at = excluded.built_at, "
                    "content_hash = excluded.content_hash, row_count = excluded.row_count",
                    (snapshot.version, to_iso8601(snapshot.built_at), snapshot.content_hash, len(snapshot.rows)),
                )
        except sqlite3.Error as e:
            raise MaterializeError(f"Gold publish failed: {e}", cause=e) from e
        logger.debug("gold_published", version=snapshot.version, rows=len(snapshot.rows))

    def row_count(self) -> int:
        with self.conn.lock:
            self.conn.execute("SELECT COUNT(*) AS n FROM gold_rows")
            return self.conn.fetchone()["n"]

    def meta(self) -> dict[str, Any] | None:
        with self.conn.lock:
            self.conn.execute("SELECT version, built_at, content_hash, row_count FROM gold_meta WHERE id = 1")
            row = self.conn.fetchone()
        return dict(row) if row else None


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def _steps_to_json(record: RunRecord) -> str:
    return json.dumps([state.to_dict() for state in record.step_states.values()])


def _steps_from_json(raw: str) -> dict[StepName, StepState]:
    states = {}
    for item in json.loads(raw):
        step = StepName(item["step"])
        states[step] = StepState(
            step=step,
            status=StepStatus(item["status"]),
            attempts=item["attempts"],
            started_at=from_iso8601(item["started_at"]),
            finished_at=from_iso8601(item["finished_at"]),
            last_error=item["last_error"],
        )
    return states


class SqliteRunRepository:
    """Run history in the ``runs`` table."""

    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn

    def save(self, record: RunRecord) -> None:
        with self.conn.transaction() as tx:
            tx.execute(
                """
                INSERT INTO runs (run_id, trigger_kind, status, started_at, finished_at, failure_reason,
                                  error, batch_id, appended_count, gold_row_count, steps)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(run_id) DO UPDATE SET
                    status = excluded.status,
                    finished_at = excluded.finished_at,
                    failure_reason = excluded.failure_reason,
                    error = excluded.error,
                    batch_id = excluded.batch_id,
                    appended_count = excluded.appended_count,
                    gold_row_count = excluded.gold_row_count,
                    steps = excluded.steps
                """,
                (
                    record.run_id,
                    record.trigger_kind.value,
                    record.status.value,
                    to_iso8601(record.started_at),
                    to_iso8601(record.finished_at),
                    record.failure_reason.value if record.failure_reason else None,
                    record.error,
                    record.batch_id,
                    record.appended_count,
                    record.gold_row_count,
                    _steps_to_json(record),
                ),
            )

    def get(self, run_id: str) -> RunRecord | None:
        with self.conn.lock:
            self.conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,))
            row = self.conn.fetchone()
        return self._to_record(row) if row else None

    @staticmethod
    def _where(status: RunStatus | None, trigger_kind: TriggerKind | None) -> tuple[str, tuple]:
        parts: list[str] = []
        params: list[Any] = []
        if status is not None:
            parts.append("status = ?")
            params.append(status.value)
        if trigger_kind is not None:
            parts.append("trigger_kind = ?")
            params.append(trigger_kind.value)
        return (" AND ".join(parts) if parts else "1=1"), tuple(params)

    def list(
        self,
        *,
        status: RunStatus | None = None,
        trigger_kind: TriggerKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RunRecord]:
        where, params = self._where(status, trigger_kind)
        with self.conn.lock:
            self.conn.execute(
                f"SELECT * FROM runs WHERE {where} ORDER BY started_at DESC, run_id DESC LIMIT ? OFFSET ?",
                params + (limit, offset),
            )
            rows = self.conn.fetchall()
        return [self._to_record(row) for row in rows]

    def count(
        self,
        *,
        status: RunStatus | None = None,
        trigger_kind: TriggerKind | None = None,
    ) -> int:
        where, params = self._where(status, trigger_kind)
        with self.conn.lock:
            self.conn.execute(f"SELECT COUNT(*) AS n FROM runs WHERE {where}", params)
            return self.conn.fetchone()["n"]

    @staticmethod
    def _to_record(row: Any) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            trigger_kind=TriggerKind(row["trigger_kind"]),
            started_at=from_iso8601(row["started_at"]),
            status=RunStatus(row["status"]),
            step_states=_steps_from_json(row["steps"]),
            finished_at=from_iso8601(row["finished_at"]),
            failure_reason=FailureReason(row["failure_reason"]) if row["failure_reason"] else None,
            error=row["error"],
            batch_id=row["batch_id"],
            appended_count=row["appended_count"],
            gold_row_count=row["gold_row_count"],
        )
