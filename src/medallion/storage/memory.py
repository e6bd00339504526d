"""In-memory stores.

Zero-dependency default backend for development and tests. All stores are
thread-safe: the materialize step runs in a worker thread while API
readers scan from the event loop.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from medallion.core.errors import MaterializeError, ProducerError
from medallion.core.logging import get_logger
from medallion.core.models import RawBatch, RunRecord, RunStatus, SilverRow, TriggerKind

logger = get_logger(__name__)


class InMemoryRawStore:
    """Write-once batch store keyed by ``batch_id``."""

    def __init__(self) -> None:
        self._batches: dict[str, RawBatch] = {}
        self._lock = threading.Lock()

    def put(self, batch: RawBatch) -> None:
        with self._lock:
            if batch.batch_id in self._batches:
                raise ProducerError(f"Raw batch {batch.batch_id} already committed").with_context(
                    batch_id=batch.batch_id
                )
            self._batches[batch.batch_id] = batch
        logger.debug("raw_batch_committed", batch_id=batch.batch_id, records=len(batch))

    def get(self, batch_id: str) -> RawBatch | None:
        with self._lock:
            return self._batches.get(batch_id)

    def batch_ids(self) -> list[str]:
        with self._lock:
            return list(self._batches)


class InMemorySilverLog:
    """Append-only list of silver rows."""

    def __init__(self) -> None:
        self._rows: list[SilverRow] = []
        self._lock = threading.Lock()

    def append(self, rows: Sequence[SilverRow]) -> int:
        rows = list(rows)
        if not all(isinstance(row, SilverRow) for row in rows):
            raise MaterializeError("Silver log only accepts SilverRow instances")
        with self._lock:
            self._rows.extend(rows)
        return len(rows)

    def scan(self) -> list[SilverRow]:
        with self._lock:
            return list(self._rows)

    def count(self) -> int:
        with self._lock:
            return len(self._rows)


class InMemoryRunRepository:
    """Run history kept as detached snapshots, newest first on listing."""

    def __init__(self) -> None:
        self._records: dict[str, RunRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: RunRecord) -> None:
        with self._lock:
            self._records[record.run_id] = record.snapshot()

    def get(self, run_id: str) -> RunRecord | None:
        with self._lock:
            record = self._records.get(run_id)
            return record.snapshot() if record else None

    def _matching(self, status: RunStatus | None, trigger_kind: TriggerKind | None) -> list[RunRecord]:
        with self._lock:
            records = list(self._records.values())
        return [
            r
            for r in records
            if (status is None or r.status == status)
            and (trigger_kind is None or r.trigger_kind == trigger_kind)
        ]

    def list(
        self,
        *,
        status: RunStatus | None = None,
        trigger_kind: TriggerKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RunRecord]:
        records = self._matching(status, trigger_kind)
        records.sort(key=lambda r: (r.started_at, r.run_id), reverse=True)
        return [r.snapshot() for r in records[offset : offset + limit]]

    def count(
        self,
        *,
        status: RunStatus | None = None,
        trigger_kind: TriggerKind | None = None,
    ) -> int:
        return len(self._matching(status, trigger_kind))
