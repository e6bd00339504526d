"""Tests for the in-memory stores."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import T0, silver_row

from medallion.core.errors import MaterializeError, ProducerError
from medallion.core.models import RawBatch, RawRecord, RunRecord, RunStatus, TriggerKind
from medallion.core.protocols import RawStore, RunRepository, SilverLog
from medallion.storage.memory import InMemoryRawStore, InMemoryRunRepository, InMemorySilverLog


def _batch(batch_id: str = "batch-1") -> RawBatch:
    return RawBatch(batch_id, T0, (RawRecord("Paris", T0, {"temp": 20}, batch_id),))


class TestInMemoryRawStore:
    def test_protocol(self):
        assert isinstance(InMemoryRawStore(), RawStore)

    def test_put_and_get(self):
        store = InMemoryRawStore()
        store.put(_batch())
        assert store.get("batch-1") == _batch()
        assert store.get("missing") is None
        assert store.batch_ids() == ["batch-1"]

    def test_batches_are_write_once(self):
        store = InMemoryRawStore()
        store.put(_batch())
        with pytest.raises(ProducerError):
            store.put(_batch())


class TestInMemorySilverLog:
    def test_protocol(self):
        assert isinstance(InMemorySilverLog(), SilverLog)

    def test_append_preserves_order_and_duplicates(self):
        log = InMemorySilverLog()
        a = silver_row("Paris", T0, ingestion_time=T0, temp=20)
        b = silver_row("Paris", T0, ingestion_time=T0 + timedelta(seconds=1), temp=21)
        assert log.append([a, b]) == 2
        assert log.append([a]) == 1
        assert log.scan() == [a, b, a]
        assert log.count() == 3

    def test_rejects_foreign_rows(self):
        with pytest.raises(MaterializeError):
            InMemorySilverLog().append([{"entity_id": "Paris"}])  # type: ignore[list-item]


class TestInMemoryRunRepository:
    def _record(self, run_id: str, offset: int, trigger: TriggerKind = TriggerKind.SCHEDULED) -> RunRecord:
        return RunRecord(run_id=run_id, trigger_kind=trigger, started_at=T0 + timedelta(seconds=offset))

    def test_protocol(self):
        assert isinstance(InMemoryRunRepository(), RunRepository)

    def test_save_stores_a_snapshot(self):
        repo = InMemoryRunRepository()
        record = self._record("r1", 0)
        repo.save(record)
        record.status = RunStatus.SUCCEEDED
        assert repo.get("r1").status == RunStatus.RUNNING
        repo.save(record)
        assert repo.get("r1").status == RunStatus.SUCCEEDED

    def test_list_newest_first_with_filters(self):
        repo = InMemoryRunRepository()
        repo.save(self._record("r1", 0))
        repo.save(self._record("r2", 10, TriggerKind.ON_DEMAND))
        repo.save(self._record("r3", 20))

        assert [r.run_id for r in repo.list()] == ["r3", "r2", "r1"]
        assert [r.run_id for r in repo.list(trigger_kind=TriggerKind.SCHEDULED)] == ["r3", "r1"]
        assert [r.run_id for r in repo.list(limit=1, offset=1)] == ["r2"]
        assert repo.count() == 3
        assert repo.count(status=RunStatus.SUCCEEDED) == 0
