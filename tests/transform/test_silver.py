"""Tests for AppendLogBuilder."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import T0, ManualClock

from medallion.core.errors import MaterializeError
from medallion.core.models import RawBatch, RawRecord
from medallion.storage.memory import InMemorySilverLog
from medallion.transform.silver import AppendLogBuilder


def _batch(batch_id: str = "batch-1", *cities: str) -> RawBatch:
    cities = cities or ("Paris", "Rome")
    return RawBatch(
        batch_id,
        T0,
        tuple(RawRecord(city, T0, {"temp": 20}, batch_id) for city in cities),
    )


class TestAppendLogBuilder:
    def test_lineage_tags(self):
        log = InMemorySilverLog()
        clock = ManualClock(start=T0 + timedelta(minutes=1))
        builder = AppendLogBuilder(log, clock=clock)

        assert builder.apply(_batch()) == 2

        rows = log.scan()
        assert {r.source_file for r in rows} == {"batch-1"}
        assert {r.file_crawl_time for r in rows} == {T0}
        # one ingestion_time per apply call
        assert {r.ingestion_time for r in rows} == {T0 + timedelta(minutes=1)}

    def test_reapply_appends_duplicates(self):
        log = InMemorySilverLog()
        builder = AppendLogBuilder(log, clock=ManualClock())
        builder.apply(_batch())
        builder.apply(_batch())

        rows = log.scan()
        assert len(rows) == 4
        assert rows[0].key == rows[2].key
        assert rows[0].ingestion_time < rows[2].ingestion_time

    def test_empty_batch(self):
        log = InMemorySilverLog()
        assert AppendLogBuilder(log).apply(RawBatch("batch-empty", T0, ())) == 0
        assert log.count() == 0

    def test_storage_failure_is_materialize_error(self):
        class BrokenLog(InMemorySilverLog):
            def append(self, rows):
                raise OSError("disk full")

        with pytest.raises(MaterializeError) as exc_info:
            AppendLogBuilder(BrokenLog()).apply(_batch())
        assert exc_info.value.context.batch_id == "batch-1"
