"""Tests for the dedup materializer and gold snapshots."""

from __future__ import annotations

import contextlib
import random
from datetime import timedelta

import pytest
from conftest import T0, ManualClock, silver_row

from medallion.core.errors import MaterializeError
from medallion.storage.memory import InMemorySilverLog
from medallion.transform.gold import DEFAULT_FIELD_MAP, DedupMaterializer, GoldSnapshot, dedup

T1 = T0 + timedelta(hours=1)


def _at(seconds: int):
    return T0 + timedelta(seconds=seconds)


class TestDedup:
    def test_paris_example(self):
        rows = [
            silver_row("Paris", T1, ingestion_time=_at(10), temp=20),
            silver_row("Paris", T1, ingestion_time=_at(20), temp=21),
        ]
        gold = dedup(rows)
        assert len(gold) == 1
        assert gold[0].entity_id == "Paris"
        assert gold[0].observed_at == T1
        assert dict(gold[0].fields) == {"temperature_c": 21}

    def test_latest_ingestion_wins_regardless_of_order(self):
        rows = [
            silver_row("Paris", T1, ingestion_time=_at(20), source_file="b2", temp=21),
            silver_row("Paris", T1, ingestion_time=_at(10), source_file="b1", temp=20),
        ]
        (row,) = dedup(rows)
        assert row.fields["temperature_c"] == 21
        assert row.source_file == "b2"

    def test_tie_on_ingestion_prefers_latest_crawl(self):
        rows = [
            silver_row("Paris", T1, ingestion_time=_at(10), file_crawl_time=_at(5), temp=22),
            silver_row("Paris", T1, ingestion_time=_at(10), file_crawl_time=_at(2), temp=20),
        ]
        assert dedup(rows)[0].fields["temperature_c"] == 22

    def test_full_tie_prefers_last_appended(self):
        rows = [
            silver_row("Paris", T1, ingestion_time=_at(10), temp=20),
            silver_row("Paris", T1, ingestion_time=_at(10), temp=23),
        ]
        assert dedup(rows)[0].fields["temperature_c"] == 23

    def test_missing_fields_filled_from_older_rows(self):
        rows = [
            silver_row("Paris", T1, ingestion_time=_at(10), temp=20, humidity=55, pressure=1012),
            silver_row("Paris", T1, ingestion_time=_at(20), temp=21, humidity=None),
        ]
        (row,) = dedup(rows)
        assert dict(row.fields) == {"temperature_c": 21, "humidity_pct": 55, "pressure_hpa": 1012}

    def test_unmapped_fields_pass_through(self):
        (row,) = dedup([silver_row("Paris", T1, ingestion_time=_at(1), temp=20, uv_index=3)])
        assert dict(row.fields) == {"temperature_c": 20, "uv_index": 3}

    def test_custom_field_map(self):
        (row,) = dedup([silver_row("Paris", T1, ingestion_time=_at(1), t=20)], {"t": "temp_c"})
        assert dict(row.fields) == {"temp_c": 20}

    def test_one_row_per_key(self):
        rng = random.Random(7)
        rows = [
            silver_row(
                rng.choice(["Paris", "Rome", "Oslo"]),
                T0 + timedelta(hours=rng.randint(0, 3)),
                ingestion_time=_at(rng.randint(0, 50)),
                source_file=f"b{rng.randint(0, 5)}",
                temp=rng.randint(0, 30),
            )
            for _ in range(200)
        ]
        gold = dedup(rows)
        keys = [r.key for r in gold]
        assert len(keys) == len(set(keys))
        assert set(keys) == {r.key for r in rows}


class TestGoldSnapshot:
    def test_empty(self):
        snapshot = GoldSnapshot.empty()
        assert len(snapshot) == 0
        assert snapshot.version == 0
        assert snapshot.max_observed_at() is None
        assert snapshot.entities() == []

    def test_ordering_and_indexes(self):
        rows = dedup(
            [
                silver_row("Rome", T1, ingestion_time=_at(1), temp=25),
                silver_row("Paris", T1, ingestion_time=_at(1), temp=21),
                silver_row("Paris", T0, ingestion_time=_at(1), temp=18),
            ]
        )
        snapshot = GoldSnapshot.build(rows, version=1, built_at=T0, silver_row_count=3)

        assert [r.key for r in snapshot.rows] == [("Paris", T0), ("Paris", T1), ("Rome", T1)]
        assert snapshot.entities() == ["Paris", "Rome"]
        assert snapshot.latest("Paris").observed_at == T1
        assert snapshot.latest("Oslo") is None
        assert snapshot.max_observed_at() == T1

    def test_hash_ignores_input_order(self):
        a = silver_row("Paris", T1, ingestion_time=_at(1), temp=21)
        b = silver_row("Rome", T1, ingestion_time=_at(1), temp=25)
        first = GoldSnapshot.build(dedup([a, b]), version=1, built_at=T0, silver_row_count=2)
        second = GoldSnapshot.build(dedup([b, a]), version=9, built_at=T1, silver_row_count=2)
        assert first.content_hash == second.content_hash


class TestDedupMaterializer:
    def test_rebuild_is_idempotent(self):
        log = InMemorySilverLog()
        log.append(
            [
                silver_row("Paris", T1, ingestion_time=_at(10), temp=20),
                silver_row("Paris", T1, ingestion_time=_at(20), temp=21),
                silver_row("Rome", T1, ingestion_time=_at(10), temp=25),
            ]
        )
        materializer = DedupMaterializer(log, clock=ManualClock())

        first = materializer.rebuild()
        second = materializer.rebuild()

        assert first.rows == second.rows
        assert first.content_hash == second.content_hash
        assert (first.version, second.version) == (1, 2)
        assert materializer.snapshot is second

    def test_new_silver_changes_gold(self):
        log = InMemorySilverLog()
        log.append([silver_row("Paris", T1, ingestion_time=_at(10), temp=20)])
        materializer = DedupMaterializer(log)
        before = materializer.rebuild()

        log.append([silver_row("Paris", T1, ingestion_time=_at(20), temp=21)])
        after = materializer.rebuild()

        assert before.latest("Paris").fields["temperature_c"] == 20
        assert after.latest("Paris").fields["temperature_c"] == 21
        assert after.silver_row_count == 2
        assert before.content_hash != after.content_hash

    def test_failed_scan_keeps_previous_snapshot(self):
        class FlakyLog(InMemorySilverLog):
            fail = False

            def scan(self):
                if self.fail:
                    raise OSError("read error")
                return super().scan()

        log = FlakyLog()
        log.append([silver_row("Paris", T1, ingestion_time=_at(10), temp=20)])
        materializer = DedupMaterializer(log)
        good = materializer.rebuild()

        log.fail = True
        with pytest.raises(MaterializeError):
            materializer.rebuild()
        assert materializer.snapshot is good

    def test_failed_publish_keeps_previous_snapshot(self):
        class BrokenGoldStore:
            def replace(self, snapshot):
                raise OSError("locked")

            def meta(self):
                return None

        log = InMemorySilverLog()
        log.append([silver_row("Paris", T1, ingestion_time=_at(10), temp=20)])
        materializer = DedupMaterializer(log, gold_store=BrokenGoldStore())

        with pytest.raises(MaterializeError):
            materializer.rebuild()
        assert materializer.snapshot.version == 0
        assert len(materializer.snapshot) == 0

    def test_build_does_not_publish(self):
        log = InMemorySilverLog()
        log.append([silver_row("Paris", T1, ingestion_time=_at(10), temp=20)])
        materializer = DedupMaterializer(log)

        built = materializer.build()
        assert built.version == 1
        assert len(built) == 1
        assert materializer.snapshot.version == 0

    def test_publish_guard_can_abort_publish(self):
        class RefusingGuard:
            def __enter__(self):
                raise MaterializeError("no longer wanted")

            def __exit__(self, *exc):
                return False

        published = []

        class RecordingGoldStore:
            def replace(self, snapshot):
                published.append(snapshot)

            def meta(self):
                return None

        log = InMemorySilverLog()
        log.append([silver_row("Paris", T1, ingestion_time=_at(10), temp=20)])
        materializer = DedupMaterializer(log, gold_store=RecordingGoldStore())

        with pytest.raises(MaterializeError):
            materializer.rebuild(publish_guard=RefusingGuard())
        assert published == []
        assert materializer.snapshot.version == 0

        assert materializer.rebuild(publish_guard=contextlib.nullcontext()).version == 1
        assert len(published) == 1

    def test_version_continues_from_published_meta(self):
        class PublishedGoldStore:
            def replace(self, snapshot):
                pass

            def meta(self):
                return {"version": 7, "built_at": None, "content_hash": "", "row_count": 0}

        materializer = DedupMaterializer(InMemorySilverLog(), gold_store=PublishedGoldStore())
        assert materializer.rebuild().version == 8
        assert materializer.rebuild().version == 9

    def test_field_map_is_copied(self):
        mapping = dict(DEFAULT_FIELD_MAP)
        materializer = DedupMaterializer(InMemorySilverLog(), field_map=mapping)
        mapping["temp"] = "changed"
        assert materializer.field_map["temp"] == "temperature_c"
