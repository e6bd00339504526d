"""
Shared pytest fixtures for medallion tests.

This module provides:
- A manual clock and a recording (non-waiting) async sleep
- Silver row / observation builders
- An orchestrator factory wired to in-memory stores
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from medallion.core.models import SilverRow
from medallion.ingest.producer import ProducerAdapter
from medallion.orchestration.orchestrator import JobOrchestrator
from medallion.orchestration.retry import ConstantBackoff, StepPolicy
from medallion.storage.memory import InMemoryRawStore, InMemoryRunRepository, InMemorySilverLog
from medallion.transform.gold import DedupMaterializer
from medallion.transform.silver import AppendLogBuilder

T0 = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class ManualClock:
    """Deterministic clock; every call moves time forward by ``step``."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep that records requested delays and only yields to the loop."""

    def __init__(self) -> None:
        self.calls: list[float] = []
        self.on_call: Callable[[float], None] | None = None

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_call:
            self.on_call(seconds)
        await asyncio.sleep(0)


def silver_row(
    entity_id: str,
    observed_at: datetime,
    *,
    ingestion_time: datetime,
    file_crawl_time: datetime | None = None,
    source_file: str = "batch-a",
    **payload: Any,
) -> SilverRow:
    return SilverRow(
        entity_id=entity_id,
        observed_at=observed_at,
        payload=payload,
        source_file=source_file,
        file_crawl_time=file_crawl_time or ingestion_time,
        ingestion_time=ingestion_time,
    )


def observations(*cities: str, temp: float = 20.0) -> list[dict]:
    return [{"entity_id": city, "observed_at": T0, "temp": temp} for city in cities]


@dataclass
class Pipeline:
    orchestrator: JobOrchestrator
    raw_store: Any
    silver_log: Any
    runs: Any
    materializer: DedupMaterializer
    sleep: RecordingSleep


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def build_pipeline(sleep: RecordingSleep) -> Callable[..., Pipeline]:
    """Factory for an orchestrator over in-memory stores.

    Retry intervals default to 1s and 2s so tests can tell fetch and
    materialize backoff apart in ``sleep.calls``.
    """

    def _build(
        source: Callable[..., Any],
        *,
        fetch_attempts: int = 3,
        fetch_timeout: float = 5.0,
        fetch_interval: float = 1.0,
        materialize_attempts: int = 3,
        materialize_timeout: float = 5.0,
        materialize_interval: float = 2.0,
        settle_delay_range: tuple[float, float] = (0.0, 0.0),
        raw_store: Any = None,
        silver_log: Any = None,
        clock: Callable[[], datetime] | None = None,
    ) -> Pipeline:
        clock = clock or ManualClock()
        raw_store = raw_store if raw_store is not None else InMemoryRawStore()
        silver_log = silver_log if silver_log is not None else InMemorySilverLog()
        runs = InMemoryRunRepository()
        materializer = DedupMaterializer(silver_log, clock=clock)
        orchestrator = JobOrchestrator(
            ProducerAdapter(source, raw_store, clock=clock),
            raw_store,
            AppendLogBuilder(silver_log, clock=clock),
            materializer,
            runs,
            fetch_policy=StepPolicy(fetch_timeout, ConstantBackoff(fetch_attempts, fetch_interval)),
            materialize_policy=StepPolicy(
                materialize_timeout, ConstantBackoff(materialize_attempts, materialize_interval)
            ),
            settle_delay_range=settle_delay_range,
            clock=clock,
            sleep=sleep,
        )
        return Pipeline(orchestrator, raw_store, silver_log, runs, materializer, sleep)

    return _build
