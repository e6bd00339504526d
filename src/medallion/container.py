"""
Lazy-initialised component container.

:class:`MedallionContainer` wires stores, the producer, the transforms,
the orchestrator and the trigger front from one :class:`MedallionSettings`
and creates each of them on first access.

Usage::

    from medallion.container import MedallionContainer

    container = MedallionContainer()
    record = await container.orchestrator.run(TriggerKind.ON_DEMAND)
    container.gold_query.summary()

    # Or with explicit settings and a custom source:
    with MedallionContainer(load_settings(storage_backend="sqlite"), source=my_source) as c:
        ...
"""

from __future__ import annotations

from typing import Any

from medallion.core.protocols import GoldStore, RawStore, RunRepository, SilverLog
from medallion.core.settings import MedallionSettings, StorageBackend, get_settings
from medallion.ingest.producer import EntityFanoutSource, ProducerAdapter, SourceFn, resolve_source
from medallion.orchestration.orchestrator import JobOrchestrator
from medallion.orchestration.retry import StepPolicy
from medallion.orchestration.scheduler import IntervalSchedulerBackend, TriggerFront
from medallion.query import GoldQuery, RunAudit
from medallion.storage.memory import InMemoryRawStore, InMemoryRunRepository, InMemorySilverLog
from medallion.storage.sqlite import (
    SqliteConnection,
    SqliteGoldStore,
    SqliteRawStore,
    SqliteRunRepository,
    SqliteSilverLog,
)
from medallion.transform.gold import DedupMaterializer
from medallion.transform.silver import AppendLogBuilder


class MedallionContainer:
    """Lazy-initialised dependency container.

    Components are created on first property access and released via
    :meth:`close` (or the context-manager protocol). ``source`` and
    ``orchestrator_options`` override what settings would build; tests use
    them to inject fake producers, clocks and sleeps.
    """

    def __init__(
        self,
        settings: MedallionSettings | None = None,
        *,
        source: SourceFn | None = None,
        **orchestrator_options: Any,
    ) -> None:
        self._settings = settings
        self._source = source
        self._orchestrator_options = orchestrator_options
        self._connection: SqliteConnection | None = None
        self._raw_store: RawStore | None = None
        self._silver_log: SilverLog | None = None
        self._gold_store: GoldStore | None = None
        self._runs: RunRepository | None = None
        self._materializer: DedupMaterializer | None = None
        self._orchestrator: JobOrchestrator | None = None
        self._trigger_front: TriggerFront | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> MedallionSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def uses_sqlite(self) -> bool:
        return self.settings.storage_backend == StorageBackend.SQLITE

    @property
    def connection(self) -> SqliteConnection:
        """Shared SQLite connection (sqlite backend only)."""
        if self._connection is None:
            self._connection = SqliteConnection(self.settings.database_path)
            self._connection.init_schema()
        return self._connection

    @property
    def raw_store(self) -> RawStore:
        if self._raw_store is None:
            self._raw_store = SqliteRawStore(self.connection) if self.uses_sqlite else InMemoryRawStore()
        return self._raw_store

    @property
    def silver_log(self) -> SilverLog:
        if self._silver_log is None:
            self._silver_log = SqliteSilverLog(self.connection) if self.uses_sqlite else InMemorySilverLog()
        return self._silver_log

    @property
    def gold_store(self) -> GoldStore | None:
        """Durable gold table; the in-memory backend keeps gold in the snapshot only."""
        if self._gold_store is None and self.uses_sqlite:
            self._gold_store = SqliteGoldStore(self.connection)
        return self._gold_store

    @property
    def runs(self) -> RunRepository:
        if self._runs is None:
            self._runs = SqliteRunRepository(self.connection) if self.uses_sqlite else InMemoryRunRepository()
        return self._runs

    @property
    def source(self) -> SourceFn:
        if self._source is None:
            fn = resolve_source(self.settings.source_ref)
            if self.settings.entities:
                fn = EntityFanoutSource(fn, self.settings.entities, self.settings.fetch_concurrency)
            self._source = fn
        return self._source

    @property
    def materializer(self) -> DedupMaterializer:
        if self._materializer is None:
            self._materializer = DedupMaterializer(self.silver_log, gold_store=self.gold_store)
        return self._materializer

    @property
    def orchestrator(self) -> JobOrchestrator:
        if self._orchestrator is None:
            settings = self.settings
            self._orchestrator = JobOrchestrator(
                ProducerAdapter(self.source, self.raw_store),
                self.raw_store,
                AppendLogBuilder(self.silver_log),
                self.materializer,
                self.runs,
                fetch_policy=StepPolicy.fetch_from_settings(settings),
                materialize_policy=StepPolicy.materialize_from_settings(settings),
                settle_delay_range=settings.settle_delay_range,
                **self._orchestrator_options,
            )
        return self._orchestrator

    @property
    def trigger_front(self) -> TriggerFront:
        if self._trigger_front is None:
            self._trigger_front = TriggerFront(
                self.orchestrator,
                IntervalSchedulerBackend(),
                interval_seconds=self.settings.schedule_interval,
            )
        return self._trigger_front

    @property
    def gold_query(self) -> GoldQuery:
        return GoldQuery(self.materializer)

    @property
    def run_audit(self) -> RunAudit:
        return RunAudit(self.runs)

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Release the SQLite connection, if one was opened."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> MedallionContainer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
