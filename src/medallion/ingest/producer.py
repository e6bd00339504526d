"""
Producer adapter - turns a pluggable data source into committed raw batches.

Manifesto:
    How data is fetched (HTTP, scraping, files) is not our concern. A
    *source* is any callable, sync or async, returning observations. The
    adapter stamps the batch, normalises records, and commits the batch to
    the Raw Store exactly once per successful call. A failed call writes
    nothing. Timeouts and retries belong to the orchestrator.

Architecture:
    ::

        source()  ──►  observations  ──►  RawRecord[]  ──►  RawBatch
          │                                                   │
          │  sync: run in a worker thread                      ▼
          │  async: awaited                             raw_store.put()
          ▼
        any exception ──► ProducerError (chained cause, no write)

    An observation is either a :class:`RawRecord` or a mapping with
    ``entity_id`` and ``observed_at``, plus either a ``payload`` mapping or
    loose measurement fields::

        {"entity_id": "Paris", "observed_at": "2026-10-18T12:00:00Z", "temp": 21.5}

Tags:
    producer, ingestion, bronze, adapter, fan-out
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any, Union

from medallion.core.errors import ConfigError, MedallionError, ProducerError
from medallion.core.logging import get_logger
from medallion.core.models import RawBatch, RawRecord
from medallion.core.protocols import RawStore
from medallion.core.timestamps import Clock, batch_id_for, ensure_utc, utc_now

logger = get_logger(__name__)

Observation = Union[RawRecord, Mapping[str, Any]]
SourceFn = Callable[[], Union[Iterable[Observation], Awaitable[Iterable[Observation]]]]

_RESERVED_KEYS = frozenset({"entity_id", "observed_at", "payload"})


def _parse_observed_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"observed_at must be a datetime or ISO string, got {type(value).__name__}")


def to_raw_record(item: Observation, batch_id: str) -> RawRecord:
    """Normalise one observation into a :class:`RawRecord` for ``batch_id``."""
    if isinstance(item, RawRecord):
        return RawRecord(
            entity_id=item.entity_id,
            observed_at=ensure_utc(item.observed_at),
            payload=item.payload,
            source_batch_id=batch_id,
        )
    if not isinstance(item, Mapping):
        raise TypeError(f"observation must be a mapping or RawRecord, got {type(item).__name__}")
    if "entity_id" not in item or "observed_at" not in item:
        raise KeyError("observation requires 'entity_id' and 'observed_at'")

    if "payload" in item:
        payload = dict(item["payload"])
    else:
        payload = {k: v for k, v in item.items() if k not in _RESERVED_KEYS}
    return RawRecord(
        entity_id=str(item["entity_id"]),
        observed_at=_parse_observed_at(item["observed_at"]),
        payload=payload,
        source_batch_id=batch_id,
    )


class ProducerAdapter:
    """Wraps a source callable; ``fetch()`` returns a committed :class:`RawBatch`.

    Example:
        >>> adapter = ProducerAdapter(lambda: [{"entity_id": "Paris",
        ...     "observed_at": "2026-10-18T12:00:00Z", "temp": 20}], InMemoryRawStore())
        >>> batch = await adapter.fetch()
    """

    def __init__(
        self,
        source: SourceFn,
        raw_store: RawStore,
        *,
        clock: Clock = utc_now,
        name: str | None = None,
    ) -> None:
        self.source = source
        self.raw_store = raw_store
        self._clock = clock
        self.name = name or getattr(source, "__name__", type(source).__name__)

    async def _call_source(self) -> Iterable[Observation]:
        if inspect.iscoroutinefunction(self.source) or inspect.iscoroutinefunction(
            getattr(self.source, "__call__", None)
        ):
            return await self.source()
        # Blocking sources run off the loop so the orchestrator's timeout can abandon them
        result = await asyncio.to_thread(self.source)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def fetch(self) -> RawBatch:
        produced_at = ensure_utc(self._clock())
        batch_id = batch_id_for(produced_at)

        try:
            observations = await self._call_source()
            records = tuple(to_raw_record(item, batch_id) for item in observations)
        except MedallionError:
            raise
        except Exception as e:
            raise ProducerError(f"Source {self.name!r} failed: {e}", cause=e).with_context(
                batch_id=batch_id, source=self.name
            ) from e

        batch = RawBatch(batch_id=batch_id, produced_at=produced_at, records=records)
        try:
            self.raw_store.put(batch)
        except MedallionError:
            raise
        except Exception as e:
            raise ProducerError(f"Raw store write failed: {e}", cause=e).with_context(
                batch_id=batch_id
            ) from e

        logger.info("raw_batch_fetched", source=self.name, batch_id=batch_id, records=len(records))
        return batch


class EntityFanoutSource:
    """Fetch one entity at a time, up to ``max_concurrency`` in parallel.

    ``fetch_one(entity)`` (sync or async) returns one observation or an
    iterable of observations. All fetches are joined before the call
    returns; if any entity fails, the first failure is raised.

    Example:
        >>> source = EntityFanoutSource(fetch_city, ["Paris", "Lyon"], max_concurrency=2)
        >>> adapter = ProducerAdapter(source, raw_store)
    """

    def __init__(
        self,
        fetch_one: Callable[[str], Any],
        entities: Sequence[str],
        max_concurrency: int = 4,
    ) -> None:
        if max_concurrency < 1:
            raise ConfigError("max_concurrency must be at least 1")
        self.fetch_one = fetch_one
        self.entities = list(entities)
        self.max_concurrency = max_concurrency
        self.__name__ = getattr(fetch_one, "__name__", "fanout")

    async def _fetch(self, entity: str, semaphore: asyncio.Semaphore) -> list[Observation]:
        async with semaphore:
            if inspect.iscoroutinefunction(self.fetch_one):
                result = await self.fetch_one(entity)
            else:
                result = await asyncio.to_thread(self.fetch_one, entity)
        if isinstance(result, (Mapping, RawRecord)):
            return [result]
        return list(result)

    async def __call__(self) -> list[Observation]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(self._fetch(entity, semaphore) for entity in self.entities),
            return_exceptions=True,
        )
        observations: list[Observation] = []
        for entity, result in zip(self.entities, results):
            if isinstance(result, BaseException):
                raise ProducerError(f"Fetch failed for {entity!r}: {result}", cause=result).with_context(
                    entity_id=entity
                ) from result
            observations.extend(result)
        return observations


def resolve_source(ref: str) -> SourceFn:
    """Import the source identified by ``'module:qualname'``.

    Raises:
        ConfigError: If the reference is malformed, missing or not callable.
    """
    module_path, _, attr_path = ref.partition(":")
    if not module_path or not attr_path:
        raise ConfigError(f"Invalid source ref (expected 'module:callable'): {ref!r}")
    try:
        obj: Any = importlib.import_module(module_path)
        for part in attr_path.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"Cannot resolve source {ref!r}: {e}", cause=e) from e
    if not callable(obj):
        raise ConfigError(f"Source {ref!r} resolved to non-callable: {type(obj).__name__}")
    return obj
