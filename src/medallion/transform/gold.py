"""
Dedup materializer - silver log into the gold snapshot.

Manifesto:
    Gold is derived and disposable: every rebuild recomputes it from the
    full silver log and replaces the previous snapshot wholesale. Readers
    hold a reference to an immutable :class:`GoldSnapshot`, so they see
    either the old snapshot or the new one, never a half-built state.

    For every ``(entity_id, observed_at)`` group one representative row is
    chosen, preferring, in order:

    1. the latest ``ingestion_time``
    2. the latest ``file_crawl_time``
    3. the latest ``source_file``
    4. the latest append position

    Fields that are missing or ``None`` on the representative are filled
    from the next-preferred rows of the same group. Field names are then
    mapped to public names; unmapped fields pass through.

Architecture:
    ::

        silver_log.scan()
              │
              ▼
        group by key ──► order by preference ──► merge fields ──► rename
              │
              ▼
        GoldSnapshot(rows sorted by key, content_hash)
              │
              ├──► gold_store.replace(snapshot)   (optional, one transaction)
              ▼
        swap in-memory reference

Examples:
    >>> materializer = DedupMaterializer(silver_log)
    >>> snapshot = materializer.rebuild()
    >>> snapshot.latest("Paris").fields["temperature_c"]
    21

Tags:
    gold, deduplication, idempotency-l2, snapshot, atomic-swap
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Iterable, Mapping
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from medallion.core.errors import MaterializeError, MedallionError
from medallion.core.logging import get_logger
from medallion.core.models import GoldRow, SilverRow
from medallion.core.protocols import GoldStore, SilverLog
from medallion.core.timestamps import Clock, ensure_utc, utc_now

logger = get_logger(__name__)

DEFAULT_FIELD_MAP: Mapping[str, str] = MappingProxyType(
    {
        "temp": "temperature_c",
        "feels_like": "feels_like_c",
        "temp_min": "temperature_min_c",
        "temp_max": "temperature_max_c",
        "humidity": "humidity_pct",
        "pressure": "pressure_hpa",
        "wind_speed": "wind_speed_ms",
        "wind_deg": "wind_direction_deg",
        "clouds": "cloud_cover_pct",
        "condition": "weather_condition",
    }
)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


def compute_content_hash(rows: Iterable[GoldRow]) -> str:
    """SHA-256 over the canonical JSON of ``rows`` (order-sensitive)."""
    canonical = json.dumps(
        [row.to_dict() for row in rows],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class GoldSnapshot:
    """Immutable result of one gold rebuild.

    ``rows`` are sorted by ``(entity_id, observed_at)``. ``version`` grows by
    one per successful rebuild; ``content_hash`` depends only on the rows.
    """

    rows: tuple[GoldRow, ...]
    version: int
    built_at: datetime | None
    silver_row_count: int
    content_hash: str
    _latest: Mapping[str, GoldRow] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )

    @classmethod
    def build(
        cls,
        rows: Iterable[GoldRow],
        *,
        version: int,
        built_at: datetime | None,
        silver_row_count: int,
    ) -> GoldSnapshot:
        ordered = tuple(sorted(rows, key=lambda r: (r.entity_id, r.observed_at)))
        latest: dict[str, GoldRow] = {}
        for row in ordered:
            # sorted ascending, so the last row seen per entity is its latest
            latest[row.entity_id] = row
        return cls(
            rows=ordered,
            version=version,
            built_at=built_at,
            silver_row_count=silver_row_count,
            content_hash=compute_content_hash(ordered),
            _latest=MappingProxyType(latest),
        )

    @classmethod
    def empty(cls) -> GoldSnapshot:
        return cls.build((), version=0, built_at=None, silver_row_count=0)

    def __len__(self) -> int:
        return len(self.rows)

    def entities(self) -> list[str]:
        return sorted(self._latest)

    def latest(self, entity_id: str) -> GoldRow | None:
        return self._latest.get(entity_id)

    def max_observed_at(self) -> datetime | None:
        if not self.rows:
            return None
        return max(row.observed_at for row in self.rows)


# ---------------------------------------------------------------------------
# Dedup
# ---------------------------------------------------------------------------


def _merge_fields(group: list[SilverRow]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for row in group:
        for name, value in row.payload.items():
            if merged.get(name) is None:
                merged[name] = value
    return merged


def _rename(fields: Mapping[str, Any], field_map: Mapping[str, str]) -> dict[str, Any]:
    renamed = {name: value for name, value in fields.items() if name not in field_map}
    # a mapped field overrides a pass-through field with the same public name
    for name, value in fields.items():
        if name in field_map:
            public = field_map[name]
            if value is not None or renamed.get(public) is None:
                renamed[public] = value
    return dict(sorted(renamed.items()))


def dedup(rows: Iterable[SilverRow], field_map: Mapping[str, str] = DEFAULT_FIELD_MAP) -> list[GoldRow]:
    """Collapse silver rows into one gold row per ``(entity_id, observed_at)``.

    ``rows`` must be in append order; position is the final tie-breaker.
    """
    groups: dict[tuple[str, datetime], list[tuple[int, SilverRow]]] = {}
    for position, row in enumerate(rows):
        key = (row.entity_id, ensure_utc(row.observed_at))
        groups.setdefault(key, []).append((position, row))

    gold: list[GoldRow] = []
    for (entity_id, observed_at), members in groups.items():
        members.sort(
            key=lambda item: (
                ensure_utc(item[1].ingestion_time),
                ensure_utc(item[1].file_crawl_time),
                item[1].source_file,
                item[0],
            ),
            reverse=True,
        )
        preferred = [row for _, row in members]
        representative = preferred[0]
        gold.append(
            GoldRow(
                entity_id=entity_id,
                observed_at=observed_at,
                fields=_rename(_merge_fields(preferred), field_map),
                source_file=representative.source_file,
                ingestion_time=ensure_utc(representative.ingestion_time),
            )
        )
    return gold


class DedupMaterializer:
    """Rebuilds gold from the full silver log and swaps it in atomically.

    The current snapshot is read lock-free through :attr:`snapshot`;
    rebuilds are serialized among themselves.
    """

    def __init__(
        self,
        silver_log: SilverLog,
        *,
        field_map: Mapping[str, str] = DEFAULT_FIELD_MAP,
        gold_store: GoldStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.silver_log = silver_log
        self.field_map = MappingProxyType(dict(field_map))
        self.gold_store = gold_store
        self._clock = clock
        self._snapshot = GoldSnapshot.empty()
        self._rebuild_lock = threading.Lock()
        # versions continue from the last published snapshot across restarts
        meta = gold_store.meta() if gold_store is not None else None
        self._published_version = int(meta["version"]) if meta else 0

    @property
    def snapshot(self) -> GoldSnapshot:
        return self._snapshot

    def build(self) -> GoldSnapshot:
        """Compute the next snapshot from silver without publishing it.

        Raises:
            MaterializeError: If the silver scan fails.
        """
        try:
            silver = self.silver_log.scan()
        except MedallionError:
            raise
        except Exception as e:
            raise MaterializeError(f"Silver scan failed: {e}", cause=e) from e

        return GoldSnapshot.build(
            dedup(silver, self.field_map),
            version=max(self._snapshot.version, self._published_version) + 1,
            built_at=ensure_utc(self._clock()),
            silver_row_count=len(silver),
        )

    def _publish(self, snapshot: GoldSnapshot) -> None:
        if self.gold_store is not None:
            try:
                self.gold_store.replace(snapshot)
            except MedallionError:
                raise
            except Exception as e:
                raise MaterializeError(f"Gold publish failed: {e}", cause=e) from e
        self._snapshot = snapshot
        self._published_version = snapshot.version

    def rebuild(self, *, publish_guard: AbstractContextManager[Any] | None = None) -> GoldSnapshot:
        """Recompute gold from silver and publish it.

        ``publish_guard`` is entered around the publish only, after the
        snapshot is built. Raising from it aborts the publish. On any
        failure the previous snapshot stays current.

        Raises:
            MaterializeError: If the silver scan or the gold publish fails.
        """
        with self._rebuild_lock:
            snapshot = self.build()
            with publish_guard if publish_guard is not None else nullcontext():
                self._publish(snapshot)

        logger.info(
            "gold_rebuilt",
            version=snapshot.version,
            rows=len(snapshot),
            silver_rows=snapshot.silver_row_count,
            content_hash=snapshot.content_hash[:12],
        )
        return snapshot
