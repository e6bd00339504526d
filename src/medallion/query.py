"""Read-side interfaces: gold queries and run audit.

:class:`GoldQuery` only ever reads the materializer's current immutable
snapshot, so a query never blocks on, or observes part of, a rebuild.
:class:`RunAudit` exposes the run history kept by the run repository.
"""

from __future__ import annotations

from typing import Any

from medallion.core.errors import NotFoundError
from medallion.core.models import GoldRow, RunRecord, RunStatus, TriggerKind
from medallion.core.protocols import RunRepository
from medallion.core.timestamps import to_iso8601
from medallion.transform.gold import DedupMaterializer, GoldSnapshot


class GoldQuery:
    """Queries over the current gold snapshot."""

    def __init__(self, materializer: DedupMaterializer) -> None:
        self.materializer = materializer

    @property
    def snapshot(self) -> GoldSnapshot:
        return self.materializer.snapshot

    def summary(self) -> dict[str, Any]:
        snapshot = self.snapshot
        return {
            "max_observed_at": to_iso8601(snapshot.max_observed_at()),
            "row_count": len(snapshot),
            "entity_count": len(snapshot.entities()),
            "version": snapshot.version,
            "built_at": to_iso8601(snapshot.built_at),
            "content_hash": snapshot.content_hash,
        }

    def entities(self) -> list[str]:
        return self.snapshot.entities()

    def latest(self, entity_id: str) -> GoldRow:
        """Most recent gold row for ``entity_id``.

        Raises:
            NotFoundError: If the entity has no gold rows.
        """
        row = self.snapshot.latest(entity_id)
        if row is None:
            raise NotFoundError(f"Entity {entity_id!r} not found").with_context(entity_id=entity_id)
        return row

    def rows(
        self,
        *,
        entity_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[GoldRow], int]:
        """Page through gold rows ordered by ``(entity_id, observed_at)``.

        Returns ``(rows, total)`` where ``total`` counts all matching rows.
        """
        rows = self.snapshot.rows
        if entity_id is not None:
            rows = tuple(r for r in rows if r.entity_id == entity_id)
        return list(rows[offset : offset + limit]), len(rows)


class RunAudit:
    """Run history listing and lookup."""

    def __init__(self, runs: RunRepository) -> None:
        self.runs = runs

    def list(
        self,
        *,
        status: RunStatus | None = None,
        trigger_kind: TriggerKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[RunRecord], int]:
        records = self.runs.list(status=status, trigger_kind=trigger_kind, limit=limit, offset=offset)
        total = self.runs.count(status=status, trigger_kind=trigger_kind)
        return records, total

    def get(self, run_id: str) -> RunRecord:
        """Look up one run.

        Raises:
            NotFoundError: If no run has that id.
        """
        record = self.runs.get(run_id)
        if record is None:
            raise NotFoundError(f"Run {run_id!r} not found").with_context(run_id=run_id)
        return record
