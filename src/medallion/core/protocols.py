"""
Storage protocols for the medallion layers.

Manifesto:
    The orchestrator and builders depend on shape, not implementation.
    The same code runs against the in-memory stores (tests, development)
    and the SQLite stores (single-node deployments).

Architecture:
    ::

        protocols.py
        ├── Connection      - sync DB protocol (sqlite3 adapter)
        ├── RawStore        - bronze landing area, write-once batches
        ├── SilverLog       - append-only lineage-tagged log
        ├── GoldStore       - optional published copy of the gold snapshot
        └── RunRepository   - RunRecord audit history

Guardrails:
    ❌ DON'T: Add update/delete methods to RawStore or SilverLog
    ✅ DO: Keep bronze and silver append-only
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .models import RawBatch, RunRecord, RunStatus, SilverRow, TriggerKind

if TYPE_CHECKING:
    from medallion.transform.gold import GoldSnapshot


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous database connection (sqlite3-style, ``?`` params)."""

    def execute(self, sql: str, params: tuple = ()) -> Any: ...

    def executemany(self, sql: str, params: list[tuple]) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list[Any]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@runtime_checkable
class RawStore(Protocol):
    """Immutable, append-only landing area for producer output."""

    def put(self, batch: RawBatch) -> None:
        """Commit a batch. Re-committing an existing ``batch_id`` is an error."""
        ...

    def get(self, batch_id: str) -> RawBatch | None:
        """Return the batch if it is visible, else ``None``."""
        ...

    def batch_ids(self) -> list[str]: ...


@runtime_checkable
class SilverLog(Protocol):
    """Append-only chronological log of lineage-tagged rows."""

    def append(self, rows: Sequence[SilverRow]) -> int:
        """Append rows in order; return the number appended."""
        ...

    def scan(self) -> list[SilverRow]:
        """All rows in append order."""
        ...

    def count(self) -> int: ...


@runtime_checkable
class GoldStore(Protocol):
    """Published copy of the gold snapshot, replaced all-or-nothing."""

    def replace(self, snapshot: GoldSnapshot) -> None: ...

    def meta(self) -> dict[str, Any] | None:
        """Version, build time, hash and row count of the published snapshot."""
        ...


@runtime_checkable
class RunRepository(Protocol):
    """Audit history of runs."""

    def save(self, record: RunRecord) -> None:
        """Insert or update the record (keyed by ``run_id``)."""
        ...

    def get(self, run_id: str) -> RunRecord | None: ...

    def list(
        self,
        *,
        status: RunStatus | None = None,
        trigger_kind: TriggerKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RunRecord]:
        """Newest first."""
        ...

    def count(
        self,
        *,
        status: RunStatus | None = None,
        trigger_kind: TriggerKind | None = None,
    ) -> int: ...
