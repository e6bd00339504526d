"""Medallion data model: raw batches, silver rows, gold rows and run records.

Manifesto:
    Raw batches and silver rows are immutable once written (frozen
    dataclasses). Gold rows are derived and disposable. Run records are
    the only mutable objects: the orchestrator owns the record of the
    active run and persists a snapshot after every transition.

Tags:
    models, dataclasses, medallion, bronze, silver, gold, runs
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from .timestamps import to_iso8601

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TriggerKind(str, Enum):
    """Where a run came from."""

    SCHEDULED = "scheduled"
    ON_DEMAND = "on_demand"


class RunStatus(str, Enum):
    """Run-level status."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepName(str, Enum):
    """Steps of a run, in execution order."""

    FETCH = "fetch"
    SETTLE_DELAY = "settle_delay"
    MATERIALIZE = "materialize"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailureReason(str, Enum):
    """Why a run ended in ``failed``."""

    FETCH_EXHAUSTED = "fetch_exhausted"
    FETCH_ERROR = "fetch_error"
    MATERIALIZE_EXHAUSTED = "materialize_exhausted"
    MATERIALIZE_ERROR = "materialize_error"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


# ---------------------------------------------------------------------------
# Bronze
# ---------------------------------------------------------------------------


def _freeze(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(payload))


@dataclass(frozen=True)
class RawRecord:
    """One producer observation. ``payload`` is an open field->value mapping."""

    entity_id: str
    observed_at: datetime
    payload: Mapping[str, Any]
    source_batch_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", _freeze(self.payload))


@dataclass(frozen=True)
class RawBatch:
    """A committed producer batch. Owned by the Raw Store, never mutated."""

    batch_id: str
    produced_at: datetime
    records: tuple[RawRecord, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "records", tuple(self.records))

    def __len__(self) -> int:
        return len(self.records)


# ---------------------------------------------------------------------------
# Silver
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SilverRow:
    """A raw record plus lineage. Appended once, never updated."""

    entity_id: str
    observed_at: datetime
    payload: Mapping[str, Any]
    source_file: str
    file_crawl_time: datetime
    ingestion_time: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", _freeze(self.payload))

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.entity_id, self.observed_at)

    @classmethod
    def from_raw(cls, record: RawRecord, batch: RawBatch, ingestion_time: datetime) -> SilverRow:
        return cls(
            entity_id=record.entity_id,
            observed_at=record.observed_at,
            payload=record.payload,
            source_file=batch.batch_id,
            file_crawl_time=batch.produced_at,
            ingestion_time=ingestion_time,
        )


# ---------------------------------------------------------------------------
# Gold
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoldRow:
    """One deduplicated row per (entity_id, observed_at), public field names."""

    entity_id: str
    observed_at: datetime
    fields: Mapping[str, Any]
    source_file: str
    ingestion_time: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _freeze(self.fields))

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.entity_id, self.observed_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "observed_at": to_iso8601(self.observed_at),
            "fields": dict(self.fields),
            "source_file": self.source_file,
            "ingestion_time": to_iso8601(self.ingestion_time),
        }


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@dataclass
class StepState:
    """Progress of one step within a run."""

    step: StepName
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "last_error": self.last_error,
        }


def _initial_steps() -> dict[StepName, StepState]:
    return {step: StepState(step=step) for step in StepName}


@dataclass
class RunRecord:
    """Audit record of one orchestrator run."""

    run_id: str
    trigger_kind: TriggerKind
    started_at: datetime
    status: RunStatus = RunStatus.RUNNING
    step_states: dict[StepName, StepState] = field(default_factory=_initial_steps)
    finished_at: datetime | None = None
    failure_reason: FailureReason | None = None
    error: str | None = None
    batch_id: str | None = None
    appended_count: int = 0
    gold_row_count: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status == RunStatus.RUNNING

    def step(self, name: StepName) -> StepState:
        return self.step_states[name]

    def snapshot(self) -> RunRecord:
        """Detached copy for persistence; later mutation of the live record won't leak."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger_kind": self.trigger_kind.value,
            "status": self.status.value,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error": self.error,
            "batch_id": self.batch_id,
            "appended_count": self.appended_count,
            "gold_row_count": self.gold_row_count,
            "steps": [state.to_dict() for state in self.step_states.values()],
        }
