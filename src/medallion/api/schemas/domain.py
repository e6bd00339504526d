"""
Domain schemas - runs, gold rows and health.

Built from the model's ``to_dict()`` output, so timestamps are ISO 8601
strings on the wire.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RunAcceptedSchema(BaseModel):
    """Acknowledgement returned when a run is accepted (202)."""

    run_id: str
    trigger_kind: str
    started_at: str


class StepSchema(BaseModel):
    step: str
    status: str
    attempts: int = 0
    started_at: str | None = None
    finished_at: str | None = None
    last_error: str | None = None


class RunSchema(BaseModel):
    """Audit view of one run."""

    run_id: str
    trigger_kind: str
    status: str
    started_at: str
    finished_at: str | None = None
    failure_reason: str | None = Field(default=None, description="Set when status is 'failed'")
    error: str | None = None
    batch_id: str | None = None
    appended_count: int = 0
    gold_row_count: int | None = None
    steps: list[StepSchema] = Field(default_factory=list)


class CancelAcceptedSchema(BaseModel):
    run_id: str
    cancel_requested: bool = True


class GoldRowSchema(BaseModel):
    entity_id: str
    observed_at: str
    fields: dict[str, Any]
    source_file: str
    ingestion_time: str


class GoldSummarySchema(BaseModel):
    """Freshness and size of the current gold snapshot."""

    max_observed_at: str | None = Field(description="Latest observed_at across all gold rows")
    row_count: int
    entity_count: int
    version: int = Field(description="Increments on every successful rebuild; 0 before the first")
    built_at: str | None = None
    content_hash: str


class HealthSchema(BaseModel):
    status: str = Field(description="'healthy' or 'degraded'")
    version: str
    scheduler_enabled: bool
    backend: dict[str, Any]
    triggers: dict[str, int]
    active_run_id: str | None = None
    gold_version: int
