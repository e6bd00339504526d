"""
Runs router - trigger, list, inspect and cancel runs.

Endpoints:
    POST   /run                    Trigger an on-demand run (202, or 409 if busy)
    GET    /runs                   List runs with filtering/pagination
    GET    /runs/{run_id}          Get one run
    POST   /runs/{run_id}/cancel   Cancel the active run at its next step boundary

Manifesto:
    A trigger is accepted or rejected, nothing else. The outcome of an
    accepted run is only visible through the run history.

Tags:
    api, runs, trigger, audit
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query

from medallion.api.deps import Audit, Front, Orchestrator
from medallion.api.errors import problem_response
from medallion.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from medallion.api.schemas.domain import CancelAcceptedSchema, RunAcceptedSchema, RunSchema
from medallion.core.models import RunStatus, TriggerKind
from medallion.core.timestamps import to_iso8601

router = APIRouter()


@router.post("/run", response_model=SuccessResponse[RunAcceptedSchema], status_code=202)
async def trigger_run(front: Front):
    """Start an on-demand run and return immediately.

    Raises:
        409 Busy: Another run is active. The request is not queued.

    Example:
        POST /run

        Response (202):
        {"data": {"run_id": "01J...", "trigger_kind": "on_demand", "started_at": "..."}}
    """
    record = front.request_run()
    return SuccessResponse(
        data=RunAcceptedSchema(
            run_id=record.run_id,
            trigger_kind=record.trigger_kind.value,
            started_at=to_iso8601(record.started_at),
        )
    )


@router.get("/runs", response_model=PagedResponse[RunSchema])
def list_runs(
    audit: Audit,
    status: RunStatus | None = Query(None, description="Filter by status"),
    trigger_kind: TriggerKind | None = Query(None, description="Filter by trigger kind"),
    limit: int = Query(50, ge=1, le=500, description="Maximum items to return (1-500)"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
):
    """List runs, newest first."""
    records, total = audit.list(status=status, trigger_kind=trigger_kind, limit=limit, offset=offset)
    return PagedResponse(
        data=[RunSchema(**record.to_dict()) for record in records],
        page=PageMeta.from_result(total=total, limit=limit, offset=offset),
    )


@router.get("/runs/{run_id}", response_model=SuccessResponse[RunSchema])
def get_run(audit: Audit, run_id: str = Path(..., description="Run identifier")):
    return SuccessResponse(data=RunSchema(**audit.get(run_id).to_dict()))


@router.post("/runs/{run_id}/cancel", response_model=SuccessResponse[CancelAcceptedSchema], status_code=202)
async def cancel_run(
    orchestrator: Orchestrator,
    audit: Audit,
    run_id: str = Path(..., description="Run identifier"),
):
    """Request cooperative cancellation of the active run.

    The run stops before its next step; the running step is never interrupted.

    Raises:
        404: Unknown run.
        409: The run is not active, or has already started materialize.
    """
    if not orchestrator.cancel(run_id):
        record = audit.get(run_id)
        if record.is_active:
            detail = f"Run {run_id} has started its final step and can no longer be cancelled"
        else:
            detail = f"Run {run_id} is not active (status: {record.status.value})"
        return problem_response(
            status=409,
            title="Conflict",
            detail=detail,
            instance=f"/runs/{run_id}/cancel",
        )
    return SuccessResponse(data=CancelAcceptedSchema(run_id=run_id))
