"""Health router: scheduler backend, trigger counters and the active run."""

from __future__ import annotations

from fastapi import APIRouter

from medallion.api.deps import Front, Gold, Settings
from medallion.api.schemas.common import SuccessResponse
from medallion.api.schemas.domain import HealthSchema

router = APIRouter(tags=["health"])


@router.get("/health", response_model=SuccessResponse[HealthSchema])
def health(front: Front, gold: Gold, settings: Settings):
    """Report ``degraded`` when the scheduler is enabled but not ticking."""
    info = front.health()
    degraded = settings.scheduler_enabled and not info["backend"].get("healthy", False)
    return SuccessResponse(
        data=HealthSchema(
            status="degraded" if degraded else "healthy",
            version=settings.api_version,
            gold_version=gold.snapshot.version,
            **info,
        )
    )
