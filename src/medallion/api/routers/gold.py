"""
Gold router - read-only queries over the current gold snapshot.

Endpoints:
    GET /gold/summary                      Freshness and size
    GET /gold/entities                     Entity ids present in gold
    GET /gold/entities/{entity_id}/latest  Latest row for one entity
    GET /gold/rows                         Paged rows, optionally for one entity
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query

from medallion.api.deps import Gold
from medallion.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from medallion.api.schemas.domain import GoldRowSchema, GoldSummarySchema

router = APIRouter(prefix="/gold")


@router.get("/summary", response_model=SuccessResponse[GoldSummarySchema])
def gold_summary(gold: Gold):
    return SuccessResponse(data=GoldSummarySchema(**gold.summary()))


@router.get("/entities", response_model=SuccessResponse[list[str]])
def gold_entities(gold: Gold):
    return SuccessResponse(data=gold.entities())


@router.get("/entities/{entity_id}/latest", response_model=SuccessResponse[GoldRowSchema])
def gold_entity_latest(gold: Gold, entity_id: str = Path(..., description="Entity identifier")):
    return SuccessResponse(data=GoldRowSchema(**gold.latest(entity_id).to_dict()))


@router.get("/rows", response_model=PagedResponse[GoldRowSchema])
def gold_rows(
    gold: Gold,
    entity_id: str | None = Query(None, description="Only rows for this entity"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    rows, total = gold.rows(entity_id=entity_id, limit=limit, offset=offset)
    return PagedResponse(
        data=[GoldRowSchema(**row.to_dict()) for row in rows],
        page=PageMeta.from_result(total=total, limit=limit, offset=offset),
    )
