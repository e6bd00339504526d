"""
FastAPI dependency injection - components from the app's container.

Usage in routers::

    from medallion.api.deps import Audit, Gold

    @router.get("/gold/summary")
    def summary(gold: Gold):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from medallion.container import MedallionContainer
from medallion.core.settings import MedallionSettings
from medallion.orchestration.orchestrator import JobOrchestrator
from medallion.orchestration.scheduler import TriggerFront
from medallion.query import GoldQuery, RunAudit


def get_container(request: Request) -> MedallionContainer:
    return request.app.state.container


def get_settings(container: Annotated[MedallionContainer, Depends(get_container)]) -> MedallionSettings:
    return container.settings


def get_trigger_front(container: Annotated[MedallionContainer, Depends(get_container)]) -> TriggerFront:
    return container.trigger_front


def get_orchestrator(container: Annotated[MedallionContainer, Depends(get_container)]) -> JobOrchestrator:
    return container.orchestrator


def get_gold_query(container: Annotated[MedallionContainer, Depends(get_container)]) -> GoldQuery:
    return container.gold_query


def get_run_audit(container: Annotated[MedallionContainer, Depends(get_container)]) -> RunAudit:
    return container.run_audit


Settings = Annotated[MedallionSettings, Depends(get_settings)]
Front = Annotated[TriggerFront, Depends(get_trigger_front)]
Orchestrator = Annotated[JobOrchestrator, Depends(get_orchestrator)]
Gold = Annotated[GoldQuery, Depends(get_gold_query)]
Audit = Annotated[RunAudit, Depends(get_run_audit)]
