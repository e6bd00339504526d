"""Tests for MedallionContainer wiring from settings."""

from __future__ import annotations

import pytest

from medallion.container import MedallionContainer
from medallion.core.models import RunStatus, TriggerKind
from medallion.core.settings import load_settings
from medallion.ingest.producer import EntityFanoutSource


@pytest.mark.asyncio
async def test_entities_with_default_source_fetch_per_city():
    settings = load_settings(entities=["Paris", "Rome"], settle_delay_range=(0.0, 0.0))
    with MedallionContainer(settings) as container:
        assert isinstance(container.source, EntityFanoutSource)

        record = await container.orchestrator.run(TriggerKind.ON_DEMAND)

        assert record.status == RunStatus.SUCCEEDED
        assert record.appended_count == 2
        assert container.gold_query.entities() == ["Paris", "Rome"]


@pytest.mark.asyncio
async def test_default_source_without_entities_fetches_all_cities():
    settings = load_settings(settle_delay_range=(0.0, 0.0))
    with MedallionContainer(settings) as container:
        record = await container.orchestrator.run(TriggerKind.ON_DEMAND)
        assert record.status == RunStatus.SUCCEEDED
        assert record.appended_count == 6


def test_sqlite_gold_version_survives_restart(tmp_path):
    settings = load_settings(storage_backend="sqlite", database_path=str(tmp_path / "medallion.db"))

    with MedallionContainer(settings) as container:
        container.materializer.rebuild()
        container.materializer.rebuild()
        assert container.gold_store.meta()["version"] == 2

    with MedallionContainer(settings) as container:
        assert container.materializer.rebuild().version == 3
        assert container.gold_store.meta()["version"] == 3
