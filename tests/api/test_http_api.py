"""HTTP API tests using FastAPI's TestClient.

The scheduler is disabled; runs are triggered through ``POST /run`` and
executed on the TestClient's event loop. A gate lets tests hold a run in
its fetch step.
"""

from __future__ import annotations

import threading
import time

import pytest
from conftest import observations
from fastapi.testclient import TestClient

from medallion.api import create_app
from medallion.container import MedallionContainer
from medallion.core.settings import load_settings


@pytest.fixture
def gate():
    event = threading.Event()
    event.set()
    yield event
    event.set()


@pytest.fixture
def client(gate):
    def source():
        gate.wait(5)
        return observations("Paris", "Rome")

    settings = load_settings(
        scheduler_enabled=False,
        settle_delay_range=(0.0, 0.0),
        fetch_retry_interval=0,
        materialize_retry_interval=0,
    )
    container = MedallionContainer(settings, source=source)
    with TestClient(create_app(container=container)) as c:
        yield c
    container.close()


def _wait_done(client: TestClient, run_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        run = client.get(f"/runs/{run_id}").json()["data"]
        if run["status"] != "running":
            return run
        time.sleep(0.02)
    raise AssertionError(f"run {run_id} did not finish")


class TestTrigger:
    def test_run_accepted_then_succeeds(self, client):
        resp = client.post("/run")
        assert resp.status_code == 202
        accepted = resp.json()["data"]
        assert accepted["trigger_kind"] == "on_demand"

        run = _wait_done(client, accepted["run_id"])
        assert run["status"] == "succeeded"
        assert run["appended_count"] == 2
        assert run["gold_row_count"] == 2
        assert [s["step"] for s in run["steps"]] == ["fetch", "settle_delay", "materialize"]

    def test_busy_while_run_active(self, client, gate):
        gate.clear()
        first = client.post("/run").json()["data"]

        resp = client.post("/run")
        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["title"] == "Busy"
        assert body["status"] == 409

        gate.set()
        assert _wait_done(client, first["run_id"])["status"] == "succeeded"
        assert client.get("/runs").json()["page"]["total"] == 1


class TestRuns:
    def test_list_and_filter(self, client):
        run_id = client.post("/run").json()["data"]["run_id"]
        _wait_done(client, run_id)

        body = client.get("/runs", params={"status": "succeeded"}).json()
        assert body["page"]["total"] == 1
        assert body["data"][0]["run_id"] == run_id

        body = client.get("/runs", params={"trigger_kind": "scheduled"}).json()
        assert body["data"] == []

    def test_invalid_filter(self, client):
        assert client.get("/runs", params={"status": "bogus"}).status_code == 422

    def test_unknown_run(self, client):
        resp = client.get("/runs/nope")
        assert resp.status_code == 404
        assert resp.json()["title"] == "Not Found"


class TestCancel:
    def test_cancel_active_run(self, client, gate):
        gate.clear()
        run_id = client.post("/run").json()["data"]["run_id"]

        resp = client.post(f"/runs/{run_id}/cancel")
        assert resp.status_code == 202
        assert resp.json()["data"] == {"run_id": run_id, "cancel_requested": True}

        gate.set()
        run = _wait_done(client, run_id)
        assert run["status"] == "failed"
        assert run["failure_reason"] == "cancelled"
        assert run["steps"][2]["status"] == "skipped"

    def test_cancel_finished_run_conflicts(self, client):
        run_id = client.post("/run").json()["data"]["run_id"]
        _wait_done(client, run_id)

        resp = client.post(f"/runs/{run_id}/cancel")
        assert resp.status_code == 409
        assert "not active" in resp.json()["detail"]

    def test_cancel_unknown_run(self, client):
        assert client.post("/runs/nope/cancel").status_code == 404


class TestGold:
    def test_empty_before_first_run(self, client):
        summary = client.get("/gold/summary").json()["data"]
        assert summary["row_count"] == 0
        assert summary["max_observed_at"] is None
        # the lifespan rebuilds once on startup
        assert summary["version"] == 1

    def test_queries_after_run(self, client):
        _wait_done(client, client.post("/run").json()["data"]["run_id"])

        summary = client.get("/gold/summary").json()["data"]
        assert summary["row_count"] == 2
        assert summary["entity_count"] == 2
        assert summary["max_observed_at"] == "2026-10-18T12:00:00+00:00"

        assert client.get("/gold/entities").json()["data"] == ["Paris", "Rome"]

        latest = client.get("/gold/entities/Paris/latest").json()["data"]
        assert latest["fields"] == {"temperature_c": 20.0}

        body = client.get("/gold/rows", params={"limit": 1}).json()
        assert len(body["data"]) == 1
        assert body["page"] == {"total": 2, "limit": 1, "offset": 0, "has_more": True}

    def test_unknown_entity(self, client):
        assert client.get("/gold/entities/Oslo/latest").status_code == 404


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "healthy"
    assert data["scheduler_enabled"] is False
    assert data["active_run_id"] is None
    assert data["triggers"]["on_demand_started"] == 0
