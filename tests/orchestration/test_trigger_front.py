"""Tests for the interval scheduler backend and the trigger front."""

from __future__ import annotations

import asyncio

import pytest
from conftest import observations

from medallion.core.errors import BusyError
from medallion.core.models import RunStatus, TriggerKind
from medallion.orchestration.scheduler import IntervalSchedulerBackend, SchedulerBackend, TriggerFront


class TestIntervalSchedulerBackend:
    def test_satisfies_protocol(self):
        assert isinstance(IntervalSchedulerBackend(), SchedulerBackend)

    @pytest.mark.asyncio
    async def test_fires_immediately(self):
        ticks: list[int] = []

        async def tick():
            ticks.append(1)

        backend = IntervalSchedulerBackend()
        backend.start(tick, interval_seconds=10.0)
        await asyncio.sleep(0.02)

        assert ticks == [1]
        assert backend.is_running
        health = backend.health()
        assert health["healthy"] is True
        assert health["tick_count"] == 1
        assert health["interval_seconds"] == 10.0

        backend.stop()
        assert not backend.is_running

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_stop_the_loop(self):
        async def tick():
            raise RuntimeError("boom")

        backend = IntervalSchedulerBackend()
        backend.start(tick, interval_seconds=0.05)
        await asyncio.sleep(0.13)
        backend.stop()

        assert backend.tick_count >= 2

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_overrun_skips_missed_slots(self):
        durations = [0.5]

        async def tick():
            if durations:
                await asyncio.sleep(durations.pop())

        backend = IntervalSchedulerBackend()
        backend.start(tick, interval_seconds=0.2)
        await asyncio.sleep(0.55)

        # first tick ran 0..0.5, slots at 0.2 and 0.4 are dropped, next is 0.6
        assert backend.tick_count == 1
        assert backend.health()["missed_slots"] == 2

        await asyncio.sleep(0.15)
        assert backend.tick_count == 2
        backend.stop()


class TestTriggerFront:
    @pytest.mark.asyncio
    async def test_tick_during_active_run_is_skipped(self, build_pipeline):
        p = build_pipeline(lambda: observations("Paris"))
        front = TriggerFront(p.orchestrator)
        active = p.orchestrator.start(TriggerKind.ON_DEMAND)

        await front.on_tick()

        assert front.stats.scheduled_skipped_busy == 1
        assert front.stats.scheduled_started == 0
        assert p.runs.count() == 1
        assert front.health()["active_run_id"] == active.run_id

        await p.orchestrator.execute(active)

    @pytest.mark.asyncio
    async def test_request_run_busy_is_raised(self, build_pipeline):
        p = build_pipeline(lambda: observations("Paris"))
        front = TriggerFront(p.orchestrator)

        first = front.request_run()
        with pytest.raises(BusyError) as exc_info:
            front.request_run()

        assert exc_info.value.active_run_id == first.run_id
        assert front.stats.on_demand_started == 1
        assert front.stats.on_demand_rejected_busy == 1

        await p.orchestrator.wait_idle()
        assert p.runs.get(first.run_id).trigger_kind == TriggerKind.ON_DEMAND

    @pytest.mark.asyncio
    async def test_tick_submits_scheduled_run(self, build_pipeline):
        p = build_pipeline(lambda: observations("Paris"))
        front = TriggerFront(p.orchestrator)

        await front.on_tick()
        await p.orchestrator.wait_idle()

        (record,) = p.runs.list()
        assert record.trigger_kind == TriggerKind.SCHEDULED
        assert record.status == RunStatus.SUCCEEDED
        assert front.stats.scheduled_started == 1

    @pytest.mark.asyncio
    async def test_unexpected_tick_error_is_counted(self, build_pipeline, monkeypatch):
        p = build_pipeline(lambda: observations("Paris"))
        front = TriggerFront(p.orchestrator)

        def explode(trigger):
            raise RuntimeError("repository offline")

        monkeypatch.setattr(p.orchestrator, "submit", explode)
        with pytest.raises(RuntimeError):
            await front.on_tick()
        assert front.stats.tick_errors == 1

    @pytest.mark.asyncio
    async def test_health_before_start(self, build_pipeline):
        front = TriggerFront(build_pipeline(lambda: observations("Paris")).orchestrator)
        health = front.health()
        assert health["scheduler_enabled"] is False
        assert health["backend"] == {"healthy": False, "backend": "interval"}
        assert health["active_run_id"] is None
        assert health["triggers"]["scheduled_started"] == 0

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_scheduled_and_on_demand_share_one_guard(self, build_pipeline):
        # interval 0.6s, each run 0.4s; on-demand at 0.2s hits the running
        # scheduled run; the next scheduled run still starts at 0.6s
        async def source():
            await asyncio.sleep(0.4)
            return observations("Paris")

        p = build_pipeline(source)
        front = TriggerFront(p.orchestrator, IntervalSchedulerBackend(), interval_seconds=0.6)
        front.start()
        try:
            await asyncio.sleep(0.2)
            with pytest.raises(BusyError):
                front.request_run()

            await asyncio.sleep(0.3)
            (first,) = p.runs.list()
            assert first.status == RunStatus.SUCCEEDED

            await asyncio.sleep(0.3)
            runs = p.runs.list()
            assert len(runs) == 2
            assert {r.trigger_kind for r in runs} == {TriggerKind.SCHEDULED}
            assert front.stats.scheduled_started == 2
            assert front.stats.on_demand_rejected_busy == 1
            assert front.health()["scheduler_enabled"] is True
        finally:
            await front.stop()

        assert not front.is_running
        assert not p.orchestrator.guard.locked
