"""Scheduler backend and trigger front.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TRIGGER FRONT                                                                │
│                                                                               │
│  Two trigger paths, one orchestrator, one guard:                              │
│                                                                               │
│   ┌───────────────────┐  tick()   ┌──────────────┐  submit()  ┌────────────┐ │
│   │ IntervalScheduler │ ────────► │ TriggerFront │ ─────────► │ Orchestr.  │ │
│   │ Backend (asyncio) │           │              │            │ (RunGuard) │ │
│   └───────────────────┘           │  busy? skip  │            └────────────┘ │
│   HTTP / CLI ── request_run() ──► │  busy? raise │                           │
│                                   └──────────────┘                           │
│                                                                               │
│  Responsibility split:                                                        │
│  - Backend: controls WHEN ticks happen (fixed-rate, wall clock)               │
│  - Front:   controls WHAT a tick does (submit a scheduled run)                │
│                                                                               │
│  Ticks are fixed-rate: slot n fires at origin + n * interval regardless of   │
│  how long the previous run took. A tick that lands during an active run is  │
│  skipped; missed slots are never replayed in a burst.                         │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from medallion.core.errors import BusyError
from medallion.core.logging import get_logger
from medallion.core.models import RunRecord, TriggerKind
from medallion.core.timestamps import to_iso8601, utc_now

from .orchestrator import JobOrchestrator

logger = get_logger(__name__)

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Timing backend: calls the tick callback at the interval, nothing else.

    Example (custom backend):
        >>> class MyBackend:
        ...     name = "custom"
        ...
        ...     def start(self, tick_callback, interval_seconds=60.0):
        ...         my_scheduler.add_job(tick_callback, interval_seconds)
        ...
        ...     def stop(self):
        ...         my_scheduler.shutdown()
        ...
        ...     def health(self) -> dict:
        ...         return {"healthy": True, "backend": "custom"}
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None: ...

    def stop(self) -> None: ...

    def health(self) -> dict[str, Any]: ...


class IntervalSchedulerBackend:
    """Fixed-rate asyncio ticker.

    Fires immediately on start, then at ``origin + n * interval`` on the
    event loop's monotonic clock. Must be started from a running loop.

    Example:
        >>> backend = IntervalSchedulerBackend()
        >>> backend.start(front.on_tick, interval_seconds=60.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "interval"

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None
        self._interval: float = 60.0
        self._tick_count = 0
        self._missed_slots = 0
        self._last_tick: datetime | None = None

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self.is_running:
            logger.warning("scheduler_already_started", backend=self.name)
            return
        self._interval = interval_seconds
        self._task = asyncio.get_running_loop().create_task(
            self._loop(tick_callback, interval_seconds), name="medallion-scheduler"
        )
        logger.info("scheduler_started", backend=self.name, interval_seconds=interval_seconds)

    async def _loop(self, tick_callback: TickCallback, interval: float) -> None:
        loop = asyncio.get_running_loop()
        origin = loop.time()
        slot = 0
        while True:
            self._tick_count += 1
            self._last_tick = utc_now()
            try:
                await tick_callback()
            except Exception:
                logger.exception("scheduler_tick_failed", backend=self.name)

            slot += 1
            now = loop.time()
            due = origin + slot * interval
            if now > due:
                # the tick overran one or more slots: resume on the next future slot
                next_slot = math.floor((now - origin) / interval) + 1
                self._missed_slots += next_slot - slot
                slot = next_slot
                due = origin + slot * interval
            await asyncio.sleep(due - now)

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("scheduler_stopped", backend=self.name, ticks=self._tick_count)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "tick_count": self._tick_count,
            "missed_slots": self._missed_slots,
            "last_tick": to_iso8601(self._last_tick),
            "interval_seconds": self._interval,
        }


@dataclass
class TriggerStats:
    """Counters for both trigger paths."""

    scheduled_started: int = 0
    scheduled_skipped_busy: int = 0
    on_demand_started: int = 0
    on_demand_rejected_busy: int = 0
    tick_errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "scheduled_started": self.scheduled_started,
            "scheduled_skipped_busy": self.scheduled_skipped_busy,
            "on_demand_started": self.on_demand_started,
            "on_demand_rejected_busy": self.on_demand_rejected_busy,
            "tick_errors": self.tick_errors,
        }


class TriggerFront:
    """Feeds scheduled ticks and on-demand requests into the orchestrator."""

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        backend: SchedulerBackend | None = None,
        *,
        interval_seconds: float = 60.0,
    ) -> None:
        self.orchestrator = orchestrator
        self.backend = backend or IntervalSchedulerBackend()
        self.interval_seconds = interval_seconds
        self.stats = TriggerStats()
        self._started = False

    async def on_tick(self) -> None:
        try:
            record = self.orchestrator.submit(TriggerKind.SCHEDULED)
        except BusyError as e:
            self.stats.scheduled_skipped_busy += 1
            logger.info("scheduled_tick_skipped", reason="busy", active_run_id=e.active_run_id)
            return
        except Exception:
            self.stats.tick_errors += 1
            raise
        self.stats.scheduled_started += 1
        logger.debug("scheduled_run_submitted", run_id=record.run_id)

    def request_run(self) -> RunRecord:
        """Submit an on-demand run.

        Raises:
            BusyError: If a run is already active; the request is not queued.
        """
        try:
            record = self.orchestrator.submit(TriggerKind.ON_DEMAND)
        except BusyError:
            self.stats.on_demand_rejected_busy += 1
            raise
        self.stats.on_demand_started += 1
        return record

    def start(self) -> None:
        if self._started:
            return
        self.backend.start(self.on_tick, interval_seconds=self.interval_seconds)
        self._started = True

    async def stop(self) -> None:
        """Stop ticking, then cancel any in-flight run."""
        if self._started:
            self.backend.stop()
            self._started = False
        await self.orchestrator.shutdown()

    @property
    def is_running(self) -> bool:
        return self._started

    def health(self) -> dict[str, Any]:
        active = self.orchestrator.active_run
        return {
            "scheduler_enabled": self._started,
            "backend": self.backend.health() if self._started else {"healthy": False, "backend": self.backend.name},
            "triggers": self.stats.to_dict(),
            "active_run_id": active.run_id if active else None,
        }
