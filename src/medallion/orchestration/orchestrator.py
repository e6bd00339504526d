"""
Job orchestrator - fetch, settle, materialize under a single-flight guard.

Manifesto:
    A run is a small state machine::

        Idle ─► Running(fetch) ─► Running(settle_delay) ─► Running(materialize)
                    │                                           │
                    └────────────► Failed ◄─────────────────────┤
                                                                ▼
                                                            Succeeded

    Only one run is active at a time. ``start()`` claims the
    :class:`RunGuard` or raises :class:`BusyError`; nothing is queued.
    ``execute()`` drives the steps, never raises, and always releases the
    guard. Outcomes are reported only through the persisted
    :class:`RunRecord`.

    Each step attempt has its own timeout; a timeout or a retryable error
    triggers the step's retry policy, never a whole-run retry. A retryable
    error on the last attempt fails the run with ``<step>_exhausted``; a
    non-retryable error fails it immediately with ``<step>_error``.

    Cancellation is cooperative: ``cancel(run_id)`` is honoured at the
    next step boundary. The running step is never interrupted, and once
    materialize has started there is no boundary left, so the request is
    rejected.

Architecture:
    ::

        fetch         producer.fetch()                    (async, timeout, retry)
        settle_delay  sleep(uniform(lo, hi))
        materialize   worker thread, under the write lock: (timeout, retry)
                        raw_store.get(batch_id)    → CommitVisibilityError if missing
                        silver.apply(batch)        → once per run
                        materializer.rebuild()     → atomic gold swap, unless abandoned

    A timed-out materialize attempt keeps running in its worker thread.
    The write lock makes the next attempt wait for it, so silver appends
    and gold swaps from the same run never interleave. Once the step has
    failed the attempt is abandoned: a worker that is still running may
    finish building, but it can no longer append silver or publish gold.

Tags:
    orchestration, state-machine, single-flight, retry, timeout, cancellation
"""

from __future__ import annotations

import asyncio
import random
import threading
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any

from medallion.core.errors import BusyError, CommitVisibilityError, MaterializeError, MedallionError
from medallion.core.logging import LogContext, get_logger
from medallion.core.models import (
    FailureReason,
    RunRecord,
    RunStatus,
    StepName,
    StepState,
    StepStatus,
    TriggerKind,
)
from medallion.core.protocols import RawStore, RunRepository
from medallion.core.timestamps import Clock, generate_run_id, utc_now
from medallion.ingest.producer import ProducerAdapter
from medallion.transform.gold import DedupMaterializer, GoldSnapshot
from medallion.transform.silver import AppendLogBuilder

from .guard import RunGuard
from .retry import RetryContext, Sleep, StepPolicy

logger = get_logger(__name__)

_STEP_ORDER = (StepName.FETCH, StepName.SETTLE_DELAY, StepName.MATERIALIZE)


class _Materialization:
    """Per-run materialize progress shared across attempts.

    Once the step has failed the run is abandoned: attempts still running
    in a worker thread must not touch silver or gold afterwards.
    """

    def __init__(self) -> None:
        self.appended: int | None = None
        self.snapshot: GoldSnapshot | None = None
        self.abandoned = threading.Event()
        self._commit_lock = threading.Lock()

    @contextmanager
    def commit(self) -> Iterator[None]:
        """Hold the commit lock around a write; refuse it once abandoned."""
        with self._commit_lock:
            if self.abandoned.is_set():
                raise MaterializeError("Materialize attempt abandoned after the step failed")
            yield

    def abandon(self) -> None:
        """Refuse further writes, then wait out a write already in progress."""
        self.abandoned.set()
        with self._commit_lock:
            pass


class JobOrchestrator:
    """Runs the ingestion job, one run at a time.

    Example:
        >>> orchestrator = JobOrchestrator(producer, raw_store, silver, materializer, runs,
        ...     fetch_policy=StepPolicy.fetch_from_settings(settings),
        ...     materialize_policy=StepPolicy.materialize_from_settings(settings))
        >>> record = await orchestrator.run(TriggerKind.ON_DEMAND)
        >>> record.status
        <RunStatus.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        producer: ProducerAdapter,
        raw_store: RawStore,
        silver: AppendLogBuilder,
        materializer: DedupMaterializer,
        runs: RunRepository,
        *,
        fetch_policy: StepPolicy,
        materialize_policy: StepPolicy,
        settle_delay_range: tuple[float, float] = (20.0, 30.0),
        guard: RunGuard | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.producer = producer
        self.raw_store = raw_store
        self.silver = silver
        self.materializer = materializer
        self.runs = runs
        self.fetch_policy = fetch_policy
        self.materialize_policy = materialize_policy
        self.settle_delay_range = settle_delay_range
        self.guard = guard or RunGuard()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._active: RunRecord | None = None
        self._cancel_requested: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def start(self, trigger: TriggerKind) -> RunRecord:
        """Claim the guard and register a new run.

        Returns the live record; it stays owned by the orchestrator.

        Raises:
            BusyError: If another run is active.
        """
        started_at = self._clock()
        run_id = generate_run_id(started_at)
        if not self.guard.try_acquire(run_id):
            holder = self.guard.holder
            logger.info("run_rejected_busy", trigger_kind=trigger.value, active_run_id=holder)
            raise BusyError(active_run_id=holder)

        record = RunRecord(run_id=run_id, trigger_kind=trigger, started_at=started_at)
        try:
            self.runs.save(record)
        except BaseException:
            self.guard.release(run_id)
            raise
        self._active = record
        logger.info("run_started", run_id=run_id, trigger_kind=trigger.value)
        return record

    async def run(self, trigger: TriggerKind) -> RunRecord:
        """Start a run and wait for it to finish. Returns the final record."""
        record = self.start(trigger)
        return await self.execute(record)

    def submit(self, trigger: TriggerKind) -> RunRecord:
        """Start a run in a background task and return immediately.

        Must be called from a running event loop.
        """
        record = self.start(trigger)
        task = asyncio.create_task(self.execute(record), name=f"medallion-run-{record.run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return record

    def cancel(self, run_id: str) -> bool:
        """Request cancellation of the active run at its next step boundary.

        Returns False if the run is not active or has already started its
        last step, since no boundary is left to honour the request.
        """
        active = self._active
        if active is None or active.run_id != run_id or not active.is_active:
            return False
        if active.step(_STEP_ORDER[-1]).status != StepStatus.PENDING:
            logger.info("run_cancel_rejected", run_id=run_id, reason="final_step_started")
            return False
        self._cancel_requested.add(run_id)
        logger.info("run_cancel_requested", run_id=run_id)
        return True

    @property
    def active_run(self) -> RunRecord | None:
        active = self._active
        return active.snapshot() if active is not None else None

    async def wait_idle(self) -> None:
        """Wait for all background runs started by :meth:`submit`."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel background runs and wait for them to record their outcome."""
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, record: RunRecord) -> RunRecord:
        """Run all steps of ``record``. Never raises except on task cancellation."""
        try:
            async with LogContext(run_id=record.run_id, trigger_kind=record.trigger_kind.value):
                await self._run_steps(record)
        except asyncio.CancelledError:
            self._fail(record, FailureReason.CANCELLED, "Run task cancelled", persist_errors=False)
            raise
        except Exception as e:
            logger.exception("run_internal_error", run_id=record.run_id)
            self._fail(record, FailureReason.INTERNAL_ERROR, str(e), persist_errors=False)
        finally:
            self._cancel_requested.discard(record.run_id)
            if self._active is record:
                self._active = None
            self.guard.release(record.run_id)
        return record.snapshot()

    async def _run_steps(self, record: RunRecord) -> None:
        handlers: dict[StepName, Callable[[RunRecord, StepState], Awaitable[FailureReason | None]]] = {
            StepName.FETCH: self._fetch,
            StepName.SETTLE_DELAY: self._settle_delay,
            StepName.MATERIALIZE: self._materialize,
        }
        for name in _STEP_ORDER:
            if record.run_id in self._cancel_requested:
                self._fail(record, FailureReason.CANCELLED, f"Cancelled before {name.value}")
                return

            state = record.step(name)
            state.status = StepStatus.RUNNING
            state.started_at = self._clock()
            self.runs.save(record)
            logger.info("step_started", step=name.value)

            reason = await handlers[name](record, state)

            state.finished_at = self._clock()
            logger.info("step_finished", step=name.value, status=state.status.value, attempts=state.attempts)
            if reason is not None:
                self._fail(record, reason, state.last_error)
                return
            self.runs.save(record)

        record.status = RunStatus.SUCCEEDED
        record.finished_at = self._clock()
        self.runs.save(record)
        logger.info(
            "run_succeeded",
            batch_id=record.batch_id,
            appended=record.appended_count,
            gold_rows=record.gold_row_count,
        )

    def _fail(
        self,
        record: RunRecord,
        reason: FailureReason,
        error: str | None,
        *,
        persist_errors: bool = True,
    ) -> None:
        record.status = RunStatus.FAILED
        record.failure_reason = reason
        record.error = error
        record.finished_at = self._clock()
        for state in record.step_states.values():
            if state.status == StepStatus.RUNNING:
                state.status = StepStatus.FAILED
                state.finished_at = record.finished_at
            elif state.status == StepStatus.PENDING:
                state.status = StepStatus.SKIPPED
        logger.warning("run_failed", run_id=record.run_id, failure_reason=reason.value, error=error)
        if persist_errors:
            self.runs.save(record)
            return
        try:
            self.runs.save(record)
        except Exception:
            logger.exception("run_persist_failed", run_id=record.run_id)

    async def _with_retry(
        self,
        record: RunRecord,
        state: StepState,
        policy: StepPolicy,
        func: Callable[[], Awaitable[Any]],
        exhausted: FailureReason,
        failed: FailureReason,
    ) -> tuple[Any, FailureReason | None]:
        def on_attempt(attempt: int) -> None:
            state.attempts = attempt

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            state.last_error = str(error)
            logger.warning(
                "step_retrying",
                step=state.step.value,
                attempt=attempt,
                delay=round(delay, 3),
                error=str(error),
            )
            self.runs.save(record)

        ctx = RetryContext(policy, sleep=self._sleep, on_attempt=on_attempt, on_retry=on_retry)
        try:
            result = await ctx.run_async(func)
        except Exception as e:
            state.status = StepStatus.FAILED
            state.last_error = str(e)
            if isinstance(e, MedallionError):
                e.with_context(run_id=record.run_id, step=state.step.value, attempt=ctx.attempts)
            return None, exhausted if ctx.exhausted else failed
        state.status = StepStatus.SUCCEEDED
        return result, None

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _fetch(self, record: RunRecord, state: StepState) -> FailureReason | None:
        batch, reason = await self._with_retry(
            record,
            state,
            self.fetch_policy,
            self.producer.fetch,
            FailureReason.FETCH_EXHAUSTED,
            FailureReason.FETCH_ERROR,
        )
        if batch is not None:
            record.batch_id = batch.batch_id
        return reason

    async def _settle_delay(self, record: RunRecord, state: StepState) -> FailureReason | None:
        low, high = self.settle_delay_range
        delay = self._rng.uniform(low, high)
        state.attempts = 1
        logger.debug("settle_delay", seconds=round(delay, 3))
        await self._sleep(delay)
        state.status = StepStatus.SUCCEEDED
        return None

    async def _materialize(self, record: RunRecord, state: StepState) -> FailureReason | None:
        batch_id = record.batch_id
        progress = _Materialization()

        async def attempt() -> _Materialization:
            return await asyncio.to_thread(self._materialize_locked, batch_id, progress)

        try:
            _, reason = await self._with_retry(
                record,
                state,
                self.materialize_policy,
                attempt,
                FailureReason.MATERIALIZE_EXHAUSTED,
                FailureReason.MATERIALIZE_ERROR,
            )
        except asyncio.CancelledError:
            progress.abandoned.set()
            raise
        if reason is not None:
            await asyncio.to_thread(progress.abandon)
        record.appended_count = progress.appended or 0
        record.gold_row_count = len(progress.snapshot) if progress.snapshot is not None else None
        return reason

    def _materialize_locked(self, batch_id: str | None, progress: _Materialization) -> _Materialization:
        with self._write_lock:
            if progress.snapshot is not None:
                # an earlier timed-out attempt finished while we were waiting for the lock
                return progress
            try:
                if progress.appended is None:
                    batch = self.raw_store.get(batch_id) if batch_id else None
                    if batch is None:
                        raise CommitVisibilityError(f"Raw batch {batch_id} is not visible yet").with_context(
                            batch_id=batch_id
                        )
                    with progress.commit():
                        progress.appended = self.silver.apply(batch)
                progress.snapshot = self.materializer.rebuild(publish_guard=progress.commit())
            except MedallionError:
                raise
            except Exception as e:
                raise MaterializeError(f"Materialize failed: {e}", cause=e).with_context(batch_id=batch_id) from e
        return progress
