"""Tests for RunGuard."""

from __future__ import annotations

import threading

from medallion.orchestration.guard import RunGuard


def test_second_acquire_is_rejected():
    guard = RunGuard()
    assert guard.try_acquire("r1") is True
    assert guard.try_acquire("r2") is False
    assert guard.holder == "r1"
    assert guard.locked


def test_only_holder_releases():
    guard = RunGuard()
    guard.try_acquire("r1")
    assert guard.release("r2") is False
    assert guard.holder == "r1"
    assert guard.release("r1") is True
    assert not guard.locked
    assert guard.try_acquire("r2") is True


def test_concurrent_acquire_has_one_winner():
    guard = RunGuard()
    barrier = threading.Barrier(8)
    winners: list[str] = []

    def contend(run_id: str) -> None:
        barrier.wait()
        if guard.try_acquire(run_id):
            winners.append(run_id)

    threads = [threading.Thread(target=contend, args=(f"r{i}",)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(winners) == 1
    assert guard.holder == winners[0]
