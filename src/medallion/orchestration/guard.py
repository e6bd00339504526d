"""Single-flight run guard.

Manifesto:
    Two runs must never execute steps concurrently, whichever trigger
    path started them. The guard is an owned object, not a module-level
    flag: one orchestrator, one guard. Acquisition is a compare-and-set
    under a lock, so a second trigger gets an immediate ``False``
    instead of waiting.

Tags:
    single-flight, concurrency, lock, orchestration
"""

from __future__ import annotations

import threading

from medallion.core.logging import get_logger

logger = get_logger(__name__)


class RunGuard:
    """Mutually exclusive slot for the active run.

    Example:
        >>> guard = RunGuard()
        >>> guard.try_acquire("run-1")
        True
        >>> guard.try_acquire("run-2")
        False
        >>> guard.release("run-1")
        True
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: str | None = None

    def try_acquire(self, run_id: str) -> bool:
        """Claim the slot for ``run_id`` if it is free. Never blocks."""
        with self._lock:
            if self._holder is not None:
                return False
            self._holder = run_id
            return True

    def release(self, run_id: str) -> bool:
        """Free the slot. Only the current holder can release it."""
        with self._lock:
            if self._holder != run_id:
                logger.warning("guard_release_ignored", run_id=run_id, holder=self._holder)
                return False
            self._holder = None
            return True

    @property
    def holder(self) -> str | None:
        with self._lock:
            return self._holder

    @property
    def locked(self) -> bool:
        return self.holder is not None
