"""Run guard, retry policy, job orchestrator and trigger front."""

from .guard import RunGuard
from .orchestrator import JobOrchestrator
from .retry import ConstantBackoff, ExponentialBackoff, RetryContext, RetryStrategy, StepPolicy
from .scheduler import IntervalSchedulerBackend, SchedulerBackend, TriggerFront, TriggerStats

__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "IntervalSchedulerBackend",
    "JobOrchestrator",
    "RetryContext",
    "RetryStrategy",
    "RunGuard",
    "SchedulerBackend",
    "StepPolicy",
    "TriggerFront",
    "TriggerStats",
]
