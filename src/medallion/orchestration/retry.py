"""Retry strategies and per-step attempt policy.

Each orchestrator step runs under a :class:`StepPolicy`: a per-attempt
timeout plus a :class:`RetryStrategy` deciding how many attempts are made
and how long to wait between them. ``max_attempts`` counts the first try,
so ``ConstantBackoff(max_attempts=3)`` calls the step at most three times.

Example:
    >>> strategy = ExponentialBackoff(max_attempts=5, base_delay=1.0, max_delay=60.0)
    >>> [strategy.next_delay(n) for n in range(4)]
    [1.0, 2.0, 4.0, 8.0]
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from medallion.core.errors import StepTimeoutError, is_retryable
from medallion.core.settings import BackoffKind, MedallionSettings
from medallion.core.timestamps import utc_now

Sleep = Callable[[float], Awaitable[Any]]


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    max_attempts: int

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before the next attempt.

        Args:
            attempt: Zero-based retry number (0 = delay before the second attempt)
        """
        ...

    def should_retry(self, attempts: int, error: BaseException | None = None) -> bool:
        """Whether another attempt may follow ``attempts`` failed ones."""
        if attempts >= self.max_attempts:
            return False
        return error is None or is_retryable(error)


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Delay = min(base_delay * multiplier ** attempt, max_delay), optionally jittered."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between attempts."""

    max_attempts: int = 3
    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


def make_strategy(kind: BackoffKind, max_attempts: int, interval: float) -> RetryStrategy:
    if kind == BackoffKind.EXPONENTIAL:
        return ExponentialBackoff(max_attempts=max_attempts, base_delay=interval)
    return ConstantBackoff(max_attempts=max_attempts, delay=interval)


@dataclass
class StepPolicy:
    """Timeout and retry settings for one step."""

    timeout: float
    strategy: RetryStrategy

    @classmethod
    def fetch_from_settings(cls, settings: MedallionSettings) -> StepPolicy:
        return cls(
            timeout=settings.fetch_timeout,
            strategy=make_strategy(
                settings.fetch_backoff, settings.fetch_retries, settings.fetch_retry_interval
            ),
        )

    @classmethod
    def materialize_from_settings(cls, settings: MedallionSettings) -> StepPolicy:
        return cls(
            timeout=settings.materialize_timeout,
            strategy=make_strategy(
                settings.materialize_backoff,
                settings.materialize_retries,
                settings.materialize_retry_interval,
            ),
        )


@dataclass
class RetryContext:
    """Tracks the attempts of one step and runs them under the policy.

    Example:
        >>> ctx = RetryContext(StepPolicy(timeout=30, strategy=ConstantBackoff(3, 5.0)))
        >>> batch = await ctx.run_async(producer.fetch)
    """

    policy: StepPolicy
    sleep: Sleep = asyncio.sleep
    on_attempt: Callable[[int], None] | None = None
    on_retry: Callable[[int, BaseException, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    errors: list[tuple[int, BaseException, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        return self.attempt

    @property
    def exhausted(self) -> bool:
        """True when the last failure was retryable but no attempts were left."""
        return (
            self.last_error is not None
            and is_retryable(self.last_error)
            and self.attempt >= self.policy.strategy.max_attempts
        )

    async def _attempt(self, func: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await asyncio.wait_for(func(), timeout=self.policy.timeout)
        except asyncio.TimeoutError as e:
            raise StepTimeoutError(
                f"Attempt {self.attempt} timed out after {self.policy.timeout}s",
                timeout_seconds=self.policy.timeout,
                cause=e,
            ).with_context(attempt=self.attempt) from e

    async def run_async(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``func`` until it succeeds or the strategy gives up.

        Raises:
            The last exception once no further attempt is allowed.
        """
        strategy = self.policy.strategy
        while True:
            self.attempt += 1
            if self.on_attempt:
                self.on_attempt(self.attempt)
            try:
                result = await self._attempt(func)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utc_now()))

                if not strategy.should_retry(self.attempt, e):
                    raise

                delay = strategy.next_delay(self.attempt - 1)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                await self.sleep(delay)
            else:
                # errors keeps the history; last_error only tracks an unrecovered failure
                self.last_error = None
                return result
