"""Retry with exponential backoff and jitter.

``RetryPolicy`` wraps any zero-argument coroutine factory. It knows nothing
about endpoints or coalescing; callers decide what an attempt is.

Delay before retry ``n`` (1-based attempt that just failed)::

    min(max_delay, base_delay * backoff_factor ** (n - 1))  +/- 25% jitter

Only errors whose category is ``network`` or ``server`` are retried by
default. Validation, configuration, permission and authentication failures
fail fast.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .errors import BlobMeshError

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.25


def default_is_retryable(error: BaseException) -> bool:
    """Retry network and server failures only."""
    return isinstance(error, BlobMeshError) and error.retryable


@dataclass(frozen=True)
class RetryOptions:
    """Retry configuration.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        base_delay: Delay in seconds before the first retry
        max_delay: Upper bound for any single delay
        backoff_factor: Multiplier applied per attempt
        jitter: Whether to apply +/-25% uniform jitter
        is_retryable: Predicate deciding whether an error may be retried
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    is_retryable: Callable[[BaseException], bool] = field(default=default_is_retryable)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0.")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1.")


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation."""

    succeeded: bool
    attempts: int
    elapsed: float
    value: Optional[T] = None
    error: Optional[BaseException] = None

    def unwrap(self) -> T:
        """Return the value, or raise the last error."""
        if not self.succeeded:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]


def compute_delay(attempt: int, options: RetryOptions, rng: Callable[[], float] = random.random) -> float:
    """Delay in seconds after ``attempt`` (1-based) failed."""
    delay = min(options.max_delay, options.base_delay * options.backoff_factor ** (attempt - 1))
    if options.jitter:
        delay += (rng() - 0.5) * 2 * JITTER_RATIO * delay
    return max(delay, 0.0)


class RetryPolicy:
    """Execute coroutines with retries.

    Args:
        options: Default retry options
        sleep: Awaitable sleep (injected for tests)
        rng: Uniform [0, 1) source for jitter
        clock: Monotonic clock for elapsed time
        on_retry: Optional hook called as (attempt, error, delay) before sleeping
    """

    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ):
        self.options = options or RetryOptions()
        self._sleep = sleep
        self._rng = rng
        self._clock = clock
        self._on_retry = on_retry

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        options: Optional[RetryOptions] = None,
        context: str = "operation",
    ) -> RetryResult[T]:
        """Run ``operation`` until it succeeds or retries are exhausted.

        Never raises for operation failures; the last error is returned in
        the result. Cancellation propagates.
        """
        opts = options or self.options
        start = self._clock()
        last_error: Optional[BaseException] = None
        attempt = 0

        while attempt < opts.max_attempts:
            attempt += 1
            try:
                value = await operation()
                return RetryResult(
                    succeeded=True,
                    attempts=attempt,
                    elapsed=self._clock() - start,
                    value=value,
                )
            except Exception as e:
                last_error = e
                if attempt >= opts.max_attempts or not opts.is_retryable(e):
                    break

                delay = compute_delay(attempt, opts, self._rng)
                logger.warning(
                    f"{context} failed with {type(e).__name__}: {e}; "
                    f"retrying in {delay:.1f}s (attempt {attempt}/{opts.max_attempts})"
                )
                if self._on_retry:
                    self._on_retry(attempt, e, delay)
                await self._sleep(delay)

        return RetryResult(
            succeeded=False,
            attempts=attempt,
            elapsed=self._clock() - start,
            error=last_error,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        options: Optional[RetryOptions] = None,
        context: str = "operation",
    ) -> T:
        """Like ``execute`` but returns the value or raises the last error."""
        result = await self.execute(operation, options, context)
        return result.unwrap()


NO_RETRY = RetryOptions(max_attempts=1, jitter=False)
