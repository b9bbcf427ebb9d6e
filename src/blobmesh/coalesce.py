"""Collapse concurrent identical operations into one execution.

Callers that ask for the same key while an execution is in flight await
the same task and observe the same value or the same exception. The entry
disappears as soon as the task settles, so a later call starts fresh.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from .constants import COALESCE_TTL_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_request_key(parts: Iterable[Any]) -> str:
    """Join the non-None parts of a request into a coalescing key."""
    return "|".join(str(p) for p in parts if p is not None)


@dataclass
class CoalescerStats:
    """Snapshot of in-flight executions."""
    pending: int
    keys: List[str]


class RequestCoalescer:
    """At most one concurrent execution per key.

    Args:
        clock: Monotonic clock
        default_ttl: Seconds after which an in-flight entry is no longer
            joined; a stuck execution cannot capture callers forever
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        default_ttl: float = COALESCE_TTL_SECONDS,
    ):
        self._clock = clock
        self.default_ttl = default_ttl
        self._pending: Dict[str, Tuple[asyncio.Task, float]] = {}

    async def dedupe(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """Run ``operation`` unless an identical one is already in flight."""
        ttl = self.default_ttl if ttl is None else ttl
        entry = self._pending.get(key)
        if entry is not None:
            task, started = entry
            if not task.done() and self._clock() - started < ttl:
                logger.debug(f"Joining in-flight request {key}")
                return await asyncio.shield(task)

        task = asyncio.ensure_future(operation())
        self._pending[key] = (task, self._clock())
        task.add_done_callback(lambda t, k=key: self._settled(k, t))
        return await asyncio.shield(task)

    def _settled(self, key: str, task: asyncio.Task) -> None:
        entry = self._pending.get(key)
        if entry is not None and entry[0] is task:
            del self._pending[key]
        # Mark the exception retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    def invalidate(self, key: str) -> bool:
        """Forget the in-flight entry for ``key``; running waiters are unaffected."""
        return self._pending.pop(key, None) is not None

    def clear(self) -> None:
        self._pending.clear()

    def stats(self) -> CoalescerStats:
        return CoalescerStats(pending=len(self._pending), keys=sorted(self._pending))
