"""Tests for request coalescing."""

import asyncio

import pytest

from blobmesh.coalesce import RequestCoalescer, create_request_key


class Counter:
    """Slow operation that counts executions."""

    def __init__(self, result="value", error=None, delay=0.01):
        self.calls = 0
        self.result = result
        self.error = error
        self.delay = delay

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


class TestRequestKey:

    def test_joins_parts(self):
        assert create_request_key(["list", "alice", "ext"]) == "list|alice|ext"

    def test_drops_none(self):
        assert create_request_key(["list", None, 3]) == "list|3"


class TestDedupe:
    """At most one concurrent execution per key."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_execution(self):
        coalescer = RequestCoalescer()
        op = Counter()

        results = await asyncio.gather(*(coalescer.dedupe("k", op) for _ in range(5)))

        assert op.calls == 1
        assert results == ["value"] * 5

    @pytest.mark.asyncio
    async def test_shared_failure(self):
        """Every waiter sees the same exception."""
        coalescer = RequestCoalescer()
        op = Counter(error=RuntimeError("boom"))

        results = await asyncio.gather(
            coalescer.dedupe("k", op), coalescer.dedupe("k", op), return_exceptions=True
        )

        assert op.calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_entry_removed_when_settled(self):
        coalescer = RequestCoalescer()
        op = Counter()

        await coalescer.dedupe("k", op)
        assert coalescer.stats().pending == 0

        await coalescer.dedupe("k", op)
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_entry_removed_after_failure(self):
        coalescer = RequestCoalescer()
        with pytest.raises(RuntimeError):
            await coalescer.dedupe("k", Counter(error=RuntimeError("boom")))
        assert coalescer.stats().pending == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        coalescer = RequestCoalescer()
        op = Counter()

        await asyncio.gather(coalescer.dedupe("a", op), coalescer.dedupe("b", op))

        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_stats_while_pending(self):
        coalescer = RequestCoalescer()
        task = asyncio.ensure_future(coalescer.dedupe("list|alice", Counter(delay=0.05)))
        await asyncio.sleep(0)

        stats = coalescer.stats()
        assert stats.pending == 1
        assert stats.keys == ["list|alice"]
        await task

    @pytest.mark.asyncio
    async def test_stale_entry_not_joined(self):
        """An entry older than the TTL is not joined."""
        now = [0.0]
        coalescer = RequestCoalescer(clock=lambda: now[0], default_ttl=30)
        op = Counter(delay=0.05)

        first = asyncio.ensure_future(coalescer.dedupe("k", op))
        await asyncio.sleep(0)
        now[0] = 31.0
        second = asyncio.ensure_future(coalescer.dedupe("k", op))
        await asyncio.gather(first, second)

        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_work(self):
        coalescer = RequestCoalescer()
        op = Counter(delay=0.05)

        first = asyncio.ensure_future(coalescer.dedupe("k", op))
        second = asyncio.ensure_future(coalescer.dedupe("k", op))
        await asyncio.sleep(0)
        first.cancel()

        assert await second == "value"
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_and_clear(self):
        coalescer = RequestCoalescer()
        task = asyncio.ensure_future(coalescer.dedupe("k", Counter(delay=0.05)))
        await asyncio.sleep(0)

        assert coalescer.invalidate("k")
        assert not coalescer.invalidate("k")
        coalescer.clear()
        assert coalescer.stats().pending == 0
        assert await task == "value"
