"""有界并发队列的调度测试。"""

from __future__ import annotations

import asyncio

import pytest

from makler_media.core.exceptions import InvalidConfigurationError
from makler_media.processing.queue import ConcurrencyQueue


def test_rejects_non_positive_limit() -> None:
    with pytest.raises(InvalidConfigurationError):
        ConcurrencyQueue(0)


def test_running_never_exceeds_limit_and_starts_in_order() -> None:
    async def scenario() -> tuple[list[int], list[int], int, list[int]]:
        queue = ConcurrencyQueue(2)
        started: list[int] = []
        observed: list[int] = []

        def make(index: int):
            async def job() -> int:
                started.append(index)
                observed.append(queue.running)
                await asyncio.sleep(0.01 * (5 - index % 3))
                return index * 10

            return job

        futures = [queue.submit(make(index)) for index in range(6)]
        results = await asyncio.gather(*futures)
        await queue.join()
        return started, results, queue.peak_running, observed

    started, results, peak, observed = asyncio.run(scenario())

    assert started == list(range(6))
    assert results == [index * 10 for index in range(6)]
    assert peak == 2
    assert max(observed) <= 2


def test_failure_is_isolated_to_its_own_future() -> None:
    async def scenario():
        queue = ConcurrencyQueue(1)

        async def boom() -> None:
            raise RuntimeError("boom")

        async def fine() -> str:
            return "ok"

        failing = queue.submit(boom)
        passing = queue.submit(fine)
        return await asyncio.gather(failing, passing, return_exceptions=True)

    first, second = asyncio.run(scenario())

    assert isinstance(first, RuntimeError)
    assert second == "ok"


def test_slot_is_released_after_failure() -> None:
    async def scenario() -> int:
        queue = ConcurrencyQueue(1)

        async def boom() -> None:
            raise ValueError("bad")

        for _ in range(3):
            queue.submit(boom)
        await queue.join()
        return queue.running

    assert asyncio.run(scenario()) == 0


def test_pending_count_and_join() -> None:
    async def scenario() -> tuple[int, int, int, int]:
        queue = ConcurrencyQueue(1)
        gate = asyncio.Event()

        async def blocked() -> None:
            await gate.wait()

        for _ in range(3):
            queue.submit(blocked)
        running, pending = queue.running, queue.pending
        gate.set()
        await queue.join()
        return running, pending, queue.running, queue.pending

    assert asyncio.run(scenario()) == (1, 2, 0, 0)


def test_join_on_empty_queue_returns_immediately() -> None:
    async def scenario() -> None:
        await asyncio.wait_for(ConcurrencyQueue().join(), timeout=1)

    asyncio.run(scenario())
