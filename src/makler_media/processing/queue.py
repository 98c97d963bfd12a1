"""有界并发队列：同一时刻最多运行 max_concurrent 个异步任务。"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from makler_media.core.exceptions import InvalidConfigurationError, QueueExhaustionError

LOGGER = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class ConcurrencyQueue:
    """按提交顺序启动任务，任一运行中的任务结束后立即提升最早排队的任务。

    每次 ``submit`` 返回独立的 Future，结果或异常只属于该任务本身。
    没有优先级、取消或超时。
    """

    def __init__(self, max_concurrent: int = 3) -> None:
        if max_concurrent < 1:
            raise InvalidConfigurationError(f"max_concurrent 必须至少为 1: {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._pending: Deque[Tuple[TaskFactory, asyncio.Future]] = deque()
        self._tasks: set[asyncio.Task] = set()
        self._running = 0
        self._peak_running = 0
        self._idle: Optional[asyncio.Event] = None

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def peak_running(self) -> int:
        """观察到的最大同时运行数。"""

        return self._peak_running

    def submit(self, factory: TaskFactory) -> asyncio.Future:
        """提交一个返回 awaitable 的工厂函数，返回该任务的 Future。"""

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending.append((factory, future))
        self._idle_event().clear()
        self._pump()
        return future

    async def join(self) -> None:
        """等待所有已提交的任务结束。"""

        if self._running == 0 and not self._pending:
            return
        await self._idle_event().wait()

    def _pump(self) -> None:
        while self._pending and self._running < self.max_concurrent:
            factory, future = self._pending.popleft()
            self._start(factory, future)

    def _start(self, factory: TaskFactory, future: asyncio.Future) -> None:
        if self._running >= self.max_concurrent:
            raise QueueExhaustionError(
                f"运行中的任务数 {self._running} 已达到上限 {self.max_concurrent}"
            )
        self._running += 1
        self._peak_running = max(self._peak_running, self._running)
        task = asyncio.ensure_future(self._run(factory, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, factory: TaskFactory, future: asyncio.Future) -> None:
        try:
            result = await factory()
        except Exception as exc:  # noqa: BLE001
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running -= 1
            self._pump()
            if self._running == 0 and not self._pending:
                self._idle_event().set()

    def _idle_event(self) -> asyncio.Event:
        if self._idle is None:
            self._idle = asyncio.Event()
        return self._idle
