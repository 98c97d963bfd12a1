"""将同步的像素处理函数桥接到 asyncio 中执行。"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


async def run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """在工作线程中执行 *func* 并返回结果。"""

    return await asyncio.to_thread(func, *args, **kwargs)
