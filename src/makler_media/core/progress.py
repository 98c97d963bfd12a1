"""进度更新的数据模型与归并器。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from makler_media.core.exceptions import MediaEngineError
from makler_media.core.models import BatchImageResult, ProcessedImageAsset

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchProgress:
    """批处理过程中的进度快照，只读。"""

    total: int
    completed: int
    successful: int
    failed: int
    current_image: Optional[str]
    results: tuple[BatchImageResult, ...]


@dataclass(frozen=True, slots=True)
class SlideshowProgress:
    """幻灯片生成进度。"""

    status: str  # preparing | rendering | encoding | completed | error
    progress: float
    message: str


ProgressCallback = Optional[Callable[[BatchProgress], None]]


class ProgressTracker:
    """批处理进度的唯一写入者。

    每个任务只上报状态变化事件，由本对象更新内部结果并发布新的不可变快照。
    """

    def __init__(self, items: Iterable[tuple[str, str]], callback: ProgressCallback = None) -> None:
        self._results: dict[str, BatchImageResult] = {}
        for image_id, image_name in items:
            self._results[image_id] = BatchImageResult(image_id=image_id, image_name=image_name)
        self._callback = callback
        self._current: Optional[str] = None

    @property
    def results(self) -> list[BatchImageResult]:
        return list(self._results.values())

    def mark_processing(self, image_id: str) -> BatchProgress:
        result = self._get(image_id)
        result.status = "processing"
        self._current = result.image_name
        return self._publish()

    def mark_success(self, image_id: str, processed: ProcessedImageAsset) -> BatchProgress:
        result = self._get(image_id)
        result.status = "success"
        result.processed = processed
        result.error = None
        return self._publish()

    def mark_error(self, image_id: str, message: str) -> BatchProgress:
        result = self._get(image_id)
        result.status = "error"
        result.error = message
        return self._publish()

    def snapshot(self) -> BatchProgress:
        successful = 0
        failed = 0
        for result in self._results.values():
            if result.status == "success":
                successful += 1
            elif result.status == "error":
                failed += 1
        return BatchProgress(
            total=len(self._results),
            completed=successful + failed,
            successful=successful,
            failed=failed,
            current_image=self._current,
            results=tuple(result.snapshot() for result in self._results.values()),
        )

    def _get(self, image_id: str) -> BatchImageResult:
        try:
            return self._results[image_id]
        except KeyError as exc:
            raise MediaEngineError(f"未知的图片标识: {image_id}") from exc

    def _publish(self) -> BatchProgress:
        progress = self.snapshot()
        LOGGER.debug(
            "进度 %d/%d（成功 %d，失败 %d）", progress.completed, progress.total, progress.successful, progress.failed
        )
        if self._callback is not None:
            self._callback(progress)
        return progress
