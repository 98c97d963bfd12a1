"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

from PIL import Image

BATCH_STATUSES = ("pending", "processing", "success", "error")


@dataclass(frozen=True, slots=True)
class ImageAsset:
    """用户提交的原始图片，创建后不可变。"""

    id: str
    data: bytes = field(repr=False)
    preview: Optional[Image.Image] = field(repr=False, compare=False)
    width: int
    height: int
    size: int
    name: str
    mime_type: str


@dataclass(frozen=True, slots=True)
class ProcessedImageAsset:
    """某个处理阶段产出的新图片；后续阶段生成新的记录而不是修改它。"""

    id: str
    original_id: str
    data: bytes = field(repr=False)
    preview: Image.Image = field(repr=False, compare=False)
    width: int
    height: int
    size: int
    format: str


@dataclass(slots=True)
class BatchImageResult:
    """单张图片在批处理中的状态。"""

    image_id: str
    image_name: str
    status: str = "pending"
    processed: Optional[ProcessedImageAsset] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status not in BATCH_STATUSES:
            raise ValueError(f"未知的处理状态: {self.status}")

    @property
    def is_terminal(self) -> bool:
        return self.status in {"success", "error"}

    def snapshot(self) -> "BatchImageResult":
        return replace(self)


@dataclass(slots=True)
class BatchSummary:
    """批处理的最终汇总。"""

    total: int
    successful: int
    failed: int
    results: list[BatchImageResult]

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.successful / self.total * 100

    @property
    def succeeded(self) -> list[BatchImageResult]:
        return [result for result in self.results if result.status == "success"]

    @property
    def errors(self) -> list[BatchImageResult]:
        return [result for result in self.results if result.status == "error"]

    @classmethod
    def from_results(cls, results: list[BatchImageResult]) -> "BatchSummary":
        successful = sum(1 for result in results if result.status == "success")
        failed = sum(1 for result in results if result.status == "error")
        return cls(total=len(results), successful=successful, failed=failed, results=results)
