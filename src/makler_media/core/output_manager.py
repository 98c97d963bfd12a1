"""处理结果落盘：按冲突策略分配文件名并写入编码后的字节。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from makler_media.core.config import OutputConfig
from makler_media.core.exceptions import InvalidConfigurationError, MediaEngineError
from makler_media.core.models import BatchImageResult

LOGGER = logging.getLogger(__name__)

CONFLICT_STRATEGIES = ("overwrite", "skip", "rename")
SUFFIX_BY_FORMAT = {
    "jpeg": ".jpg",
    "png": ".png",
    "webp": ".webp",
}


class ImageWriteError(MediaEngineError):
    """输出写入失败。"""


@dataclass(slots=True)
class DestinationDecision:
    """某张图片的落盘决定：write / overwrite / rename / skip。"""

    destination: Optional[Path]
    action: str
    note: Optional[str] = None

    @property
    def writes(self) -> bool:
        return self.action != "skip" and self.destination is not None


class OutputManager:
    """同一批次内分配过的路径也视为已占用，避免同名结果互相覆盖。"""

    def __init__(self, config: OutputConfig) -> None:
        if config.conflict_strategy not in CONFLICT_STRATEGIES:
            raise InvalidConfigurationError(f"未知的冲突策略: {config.conflict_strategy}")
        self.config = config
        self.output_dir = config.output_dir.resolve()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._claimed: set[Path] = set()

    def decide_destination(self, source_name: str, fmt: Optional[str] = None) -> DestinationDecision:
        """fmt 给出时按输出格式替换后缀，否则沿用原文件名后缀。"""

        original = Path(source_name)
        suffix = SUFFIX_BY_FORMAT.get(fmt or "", original.suffix)
        target = self.output_dir / (original.stem + suffix)

        if not self._occupied(target):
            return self._claim(target, "write")

        strategy = self.config.conflict_strategy
        if strategy == "skip":
            return DestinationDecision(target, "skip", f"目标已存在: {target.name}")
        if strategy == "overwrite":
            return self._claim(target, "overwrite", f"覆盖已有文件: {target.name}")

        renamed = self._next_free_name(target)
        return self._claim(renamed, "rename", f"{target.name} 已存在，改名为 {renamed.name}")

    def write_bytes(self, data: bytes, destination: Path) -> None:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            raise ImageWriteError(f"写入文件失败: {destination}") from exc
        LOGGER.debug("已写入 %s (%d 字节)", destination, len(data))

    def save_results(self, results: Iterable[BatchImageResult]) -> dict[str, Path]:
        """写出所有成功的结果，返回 image_id 到输出路径的映射。"""

        written: dict[str, Path] = {}
        for result in results:
            if result.status != "success" or result.processed is None:
                continue
            decision = self.decide_destination(result.image_name, result.processed.format)
            if not decision.writes:
                LOGGER.info("跳过 %s: %s", result.image_name, decision.note)
                continue
            if decision.note:
                LOGGER.info(decision.note)
            self.write_bytes(result.processed.data, decision.destination)
            written[result.image_id] = decision.destination
        return written

    def _occupied(self, path: Path) -> bool:
        return path in self._claimed or path.exists()

    def _claim(self, path: Path, action: str, note: Optional[str] = None) -> DestinationDecision:
        self._claimed.add(path)
        return DestinationDecision(path, action, note)

    def _next_free_name(self, target: Path) -> Path:
        index = 1
        while True:
            candidate = target.with_name(f"{target.stem}_{index}{target.suffix}")
            if not self._occupied(candidate):
                return candidate
            index += 1
