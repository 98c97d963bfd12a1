"""批处理流水线：通过有界并发队列对每张图片依次执行压缩、增强与水印。"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence, Union

from makler_media.core.config import PipelineConfig, invisible_watermark
from makler_media.core.exceptions import MediaEngineError
from makler_media.core.models import BatchSummary, ImageAsset, ProcessedImageAsset
from makler_media.core.progress import ProgressCallback, ProgressTracker
from makler_media.processing.compression import compress_image
from makler_media.processing.enhancement import enhance_image
from makler_media.processing.queue import ConcurrencyQueue
from makler_media.processing.raster import wrap_encoded
from makler_media.processing.watermark import watermark_image
from makler_media.utils.executors import run_sync

LOGGER = logging.getLogger(__name__)

StageInput = Union[ImageAsset, ProcessedImageAsset]


def run_stages(asset: ImageAsset, config: PipelineConfig) -> ProcessedImageAsset:
    """同步执行单张图片的全部阶段：压缩 -> 增强 -> 水印。

    每个阶段消费上一阶段的产出并返回新的 ProcessedImageAsset。
    """

    fmt, quality = config.output_encoding()
    current: StageInput = asset

    if config.compression is not None:
        current = compress_image(current, config.compression)

    if config.enhancement is not None:
        current = enhance_image(current, config.enhancement, fmt=fmt, quality=quality)

    if config.wants_watermark():
        watermark = config.watermark
        if watermark is None and config.branding is None:
            watermark = invisible_watermark()
        current = watermark_image(
            current,
            config=watermark,
            branding=config.branding,
            is_premium=config.is_premium,
            fmt=fmt,
            quality=quality,
        )

    if isinstance(current, ImageAsset):
        return wrap_encoded(current.data, current.id, _format_of(current))
    return current


async def process_batch(
    assets: Sequence[ImageAsset],
    config: PipelineConfig,
    progress_callback: ProgressCallback = None,
    *,
    queue: Optional[ConcurrencyQueue] = None,
) -> BatchSummary:
    """批量处理入口。单张图片失败只记录在其结果上，不影响其他图片。"""

    config.validate()
    tracker = ProgressTracker(((asset.id, asset.name) for asset in assets), progress_callback)
    total = len(assets)
    LOGGER.info("开始批处理 %d 张图片（并发上限 %d）", total, config.max_concurrent)

    if total == 0:
        return BatchSummary.from_results([])

    queue = queue or ConcurrencyQueue(config.max_concurrent)

    async def process_one(asset: ImageAsset) -> None:
        tracker.mark_processing(asset.id)
        try:
            processed = await run_sync(run_stages, asset, config)
        except MediaEngineError as exc:
            LOGGER.warning("处理失败 %s: %s", asset.name, exc)
            tracker.mark_error(asset.id, str(exc))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("处理 %s 时出现未预期的异常", asset.name)
            tracker.mark_error(asset.id, f"{type(exc).__name__}: {exc}")
        else:
            tracker.mark_success(asset.id, processed)

    futures = [queue.submit(lambda asset=asset: process_one(asset)) for asset in assets]
    await asyncio.gather(*futures, return_exceptions=True)

    summary = BatchSummary.from_results(tracker.results)
    LOGGER.info("批处理完成：成功 %d 张，失败 %d 张", summary.successful, summary.failed)
    return summary


def process_batch_sync(
    assets: Sequence[ImageAsset],
    config: PipelineConfig,
    progress_callback: ProgressCallback = None,
) -> BatchSummary:
    """在新的事件循环中运行 :func:`process_batch`。"""

    return asyncio.run(process_batch(assets, config, progress_callback))


def _format_of(asset: ImageAsset) -> str:
    subtype = asset.mime_type.rsplit("/", 1)[-1]
    return "jpeg" if subtype == "jpg" else subtype
