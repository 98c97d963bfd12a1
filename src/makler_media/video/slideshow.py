"""幻灯片视频生成：加载图片、按固定节奏逐帧送入编码器。"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from PIL import Image

from makler_media.core.config import SlideshowConfig
from makler_media.core.exceptions import EncodingSinkError, MediaEngineError
from makler_media.core.progress import SlideshowProgress
from makler_media.processing.raster import decode_image
from makler_media.utils.executors import run_sync
from makler_media.video.encoder import VideoSink, create_sink
from makler_media.video.frames import count_frames, iter_frames

LOGGER = logging.getLogger(__name__)

SlideshowCallback = Optional[Callable[[SlideshowProgress], None]]

LOAD_SHARE = 20.0
RENDER_SHARE = 80.0


def load_slide(item: object) -> Image.Image:
    """将 ImageAsset / ProcessedImageAsset / 字节 / PIL 图像解码为画布。"""

    if isinstance(item, Image.Image):
        return item
    if isinstance(item, (bytes, bytearray)):
        return decode_image(bytes(item))
    data = getattr(item, "data", None)
    if data is None:
        raise MediaEngineError(f"无法识别的幻灯片图片类型: {type(item).__name__}")
    return decode_image(data)


async def generate_slideshow(
    config: SlideshowConfig,
    *,
    sink: Optional[VideoSink] = None,
    progress_callback: SlideshowCallback = None,
    realtime: bool = False,
) -> bytes:
    """生成幻灯片视频并返回编码后的字节。

    帧严格按时间线顺序逐一送入编码器；``realtime`` 为真时每帧间隔 1/fps 秒。
    任何加载、渲染或编码失败都会终止整个任务并抛出 EncodingSinkError。
    """

    config.validate()
    sink = sink or create_sink(quality=config.quality)
    width, height = config.dimensions()
    interval = 1.0 / config.fps

    count = len(config.images)
    _emit(progress_callback, "preparing", 0.0, "正在准备图片")
    slides: list[Image.Image] = []
    for index, item in enumerate(config.images, start=1):
        try:
            slides.append(await run_sync(load_slide, item))
        except MediaEngineError as exc:
            _emit(progress_callback, "error", LOAD_SHARE * (index - 1) / count, str(exc))
            raise EncodingSinkError(f"第 {index} 张幻灯片图片加载失败: {exc}") from exc
        _emit(progress_callback, "preparing", LOAD_SHARE * index / count, f"已加载 {index}/{count} 张图片")

    total = count_frames(len(slides), config)
    LOGGER.info("开始生成幻灯片：%d 张图片，%d 帧，%sx%s", len(slides), total, width, height)
    _emit(progress_callback, "rendering", LOAD_SHARE, f"共 {total} 帧")

    written = 0
    try:
        sink.open(width, height, config.fps)
        frames = iter_frames(slides, config)
        while True:
            frame = await run_sync(next, frames, None)
            if frame is None:
                break
            sink.write(frame)
            written += 1
            _emit(
                progress_callback,
                "encoding",
                LOAD_SHARE + RENDER_SHARE * written / total,
                f"帧 {written}/{total}",
            )
            await asyncio.sleep(interval if realtime else 0)
        data = sink.close()
    except EncodingSinkError as exc:
        sink.abort()
        _emit(progress_callback, "error", LOAD_SHARE + RENDER_SHARE * written / max(total, 1), str(exc))
        raise
    except Exception as exc:  # noqa: BLE001
        sink.abort()
        LOGGER.exception("幻灯片生成失败（第 %d 帧）", written + 1)
        _emit(progress_callback, "error", LOAD_SHARE + RENDER_SHARE * written / max(total, 1), str(exc))
        raise EncodingSinkError(f"幻灯片生成失败: {exc}") from exc

    LOGGER.info("幻灯片生成完成：%d 帧，%d 字节", written, len(data))
    _emit(progress_callback, "completed", 100.0, "视频已生成")
    return data


def generate_slideshow_sync(config: SlideshowConfig, **kwargs) -> bytes:
    """在新的事件循环中运行 :func:`generate_slideshow`。"""

    return asyncio.run(generate_slideshow(config, **kwargs))


def _emit(callback: SlideshowCallback, status: str, progress: float, message: str) -> None:
    if not callback:
        return
    callback(SlideshowProgress(status=status, progress=min(progress, 100.0), message=message))
