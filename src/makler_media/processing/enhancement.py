"""增强阶段：逐像素调整亮度、对比度与饱和度。"""

from __future__ import annotations

import logging
from typing import Union

import numpy as np
from PIL import Image

from makler_media.core.config import EnhancementConfig
from makler_media.core.models import ImageAsset, ProcessedImageAsset
from makler_media.processing.raster import decode_image, to_processed_asset

LOGGER = logging.getLogger(__name__)

LUMA_WEIGHTS = (0.2989, 0.587, 0.114)


def contrast_factor(contrast: float) -> float:
    return (259.0 * (contrast + 255.0)) / (255.0 * (259.0 - contrast))


def enhance_array(rgb: np.ndarray, config: EnhancementConfig) -> np.ndarray:
    """对 ``(H, W, 3)`` 数组依次执行亮度、对比度、饱和度调整。

    计算顺序固定：亮度 -> 对比度 -> 饱和度（灰度取自未截断的对比度结果）-> 截断。
    """

    values = rgb.astype(np.float64)

    values *= 1.0 + config.brightness / 100.0

    factor = contrast_factor(config.contrast)
    values = factor * (values - 128.0) + 128.0

    r, g, b = values[..., 0], values[..., 1], values[..., 2]
    gray = LUMA_WEIGHTS[0] * r + LUMA_WEIGHTS[1] * g + LUMA_WEIGHTS[2] * b
    saturation = 1.0 + config.saturation / 100.0
    values = gray[..., np.newaxis] + saturation * (values - gray[..., np.newaxis])

    np.clip(values, 0.0, 255.0, out=values)
    return np.rint(values).astype(np.uint8)


def apply_enhancement(image: Image.Image, config: EnhancementConfig) -> Image.Image:
    """返回调整后的新画布，尺寸与 alpha 通道保持不变。"""

    config.validate()
    if image.mode not in {"RGB", "RGBA"}:
        image = image.convert("RGB")

    array = np.asarray(image)
    enhanced = enhance_array(array[..., :3], config)

    if image.mode == "RGBA":
        output = np.dstack((enhanced, array[..., 3]))
        return Image.fromarray(output, "RGBA")
    return Image.fromarray(enhanced, "RGB")


def enhance_image(
    source: Union[ImageAsset, ProcessedImageAsset],
    config: EnhancementConfig,
    *,
    fmt: str = "webp",
    quality: float = 0.9,
) -> ProcessedImageAsset:
    """对图片执行增强阶段，返回新的 ProcessedImageAsset。"""

    original_id = source.id if isinstance(source, ImageAsset) else source.original_id
    image = decode_image(source.data)
    LOGGER.debug(
        "增强 brightness=%s contrast=%s saturation=%s",
        config.brightness,
        config.contrast,
        config.saturation,
    )
    enhanced = apply_enhancement(image, config)
    return to_processed_asset(enhanced, original_id, fmt, quality)
