"""压缩阶段：按最大尺寸等比缩放并重新编码。"""

from __future__ import annotations

import logging
from typing import Tuple, Union

from PIL import Image

from makler_media.core.config import CompressionConfig
from makler_media.core.models import ImageAsset, ProcessedImageAsset
from makler_media.processing.raster import ALPHA_FORMATS, WHITE, decode_image, encode_image, new_surface, wrap_encoded

LOGGER = logging.getLogger(__name__)


def compute_target_size(size: Tuple[int, int], max_width: int, max_height: int) -> Tuple[int, int]:
    """计算不超过最大尺寸且保持宽高比的目标尺寸。"""

    width, height = size
    if width <= max_width and height <= max_height:
        return width, height

    scale = min(max_width / width, max_height / height)
    target_w = max(1, min(max_width, int(round(width * scale))))
    target_h = max(1, min(max_height, int(round(height * scale))))
    return target_w, target_h


def resize_to_fit(image: Image.Image, config: CompressionConfig) -> Image.Image:
    """缩放画布；目标格式不支持透明时先铺白底。"""

    target_size = compute_target_size(image.size, config.max_width, config.max_height)
    if target_size != image.size:
        resized = image.resize(target_size, Image.LANCZOS)
    else:
        resized = image

    if config.format in ALPHA_FORMATS:
        return resized if resized is not image else image.copy()

    surface = new_surface(target_size, mode="RGB", color=WHITE)
    if resized.mode == "RGBA":
        surface.paste(resized, mask=resized.getchannel("A"))
    else:
        surface.paste(resized.convert("RGB"))
    return surface


def compress_bytes(data: bytes, config: CompressionConfig) -> Tuple[bytes, Image.Image]:
    """解码、缩放并按配置重新编码，返回编码结果与对应画布。"""

    config.validate()
    image = decode_image(data)
    resized = resize_to_fit(image, config)
    LOGGER.debug("压缩 %sx%s -> %sx%s (%s)", image.width, image.height, resized.width, resized.height, config.format)
    return encode_image(resized, config.format, config.quality), resized


def compress_image(
    source: Union[ImageAsset, ProcessedImageAsset], config: CompressionConfig
) -> ProcessedImageAsset:
    """对图片执行压缩阶段，返回新的 ProcessedImageAsset。"""

    original_id = source.id if isinstance(source, ImageAsset) else source.original_id
    encoded, resized = compress_bytes(source.data, config)
    return wrap_encoded(encoded, original_id, config.format, image=resized)
