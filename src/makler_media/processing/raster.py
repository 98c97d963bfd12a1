"""图片解码、画布分配与编码工具。"""

from __future__ import annotations

import io
import logging
import uuid
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

from makler_media.core.exceptions import DecodeError, EncodeError, InvalidConfigurationError
from makler_media.core.models import ImageAsset, ProcessedImageAsset

LOGGER = logging.getLogger(__name__)

# 让 Pillow 能够打开 iPhone 拍摄的 HEIC/HEIF 照片。
register_heif_opener()

PIL_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
}
ALPHA_FORMATS = {"png", "webp"}
MIME_BY_PIL_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "HEIF": "image/heic",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}
PREVIEW_SIZE = (256, 256)
WHITE = (255, 255, 255)


def decode_image(data: bytes) -> Image.Image:
    """解码图片字节并执行 EXIF 旋转与模式归一化。

    透明图片返回 RGBA，其余返回 RGB。返回值为新的 Image 对象。
    """

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            return _normalize_mode(img)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        LOGGER.debug("无法识别图像数据: %s", exc)
        raise DecodeError(f"无法解码图像: {exc}") from exc


def sniff_format(data: bytes) -> Optional[str]:
    """返回 Pillow 识别出的格式名（如 ``JPEG``），无法识别时返回 None。"""

    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        return None


def new_surface(size: Tuple[int, int], *, mode: str = "RGBA", color=(0, 0, 0, 0)) -> Image.Image:
    """分配指定尺寸的输出画布。"""

    width, height = size
    if width <= 0 or height <= 0:
        raise InvalidConfigurationError(f"画布尺寸必须大于 0: {size}")
    return Image.new(mode, (width, height), color)


def flatten_alpha(image: Image.Image, background: Tuple[int, int, int] = WHITE) -> Image.Image:
    """将透明图层合成到不透明背景上。"""

    if image.mode != "RGBA":
        return image.convert("RGB") if image.mode != "RGB" else image
    canvas = new_surface(image.size, mode="RGB", color=background)
    canvas.paste(image, mask=image.getchannel("A"))
    return canvas


def encode_image(image: Image.Image, fmt: str = "webp", quality: float = 0.9) -> bytes:
    """将画布编码为字节。quality 取值 0~1，对 PNG 无效。"""

    pil_format = PIL_FORMATS.get(fmt)
    if pil_format is None:
        raise EncodeError(f"不支持的输出格式: {fmt}")

    save_params: dict = {}
    image_to_save = image
    if fmt == "jpeg":
        save_params.update(quality=_quality_to_int(quality), optimize=True)
        image_to_save = flatten_alpha(image)
    elif fmt == "webp":
        save_params.update(quality=_quality_to_int(quality), method=4)
        if image.mode not in {"RGB", "RGBA"}:
            image_to_save = image.convert("RGBA")
    else:
        save_params.update(optimize=True)
        if image.mode not in {"RGB", "RGBA"}:
            image_to_save = image.convert("RGBA")

    buffer = io.BytesIO()
    try:
        image_to_save.save(buffer, format=pil_format, **save_params)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeError(f"图片编码失败 ({fmt}): {exc}") from exc
    return buffer.getvalue()


def make_preview(image: Image.Image) -> Image.Image:
    """生成缩略图，供历史记录等协作方展示。"""

    preview = image.copy()
    preview.thumbnail(PREVIEW_SIZE, Image.LANCZOS)
    return preview


def create_image_asset(
    data: bytes, name: str, mime_type: Optional[str] = None, *, lenient: bool = False
) -> ImageAsset:
    """接收用户上传的图片并生成 ImageAsset。

    ``lenient`` 为真时，无法解码的数据仍生成记录（无预览、尺寸为 0），
    解码错误留给后续处理阶段按单张图片失败处理。
    """

    if mime_type is None:
        mime_type = MIME_BY_PIL_FORMAT.get(sniff_format(data) or "", "application/octet-stream")
    try:
        image: Optional[Image.Image] = decode_image(data)
    except DecodeError:
        if not lenient:
            raise
        LOGGER.warning("无法解码 %s，交由处理阶段记录失败", name)
        image = None

    return ImageAsset(
        id=uuid.uuid4().hex,
        data=data,
        preview=make_preview(image) if image is not None else None,
        width=image.width if image is not None else 0,
        height=image.height if image is not None else 0,
        size=len(data),
        name=name,
        mime_type=mime_type,
    )


def to_processed_asset(image: Image.Image, original_id: str, fmt: str, quality: float) -> ProcessedImageAsset:
    """编码画布并包装为新的 ProcessedImageAsset。"""

    data = encode_image(image, fmt, quality)
    return wrap_encoded(data, original_id, fmt, image=image)


def wrap_encoded(
    data: bytes, original_id: str, fmt: str, *, image: Optional[Image.Image] = None
) -> ProcessedImageAsset:
    """为已编码的字节生成 ProcessedImageAsset。"""

    if image is None:
        image = decode_image(data)
    return ProcessedImageAsset(
        id=uuid.uuid4().hex,
        original_id=original_id,
        data=data,
        preview=make_preview(image),
        width=image.width,
        height=image.height,
        size=len(data),
        format=fmt,
    )


def _normalize_mode(img: Image.Image) -> Image.Image:
    """将任意模式图像转换为 RGB 或 RGBA。"""

    if img.mode == "RGBA":
        return img.copy()
    if img.mode in {"LA", "PA"} or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    if img.mode == "RGB":
        return img.copy()
    return img.convert("RGB")


def _quality_to_int(quality: float) -> int:
    return max(1, min(100, int(round(quality * 100))))
