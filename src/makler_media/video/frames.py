"""幻灯片帧合成：cover 适配与五种转场效果。"""

from __future__ import annotations

import logging
from typing import Iterator, Sequence, Tuple

from PIL import Image

from makler_media.core.config import SlideshowConfig

LOGGER = logging.getLogger(__name__)

BACKGROUND = (0, 0, 0)
ZOOM_AMOUNT = 0.2

Size = Tuple[int, int]


def frames_per_slide(config: SlideshowConfig) -> int:
    return max(1, int(round(config.fps * config.duration)))


def frames_per_transition(config: SlideshowConfig) -> int:
    if config.transition == "none":
        return 0
    return max(1, int(round(config.fps * config.transition_duration)))


def count_frames(image_count: int, config: SlideshowConfig) -> int:
    """视频总帧数：每张图的静态帧加相邻图片之间的转场帧。"""

    if image_count <= 0:
        return 0
    return image_count * frames_per_slide(config) + (image_count - 1) * frames_per_transition(config)


def cover_geometry(image_size: Size, target: Size) -> Tuple[Size, Tuple[int, int]]:
    """返回 cover 缩放后的尺寸与居中裁剪的左上偏移。

    图片比目标更宽时按高度适配并裁剪左右，否则按宽度适配并裁剪上下。
    """

    img_w, img_h = image_size
    target_w, target_h = target
    if img_w / img_h > target_w / target_h:
        draw_h = target_h
        draw_w = max(target_w, int(round(img_w * target_h / img_h)))
    else:
        draw_w = target_w
        draw_h = max(target_h, int(round(img_h * target_w / img_w)))
    offset = ((draw_w - target_w) // 2, (draw_h - target_h) // 2)
    return (draw_w, draw_h), offset


def cover_fit(image: Image.Image, target: Size) -> Image.Image:
    """缩放填满目标尺寸并居中裁剪，不留黑边。"""

    (draw_w, draw_h), (left, top) = cover_geometry(image.size, target)
    rgb = _to_rgb(image)
    resized = rgb.resize((draw_w, draw_h), Image.LANCZOS)
    return resized.crop((left, top, left + target[0], top + target[1]))


def render_static(current: Image.Image) -> Image.Image:
    return current.copy()


def render_transition(current: Image.Image, following: Image.Image, transition: str, progress: float) -> Image.Image:
    """按转场类型与进度 t∈[0,1) 合成一帧。两张输入须已 cover 适配到同一尺寸。"""

    size = current.size
    if transition == "fade":
        return Image.blend(current, following, progress)

    if transition in {"slide-left", "slide-right"}:
        frame = Image.new("RGB", size, BACKGROUND)
        offset = int(round(size[0] * progress))
        if transition == "slide-left":
            frame.paste(current, (-offset, 0))
            frame.paste(following, (size[0] - offset, 0))
        else:
            frame.paste(current, (offset, 0))
            frame.paste(following, (offset - size[0], 0))
        return frame

    if transition in {"zoom-in", "zoom-out"}:
        factor = 1 + ZOOM_AMOUNT * progress if transition == "zoom-in" else 1 - ZOOM_AMOUNT * progress
        zoomed = _scale_about_center(current, factor)
        faded = Image.blend(Image.new("RGB", size, BACKGROUND), zoomed, 1 - progress)
        return Image.blend(faded, following, progress)

    return render_static(current)


def iter_frames(images: Sequence[Image.Image], config: SlideshowConfig) -> Iterator[Image.Image]:
    """按时间线顺序逐帧生成 RGB 画面。"""

    target = config.dimensions()
    fitted = [cover_fit(image, target) for image in images]
    per_slide = frames_per_slide(config)
    per_transition = frames_per_transition(config)
    LOGGER.debug("幻灯片 %d 张，每张 %d 帧，转场 %d 帧", len(fitted), per_slide, per_transition)

    for index, current in enumerate(fitted):
        for _ in range(per_slide):
            yield render_static(current)

        if index < len(fitted) - 1 and per_transition:
            following = fitted[index + 1]
            for frame_index in range(per_transition):
                progress = frame_index / per_transition
                yield render_transition(current, following, config.transition, progress)


def _scale_about_center(image: Image.Image, factor: float) -> Image.Image:
    """以画面中心缩放；放大时裁剪溢出，缩小时四周留黑。"""

    width, height = image.size
    scaled_w = max(1, int(round(width * factor)))
    scaled_h = max(1, int(round(height * factor)))
    scaled = image.resize((scaled_w, scaled_h), Image.BILINEAR)
    frame = Image.new("RGB", (width, height), BACKGROUND)
    frame.paste(scaled, ((width - scaled_w) // 2, (height - scaled_h) // 2))
    return frame


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == "RGB":
        return image
    if image.mode == "RGBA":
        background = Image.new("RGB", image.size, BACKGROUND)
        background.paste(image, mask=image.getchannel("A"))
        return background
    return image.convert("RGB")
