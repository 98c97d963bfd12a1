"""水印合成：九宫格文字/Logo、平铺水印以及非会员强制品牌叠加。"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from makler_media.core.config import (
    TILE_POSITION,
    BrandingProfile,
    LogoReference,
    WatermarkConfig,
)
from makler_media.core.exceptions import WatermarkAssetError
from makler_media.core.models import ImageAsset, ProcessedImageAsset
from makler_media.processing.raster import decode_image, new_surface, to_processed_asset
from makler_media.utils.colors import parse_color, with_opacity
from makler_media.utils.fonts import load_font

LOGGER = logging.getLogger(__name__)

BRAND_TEXT = "MaklerPro"
BRAND_FONT_RATIO = 0.15
BRAND_OPACITY = 0.3
BRAND_STROKE_RATIO = 0.05
BRAND_ROTATION = -45.0

TILE_ROTATION = -30.0
TILE_OPACITY_FACTOR = 0.3

LOGO_PADDING = 20
SECOND_LINE_RATIO = 0.75
LINE_SPACING_RATIO = 0.2
CUSTOM_TEXT_RATIO = 0.25


@dataclass(frozen=True, slots=True)
class AnchorPoint:
    """文字锚点坐标与对齐方式。"""

    x: float
    y: float
    align: str


def text_anchor(position: str, width: int, height: int, font_size: float) -> AnchorPoint:
    """计算九宫格文字锚点，padding 等于字号；未知位置按右下角处理。"""

    padding = font_size
    top = padding + font_size / 2
    middle = height / 2
    bottom = height - padding - font_size / 2
    left = padding
    center = width / 2
    right = width - padding

    anchors = {
        "top-left": AnchorPoint(left, top, "left"),
        "top-center": AnchorPoint(center, top, "center"),
        "top-right": AnchorPoint(right, top, "right"),
        "center-left": AnchorPoint(left, middle, "left"),
        "center": AnchorPoint(center, middle, "center"),
        "center-right": AnchorPoint(right, middle, "right"),
        "bottom-left": AnchorPoint(left, bottom, "left"),
        "bottom-center": AnchorPoint(center, bottom, "center"),
        "bottom-right": AnchorPoint(right, bottom, "right"),
    }
    return anchors.get(position, anchors["bottom-right"])


def text_block_height(font_size: float, has_second_line: bool) -> float:
    """文字块总高度：主行字号，加上可选的副行与行距。"""

    height = font_size
    if has_second_line:
        height += font_size * SECOND_LINE_RATIO + font_size * LINE_SPACING_RATIO
    return height


def block_origin_y(position: str, anchor_y: float, block_height: float) -> float:
    """底部锚点整体上移块高，居中锚点上移半个块高，顶部锚点不变。"""

    if position.startswith("bottom"):
        return anchor_y - block_height
    if position.startswith("center"):
        return anchor_y - block_height / 2
    return anchor_y


def box_position(
    position: str,
    image_width: int,
    image_height: int,
    box_width: float,
    box_height: float,
    padding: float = LOGO_PADDING,
) -> Tuple[float, float]:
    """计算矩形水印（Logo 等）左上角坐标。"""

    left = padding
    center_x = (image_width - box_width) / 2
    right = image_width - box_width - padding
    top = padding
    center_y = (image_height - box_height) / 2
    bottom = image_height - box_height - padding

    positions = {
        "top-left": (left, top),
        "top-center": (center_x, top),
        "top-right": (right, top),
        "center-left": (left, center_y),
        "center": (center_x, center_y),
        "center-right": (right, center_y),
        "bottom-left": (left, bottom),
        "bottom-center": (center_x, bottom),
        "bottom-right": (right, bottom),
        TILE_POSITION: (0.0, 0.0),
    }
    return positions.get(position, positions["bottom-right"])


def fit_logo_size(logo_width: int, logo_height: int, image_width: int, scale_percent: float) -> Tuple[int, int]:
    """Logo 宽度不超过图片宽度的 scale_percent%，只缩小不放大。"""

    max_width = image_width * scale_percent / 100
    if logo_width > max_width:
        ratio = logo_width / logo_height
        width = max(1, int(round(max_width)))
        return width, max(1, int(round(max_width / ratio)))
    return logo_width, logo_height


def tile_positions(image_width: int, image_height: int, mark_width: int, mark_height: int) -> list[Tuple[int, int]]:
    """平铺网格的单元格左上角坐标，单元格为水印尺寸的两倍。"""

    cell_w = max(1, 2 * mark_width)
    cell_h = max(1, 2 * mark_height)
    return [(x, y) for y in range(0, image_height, cell_h) for x in range(0, image_width, cell_w)]


def load_logo(reference: LogoReference) -> Image.Image:
    """加载 Logo 为 RGBA 图像，失败时抛出 WatermarkAssetError。"""

    if isinstance(reference, Image.Image):
        return reference.convert("RGBA")
    try:
        if isinstance(reference, (bytes, bytearray)):
            source: Union[io.BytesIO, Path] = io.BytesIO(reference)
        else:
            source = Path(reference)
        with Image.open(source) as logo:
            logo.load()
            return logo.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise WatermarkAssetError(f"无法加载水印 Logo: {exc}") from exc


def apply_watermark(image: Image.Image, config: WatermarkConfig) -> Image.Image:
    """按简单配置绘制文字与 Logo 水印，返回新的 RGBA 画布。"""

    base = image.convert("RGBA")
    width, height = base.size

    if config.text and config.opacity > 0:
        anchor = text_anchor(config.position, width, height, config.font_size)
        lines = [(config.text, config.font_size, True)]
        if config.second_text:
            lines.append((config.second_text, config.font_size * SECOND_LINE_RATIO, False))
        if config.rotation:
            # 旋转时文字块直接从锚点开始绘制，不做整体上移。
            origin_y = anchor.y
        else:
            block_height = text_block_height(config.font_size, bool(config.second_text))
            origin_y = block_origin_y(config.position, anchor.y, block_height)

        overlay = new_surface(base.size)
        fill = with_opacity(parse_color(config.color), config.opacity)
        _draw_lines(
            ImageDraw.Draw(overlay),
            lines,
            anchor.x,
            origin_y,
            anchor.align,
            fill,
            spacing=config.font_size * LINE_SPACING_RATIO,
            font_path=config.font_path,
        )
        if config.rotation:
            overlay = overlay.rotate(-config.rotation, resample=Image.BICUBIC, center=(anchor.x, anchor.y))
        base.alpha_composite(overlay)

    if config.logo is not None and config.logo_size:
        logo = _safe_load_logo(config.logo)
        if logo is not None:
            logo = ImageOps.contain(logo, (config.logo_size, config.logo_size), Image.LANCZOS)
            logo_x = width - logo.width - LOGO_PADDING
            logo_y = height - logo.height - LOGO_PADDING
            if config.position == "bottom-right":
                logo_x = LOGO_PADDING
            _composite_at(base, _scale_alpha(logo, config.opacity), (logo_x, logo_y))

    return base


def apply_custom_watermark(image: Image.Image, profile: BrandingProfile) -> Image.Image:
    """按用户品牌资料绘制九宫格或平铺水印。"""

    settings = profile.settings
    base = image.convert("RGBA")
    if not settings.enabled or settings.opacity <= 0:
        return base

    mark = build_mark(profile, base.width)
    if mark is None:
        LOGGER.debug("品牌水印没有可绘制的内容")
        return base

    if settings.position == TILE_POSITION:
        return apply_tiled_mark(base, mark, settings.opacity)

    x, y = box_position(settings.position, base.width, base.height, mark.width, mark.height, settings.padding)
    _composite_at(base, _scale_alpha(mark, settings.opacity), (x, y))
    return base


def build_mark(profile: BrandingProfile, image_width: int) -> Optional[Image.Image]:
    """按类型组合 Logo 与文字，生成未加透明度的水印图块。"""

    settings = profile.settings
    align = _column_of(settings.position)
    logo: Optional[Image.Image] = None
    text_mark: Optional[Image.Image] = None

    if settings.type in {"logo", "both"} and profile.logo is not None:
        logo = _safe_load_logo(profile.logo)
        if logo is not None:
            target = fit_logo_size(logo.width, logo.height, image_width, settings.scale)
            if target != logo.size:
                logo = logo.resize(target, Image.LANCZOS)

    if settings.type in {"text", "both"} and profile.text_lines():
        font_size = max(10, int(round(image_width * settings.scale / 100 * CUSTOM_TEXT_RATIO)))
        text_mark = render_text_mark(
            profile.text_lines(), font_size, parse_color(profile.color), align=align, font_path=profile.font_path
        )

    if logo is not None and text_mark is not None:
        return _stack_vertically(logo, text_mark, gap=max(1, settings.padding // 2), align=align)
    return logo or text_mark


def render_text_mark(
    lines: Sequence[str],
    font_size: int,
    color: Tuple[int, int, int],
    *,
    align: str = "center",
    font_path: Optional[Path] = None,
) -> Image.Image:
    """把一到多行文字渲染为紧凑的 RGBA 图块，首行加粗，后续行为 0.75 倍字号。"""

    specs = [
        (line, font_size if index == 0 else font_size * SECOND_LINE_RATIO, index == 0)
        for index, line in enumerate(lines)
    ]
    spacing = font_size * LINE_SPACING_RATIO
    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    widths = []
    for text, size, bold in specs:
        bbox = probe.textbbox((0, 0), text, font=load_font(int(round(size)), bold=bold, font_path=font_path))
        widths.append(bbox[2] - bbox[0])

    width = max(1, int(math.ceil(max(widths))))
    height = max(1, int(math.ceil(sum(size for _, size, _ in specs) + spacing * (len(specs) - 1) + font_size * 0.3)))
    mark = new_surface((width, height))
    origin_x = {"left": 0, "center": width / 2, "right": width}[align]
    _draw_lines(ImageDraw.Draw(mark), specs, origin_x, 0, align, (*color, 255), spacing=spacing, font_path=font_path)
    return mark


def apply_tiled_mark(base: Image.Image, mark: Image.Image, opacity: float) -> Image.Image:
    """以 -30° 旋转、约 30% 透明度在整张图上平铺水印。"""

    faded = _scale_alpha(mark, opacity * TILE_OPACITY_FACTOR)
    rotated = faded.rotate(-TILE_ROTATION, resample=Image.BICUBIC, expand=True)
    cell_w, cell_h = 2 * mark.width, 2 * mark.height
    for x, y in tile_positions(base.width, base.height, mark.width, mark.height):
        dest_x = x + (cell_w - rotated.width) / 2
        dest_y = y + (cell_h - rotated.height) / 2
        _composite_at(base, rotated, (dest_x, dest_y))
    return base


def apply_brand_overlay(image: Image.Image) -> Image.Image:
    """非会员强制品牌叠加：居中、-45° 旋转、半透明填充加黑色描边。"""

    base = image.convert("RGBA")
    width, height = base.size
    font_size = max(1, int(round(max(width, height) * BRAND_FONT_RATIO)))
    stroke_width = max(1, int(round(font_size * BRAND_STROKE_RATIO)))
    font = load_font(font_size, bold=True)

    overlay = new_surface(base.size)
    draw = ImageDraw.Draw(overlay)
    bbox = draw.textbbox((0, 0), BRAND_TEXT, font=font, stroke_width=stroke_width)
    center_x, center_y = width / 2, height / 2
    origin = (center_x - (bbox[0] + bbox[2]) / 2, center_y - (bbox[1] + bbox[3]) / 2)
    draw.text(
        origin,
        BRAND_TEXT,
        font=font,
        fill=with_opacity((255, 255, 255), BRAND_OPACITY),
        stroke_width=stroke_width,
        stroke_fill=with_opacity((0, 0, 0), BRAND_OPACITY),
    )
    overlay = overlay.rotate(-BRAND_ROTATION, resample=Image.BICUBIC, center=(center_x, center_y))
    base.alpha_composite(overlay)
    return base


def compose_watermarks(
    image: Image.Image,
    *,
    config: Optional[WatermarkConfig] = None,
    branding: Optional[BrandingProfile] = None,
    is_premium: bool = False,
) -> Image.Image:
    """依次绘制用户水印、品牌水印，最后为非会员叠加品牌标识。"""

    had_alpha = image.mode == "RGBA"
    result = image.convert("RGBA")
    if config is not None:
        result = apply_watermark(result, config)
    if branding is not None:
        result = apply_custom_watermark(result, branding)
    if not is_premium:
        result = apply_brand_overlay(result)
    return result if had_alpha else result.convert("RGB")


def watermark_image(
    source: Union[ImageAsset, ProcessedImageAsset],
    *,
    config: Optional[WatermarkConfig] = None,
    branding: Optional[BrandingProfile] = None,
    is_premium: bool = False,
    fmt: str = "webp",
    quality: float = 0.9,
) -> ProcessedImageAsset:
    """对图片执行水印阶段，返回新的 ProcessedImageAsset。"""

    original_id = source.id if isinstance(source, ImageAsset) else source.original_id
    image = decode_image(source.data)
    result = compose_watermarks(image, config=config, branding=branding, is_premium=is_premium)
    return to_processed_asset(result, original_id, fmt, quality)


def _draw_lines(
    draw: ImageDraw.ImageDraw,
    lines: Sequence[Tuple[str, float, bool]],
    origin_x: float,
    origin_y: float,
    align: str,
    fill: Tuple[int, int, int, int],
    *,
    spacing: float,
    font_path: Optional[Path] = None,
) -> None:
    y = origin_y
    for text, size, bold in lines:
        font = load_font(int(round(size)), bold=bold, font_path=font_path)
        bbox = draw.textbbox((0, 0), text, font=font)
        line_width = bbox[2] - bbox[0]
        if align == "center":
            x = origin_x - line_width / 2
        elif align == "right":
            x = origin_x - line_width
        else:
            x = origin_x
        draw.text((x - bbox[0], y), text, font=font, fill=fill)
        y += size + spacing


def _safe_load_logo(reference: LogoReference) -> Optional[Image.Image]:
    try:
        return load_logo(reference)
    except WatermarkAssetError as exc:
        LOGGER.warning("跳过 Logo 水印: %s", exc)
        return None


def _scale_alpha(layer: Image.Image, opacity: float) -> Image.Image:
    """按透明度系数缩放图层 alpha 通道。"""

    opacity = max(0.0, min(opacity, 1.0))
    layer = layer.convert("RGBA")
    alpha = layer.getchannel("A").point(lambda value: int(round(value * opacity)))
    layer.putalpha(alpha)
    return layer


def _composite_at(base: Image.Image, layer: Image.Image, position: Tuple[float, float]) -> None:
    """将图层合成到 base 的指定位置，超出边界的部分被裁掉。"""

    x, y = int(round(position[0])), int(round(position[1]))
    left, top = max(0, -x), max(0, -y)
    right = min(layer.width, base.width - x)
    bottom = min(layer.height, base.height - y)
    if right <= left or bottom <= top:
        return
    base.alpha_composite(layer, dest=(x + left, y + top), source=(left, top, right, bottom))


def _column_of(position: str) -> str:
    if position.endswith("left"):
        return "left"
    if position.endswith("right"):
        return "right"
    return "center"


def _stack_vertically(top: Image.Image, bottom: Image.Image, *, gap: int, align: str) -> Image.Image:
    width = max(top.width, bottom.width)
    canvas = new_surface((width, top.height + gap + bottom.height))
    for layer, y in ((top, 0), (bottom, top.height + gap)):
        if align == "left":
            x = 0
        elif align == "right":
            x = width - layer.width
        else:
            x = (width - layer.width) // 2
        canvas.alpha_composite(layer, dest=(x, y))
    return canvas
