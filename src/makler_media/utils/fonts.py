"""字体加载工具。"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from PIL import ImageFont

LOGGER = logging.getLogger(__name__)

BOLD_FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "Arial Bold.ttf",
    "arialbd.ttf",
    "LiberationSans-Bold.ttf",
)
REGULAR_FONT_CANDIDATES = (
    "DejaVuSans.ttf",
    "Arial.ttf",
    "arial.ttf",
    "LiberationSans-Regular.ttf",
)


@lru_cache(maxsize=64)
def load_font(size: int, *, bold: bool = True, font_path: Optional[Path] = None) -> ImageFont.FreeTypeFont:
    """按像素大小加载字体；找不到系统字体时使用 Pillow 内置字体。"""

    size = max(1, int(round(size)))
    candidates: list[str] = []
    if font_path is not None:
        candidates.append(str(font_path))
    candidates.extend(BOLD_FONT_CANDIDATES if bold else REGULAR_FONT_CANDIDATES)

    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue

    LOGGER.debug("未找到系统字体，使用 Pillow 内置字体 (size=%d)", size)
    return ImageFont.load_default(size=size)
