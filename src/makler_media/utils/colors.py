"""颜色工具函数。"""

from __future__ import annotations

import re
from typing import Tuple

from PIL import ImageColor

from makler_media.core.exceptions import InvalidConfigurationError

RGB = Tuple[int, int, int]
RGBA = Tuple[int, int, int, int]

# 支持 #RGB、#RRGGBB 以及带 alpha 的 #RRGGBBAA（alpha 部分被忽略）。
HEX_COLOR_RE = re.compile(r"^#?(?P<digits>[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


def parse_color(value: str) -> RGB:
    """解析 HEX 或 CSS 颜色名（如 ``white``、``rgb(0,0,0)``）为 RGB。"""

    text = (value or "").strip()
    if not text:
        raise InvalidConfigurationError("颜色值不能为空")

    match = HEX_COLOR_RE.match(text)
    if match:
        digits = match.group("digits")
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return tuple(int(digits[i : i + 2], 16) for i in (0, 2, 4))  # type: ignore[return-value]

    try:
        components = ImageColor.getrgb(text)
    except ValueError as exc:
        raise InvalidConfigurationError(f"无法解析颜色值: {value}") from exc
    return components[0], components[1], components[2]


def with_opacity(rgb: RGB, opacity: float) -> RGBA:
    """附加 0~1 的透明度作为 alpha 分量。"""

    alpha = int(round(255 * max(0.0, min(opacity, 1.0))))
    return rgb[0], rgb[1], rgb[2], alpha
