"""处理任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

from PIL import Image

from makler_media.core.exceptions import InvalidConfigurationError

OutputFormat = str  # jpeg | png | webp
LogoReference = Union[bytes, Path, str, Image.Image]

OUTPUT_FORMATS = ("jpeg", "png", "webp")

ANCHOR_POSITIONS = (
    "top-left",
    "top-center",
    "top-right",
    "center-left",
    "center",
    "center-right",
    "bottom-left",
    "bottom-center",
    "bottom-right",
)
TILE_POSITION = "tile"

WATERMARK_TYPES = ("text", "logo", "both")

TRANSITIONS = ("none", "fade", "slide-left", "slide-right", "zoom-in", "zoom-out")

ASPECT_RATIO_DIMENSIONS = {
    "9:16": (1080, 1920),
    "16:9": (1920, 1080),
    "1:1": (1080, 1080),
}

QUALITY_TIERS = ("low", "medium", "high")


@dataclass(slots=True)
class CompressionConfig:
    """尺寸压缩与重新编码配置。"""

    max_width: int = 1920
    max_height: int = 1080
    quality: float = 0.85
    format: OutputFormat = "webp"

    def validate(self) -> None:
        if self.max_width <= 0 or self.max_height <= 0:
            raise InvalidConfigurationError("max_width 与 max_height 必须大于 0")
        if not 0.0 <= self.quality <= 1.0:
            raise InvalidConfigurationError(f"quality 必须位于 0~1 之间: {self.quality}")
        if self.format not in OUTPUT_FORMATS:
            raise InvalidConfigurationError(f"不支持的输出格式: {self.format}")


COMPRESSION_PRESETS = {
    "telegram": CompressionConfig(max_width=1280, max_height=1280, quality=0.85, format="jpeg"),
    "instagram": CompressionConfig(max_width=1080, max_height=1350, quality=0.9, format="jpeg"),
    "olx": CompressionConfig(max_width=1024, max_height=1024, quality=0.8, format="jpeg"),
    "web": CompressionConfig(max_width=1920, max_height=1080, quality=0.85, format="webp"),
}


@dataclass(slots=True)
class EnhancementConfig:
    """亮度、对比度、饱和度调节配置。sharpness 仅保留字段，不参与计算。"""

    brightness: float = 0.0
    contrast: float = 0.0
    saturation: float = 0.0
    sharpness: float = 0.0

    def validate(self) -> None:
        for name in ("brightness", "contrast", "saturation"):
            value = getattr(self, name)
            if not -100.0 <= value <= 100.0:
                raise InvalidConfigurationError(f"{name} 必须位于 -100~100 之间: {value}")
        if not 0.0 <= self.sharpness <= 100.0:
            raise InvalidConfigurationError(f"sharpness 必须位于 0~100 之间: {self.sharpness}")


def magic_fix_preset() -> EnhancementConfig:
    """一键增强的默认参数。"""

    return EnhancementConfig(brightness=10, contrast=20, saturation=30, sharpness=0)


@dataclass(slots=True)
class WatermarkConfig:
    """简单文字/Logo 水印配置。"""

    text: str = ""
    second_text: Optional[str] = None
    position: str = "bottom-right"
    font_size: int = 32
    opacity: float = 0.8
    color: str = "#FFFFFF"
    rotation: float = 0.0
    logo: Optional[LogoReference] = None
    logo_size: Optional[int] = None
    font_path: Optional[Path] = None

    def validate(self) -> None:
        if self.position not in ANCHOR_POSITIONS:
            raise InvalidConfigurationError(f"未知的水印位置: {self.position}")
        if self.font_size <= 0:
            raise InvalidConfigurationError("font_size 必须大于 0")
        if not 0.0 <= self.opacity <= 1.0:
            raise InvalidConfigurationError(f"opacity 必须位于 0~1 之间: {self.opacity}")


def invisible_watermark() -> WatermarkConfig:
    """未配置水印时用于强制品牌叠加的透明水印。"""

    return WatermarkConfig(text="", position="center", font_size=20, opacity=0.0, color="#000000")


@dataclass(slots=True)
class CustomWatermarkSettings:
    """高级水印配置（Logo/文字，九宫格或平铺）。"""

    type: str = "text"
    position: str = "bottom-right"
    opacity: float = 0.8
    scale: float = 15.0
    padding: int = 20
    enabled: bool = True

    def validate(self) -> None:
        if self.type not in WATERMARK_TYPES:
            raise InvalidConfigurationError(f"未知的水印类型: {self.type}")
        if self.position not in ANCHOR_POSITIONS and self.position != TILE_POSITION:
            raise InvalidConfigurationError(f"未知的水印位置: {self.position}")
        if not 0.0 <= self.opacity <= 1.0:
            raise InvalidConfigurationError(f"opacity 必须位于 0~1 之间: {self.opacity}")
        if not 5.0 <= self.scale <= 30.0:
            raise InvalidConfigurationError(f"scale 必须位于 5~30 之间: {self.scale}")
        if self.padding < 0:
            raise InvalidConfigurationError("padding 不能为负数")


@dataclass(slots=True)
class BrandingProfile:
    """用户品牌资料：自定义 Logo、文字与高级水印设置。"""

    settings: CustomWatermarkSettings = field(default_factory=CustomWatermarkSettings)
    logo: Optional[LogoReference] = None
    name: str = ""
    phone: str = ""
    color: str = "#FFFFFF"
    font_path: Optional[Path] = None

    def text_lines(self) -> list[str]:
        return [line for line in (self.name, self.phone) if line]


@dataclass(slots=True)
class PipelineConfig:
    """批处理流水线配置：任意组合的压缩、增强、水印阶段。"""

    compression: Optional[CompressionConfig] = None
    enhancement: Optional[EnhancementConfig] = None
    watermark: Optional[WatermarkConfig] = None
    branding: Optional[BrandingProfile] = None
    is_premium: bool = False
    max_concurrent: int = 3
    fallback_format: OutputFormat = "webp"
    fallback_quality: float = 0.9

    def validate(self) -> None:
        if self.compression is not None:
            self.compression.validate()
        if self.enhancement is not None:
            self.enhancement.validate()
        if self.watermark is not None:
            self.watermark.validate()
        if self.branding is not None:
            self.branding.settings.validate()
        if self.max_concurrent < 1:
            raise InvalidConfigurationError("max_concurrent 必须至少为 1")
        if self.fallback_format not in OUTPUT_FORMATS:
            raise InvalidConfigurationError(f"不支持的输出格式: {self.fallback_format}")

    def wants_watermark(self) -> bool:
        """是否需要执行水印阶段（非会员总是需要品牌叠加）。"""

        return self.watermark is not None or self.branding is not None or not self.is_premium

    def output_encoding(self) -> Tuple[OutputFormat, float]:
        """增强与水印阶段沿用压缩阶段的格式，否则使用默认 webp。"""

        if self.compression is not None:
            return self.compression.format, self.compression.quality
        return self.fallback_format, self.fallback_quality


@dataclass(slots=True)
class SlideshowConfig:
    """幻灯片视频配置。"""

    images: Sequence[object] = field(default_factory=tuple)
    duration: float = 3.0
    transition: str = "fade"
    transition_duration: float = 0.5
    aspect_ratio: str = "9:16"
    fps: int = 30
    quality: str = "medium"
    frame_scale: float = 1.0
    max_images: int = 50

    def validate(self) -> None:
        if not self.images:
            raise InvalidConfigurationError("幻灯片至少需要一张图片")
        if len(self.images) > self.max_images:
            raise InvalidConfigurationError(f"幻灯片图片数量不能超过 {self.max_images}")
        if self.duration <= 0:
            raise InvalidConfigurationError("duration 必须大于 0")
        if self.transition not in TRANSITIONS:
            raise InvalidConfigurationError(f"未知的转场类型: {self.transition}")
        if self.transition != "none" and self.transition_duration <= 0:
            raise InvalidConfigurationError("transition_duration 必须大于 0")
        if self.aspect_ratio not in ASPECT_RATIO_DIMENSIONS:
            raise InvalidConfigurationError(f"不支持的画面比例: {self.aspect_ratio}")
        if self.fps <= 0:
            raise InvalidConfigurationError("fps 必须大于 0")
        if self.quality not in QUALITY_TIERS:
            raise InvalidConfigurationError(f"未知的画质档位: {self.quality}")
        if not 0.0 < self.frame_scale <= 1.0:
            raise InvalidConfigurationError("frame_scale 必须位于 (0, 1] 之间")

    def dimensions(self) -> Tuple[int, int]:
        """根据画面比例与缩放系数计算输出尺寸（偶数像素，便于编码器处理）。"""

        width, height = ASPECT_RATIO_DIMENSIONS[self.aspect_ratio]
        scaled_w = max(2, int(round(width * self.frame_scale)) // 2 * 2)
        scaled_h = max(2, int(round(height * self.frame_scale)) // 2 * 2)
        return scaled_w, scaled_h


@dataclass(slots=True)
class OutputConfig:
    """输出目录与冲突策略配置。"""

    output_dir: Path
    conflict_strategy: str = "rename"  # overwrite | skip | rename
    report_filename: str = "report.csv"
