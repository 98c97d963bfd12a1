"""命令行入口。"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from makler_media.core.config import (
    COMPRESSION_PRESETS,
    BrandingProfile,
    CompressionConfig,
    CustomWatermarkSettings,
    EnhancementConfig,
    OutputConfig,
    PipelineConfig,
    SlideshowConfig,
    WatermarkConfig,
    magic_fix_preset,
)
from makler_media.core.exceptions import EncodingSinkError, InputRejectedError, InvalidConfigurationError
from makler_media.core.intake import accept_uploads
from makler_media.core.output_manager import ImageWriteError, OutputManager
from makler_media.core.progress import BatchProgress, SlideshowProgress
from makler_media.core.report import write_csv_report
from makler_media.core.scanner import collect_source_images, read_uploads
from makler_media.processing.pipeline import process_batch
from makler_media.utils.logging import setup_logging
from makler_media.video.encoder import create_sink
from makler_media.video.slideshow import generate_slideshow

app = typer.Typer(help="房产图片压缩、增强、水印与幻灯片视频生成工具。")

LOGGER = logging.getLogger(__name__)


def _build_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )


def _build_batch_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: BatchProgress) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("处理图片", total=update.total)
        progress.update(task_id, completed=update.completed)

    return callback


def _build_slideshow_callback(progress: Progress):
    task_id = progress.add_task("生成视频", total=100)

    def callback(update: SlideshowProgress) -> None:
        progress.update(task_id, completed=update.progress)
        if update.status in {"completed", "error"}:
            progress.log(update.message)

    return callback


def _resolve_compression(
    preset: Optional[str],
    max_width: Optional[int],
    max_height: Optional[int],
    quality: Optional[float],
    fmt: Optional[str],
) -> Optional[CompressionConfig]:
    if preset is None and max_width is None and max_height is None:
        return None
    if preset is not None:
        if preset not in COMPRESSION_PRESETS:
            raise typer.BadParameter(f"未知的压缩预设: {preset}，可选 {', '.join(COMPRESSION_PRESETS)}")
        base = COMPRESSION_PRESETS[preset]
        config = CompressionConfig(base.max_width, base.max_height, base.quality, base.format)
    else:
        config = CompressionConfig()
    if max_width is not None:
        config.max_width = max_width
    if max_height is not None:
        config.max_height = max_height
    if quality is not None:
        config.quality = quality
    if fmt is not None:
        config.format = fmt
    return config


@app.command("process")
def process_cli(  # noqa: PLR0913
    source: List[Path] = typer.Argument(..., help="源图片文件或目录，可指定多个"),
    output: Path = typer.Option(..., "--output", "-o", help="输出目录"),
    preset: Optional[str] = typer.Option(None, "--preset", help="压缩预设 telegram/instagram/olx/web"),
    max_width: Optional[int] = typer.Option(None, "--max-width", help="最大宽度"),
    max_height: Optional[int] = typer.Option(None, "--max-height", help="最大高度"),
    quality: Optional[float] = typer.Option(None, "--quality", help="编码质量 0.0~1.0"),
    fmt: Optional[str] = typer.Option(None, "--format", help="输出格式 jpeg/png/webp"),
    magic_fix: bool = typer.Option(False, "--magic-fix", help="使用一键增强预设"),
    brightness: Optional[float] = typer.Option(None, "--brightness", help="亮度 -100~100"),
    contrast: Optional[float] = typer.Option(None, "--contrast", help="对比度 -100~100"),
    saturation: Optional[float] = typer.Option(None, "--saturation", help="饱和度 -100~100"),
    watermark_text: Optional[str] = typer.Option(None, "--watermark-text", help="水印主文字（如姓名）"),
    watermark_second: Optional[str] = typer.Option(None, "--watermark-second", help="水印副文字（如电话）"),
    watermark_position: str = typer.Option("bottom-right", "--watermark-position", help="水印位置"),
    watermark_size: int = typer.Option(32, "--watermark-size", help="水印字号"),
    watermark_opacity: float = typer.Option(0.8, "--watermark-opacity", help="水印透明度 0.0~1.0"),
    watermark_color: str = typer.Option("#FFFFFF", "--watermark-color", help="水印颜色"),
    watermark_rotation: float = typer.Option(0.0, "--watermark-rotation", help="水印旋转角度"),
    logo: Optional[Path] = typer.Option(None, "--logo", help="品牌 Logo (PNG/WebP)"),
    logo_position: str = typer.Option("bottom-right", "--logo-position", help="Logo 位置，可为 tile"),
    logo_scale: float = typer.Option(15.0, "--logo-scale", help="Logo 最大宽度占图片宽度百分比 5~30"),
    premium: bool = typer.Option(False, "--premium", help="会员输出，不叠加品牌标识"),
    max_concurrent: int = typer.Option(3, "--concurrency", "-c", help="同时处理的图片数量"),
    recursive: bool = typer.Option(False, "--recursive/--no-recursive", help="是否递归扫描目录"),
    conflict_strategy: str = typer.Option("rename", "--on-conflict", help="文件名冲突策略 overwrite/skip/rename"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """批量压缩、增强并添加水印。"""

    setup_logging("DEBUG" if verbose else None)
    LOGGER.debug("CLI 参数解析完成")

    paths = collect_source_images([p.expanduser() for p in source], recursive=recursive)
    if not paths:
        typer.echo("没有找到可处理的图片。")
        raise typer.Exit(code=1)

    enhancement: Optional[EnhancementConfig] = magic_fix_preset() if magic_fix else None
    if any(value is not None for value in (brightness, contrast, saturation)):
        enhancement = enhancement or EnhancementConfig()
        enhancement.brightness = brightness if brightness is not None else enhancement.brightness
        enhancement.contrast = contrast if contrast is not None else enhancement.contrast
        enhancement.saturation = saturation if saturation is not None else enhancement.saturation

    watermark = None
    if watermark_text:
        watermark = WatermarkConfig(
            text=watermark_text,
            second_text=watermark_second,
            position=watermark_position,
            font_size=watermark_size,
            opacity=watermark_opacity,
            color=watermark_color,
            rotation=watermark_rotation,
        )

    branding = None
    if logo is not None:
        branding = BrandingProfile(
            settings=CustomWatermarkSettings(type="logo", position=logo_position, scale=logo_scale),
            logo=logo.expanduser().resolve(),
        )

    config = PipelineConfig(
        compression=_resolve_compression(preset, max_width, max_height, quality, fmt),
        enhancement=enhancement,
        watermark=watermark,
        branding=branding,
        is_premium=premium,
        max_concurrent=max_concurrent,
    )

    output_config = OutputConfig(output_dir=output.expanduser().resolve(), conflict_strategy=conflict_strategy)
    try:
        manager = OutputManager(output_config)
        assets = accept_uploads(read_uploads(paths))
        with _build_progress() as progress:
            summary = asyncio.run(process_batch(assets, config, _build_batch_callback(progress)))
    except (InputRejectedError, InvalidConfigurationError) as exc:
        typer.echo(f"输入无效：{exc}", err=True)
        raise typer.Exit(code=2) from exc

    try:
        written = manager.save_results(summary.results)
    except ImageWriteError as exc:
        typer.echo(f"写入输出失败：{exc}", err=True)
        raise typer.Exit(code=1) from exc

    report_path = write_csv_report(summary.results, manager.output_dir, output_config.report_filename, written)

    typer.echo(
        f"处理完成：成功 {summary.successful} 张，失败 {summary.failed} 张（成功率 {summary.success_rate:.0f}%）。"
    )
    for result in summary.errors:
        typer.echo(f"  失败 {result.image_name}: {result.error}")
    typer.echo(f"报告文件：{report_path}")


@app.command("slideshow")
def slideshow_cli(  # noqa: PLR0913
    source: List[Path] = typer.Argument(..., help="按播放顺序给出的图片文件或目录"),
    output: Path = typer.Option(..., "--output", "-o", help="输出视频文件路径"),
    duration: float = typer.Option(3.0, "--duration", help="每张图片停留秒数"),
    transition: str = typer.Option("fade", "--transition", help="转场 none/fade/slide-left/slide-right/zoom-in/zoom-out"),
    transition_duration: float = typer.Option(0.5, "--transition-duration", help="转场秒数"),
    aspect_ratio: str = typer.Option("9:16", "--ratio", help="画面比例 9:16/16:9/1:1"),
    fps: int = typer.Option(30, "--fps", help="帧率"),
    quality: str = typer.Option("medium", "--quality", help="画质档位 low/medium/high"),
    frame_scale: float = typer.Option(1.0, "--scale", help="输出尺寸缩放系数 (0, 1]"),
    backend: str = typer.Option("auto", "--backend", help="编码后端 auto/ffmpeg/opencv"),
) -> None:
    """将多张图片合成为带转场的幻灯片视频。"""

    setup_logging()

    paths = collect_source_images([p.expanduser() for p in source])
    if not paths:
        typer.echo("没有找到可用的图片。")
        raise typer.Exit(code=1)

    config = SlideshowConfig(
        images=[path.read_bytes() for path in paths],
        duration=duration,
        transition=transition,
        transition_duration=transition_duration,
        aspect_ratio=aspect_ratio,
        fps=fps,
        quality=quality,
        frame_scale=frame_scale,
    )

    try:
        sink = create_sink(backend, quality=quality)
        with _build_progress() as progress:
            data = asyncio.run(
                generate_slideshow(config, sink=sink, progress_callback=_build_slideshow_callback(progress))
            )
    except InvalidConfigurationError as exc:
        typer.echo(f"参数无效：{exc}", err=True)
        raise typer.Exit(code=2) from exc
    except EncodingSinkError as exc:
        typer.echo(f"视频生成失败：{exc}", err=True)
        raise typer.Exit(code=1) from exc

    target = output.expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    typer.echo(f"视频已保存：{target}（{len(data) / 1024 / 1024:.2f}MB）")


if __name__ == "__main__":
    app()
