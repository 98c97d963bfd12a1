"""批处理流水线测试：阶段顺序、失败隔离与进度快照。"""

from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image, ImageChops

from makler_media.core.config import (
    CompressionConfig,
    EnhancementConfig,
    PipelineConfig,
    WatermarkConfig,
    invisible_watermark,
    magic_fix_preset,
)
from makler_media.core.exceptions import DecodeError, InvalidConfigurationError
from makler_media.core.intake import UploadedFile, accept_uploads
from makler_media.core.models import BatchImageResult
from makler_media.core.progress import BatchProgress
from makler_media.processing.pipeline import process_batch, process_batch_sync, run_stages
from makler_media.processing.queue import ConcurrencyQueue
from makler_media.processing.raster import create_image_asset, decode_image
from makler_media.processing.watermark import compose_watermarks


def _jpeg(size: tuple[int, int], color: tuple[int, int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def _png(size: tuple[int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("L", size, 0).save(buffer, format="PNG")
    return buffer.getvalue()


def _assets(count: int, size: tuple[int, int] = (320, 240)):
    return [
        create_image_asset(_jpeg(size, (40 * index % 255, 120, 200)), f"photo_{index}.jpg", "image/jpeg")
        for index in range(count)
    ]


def test_corrupted_image_fails_alone() -> None:
    assets = _assets(4)
    assets.insert(2, create_image_asset(b"not an image at all", "broken.jpg", "image/jpeg", lenient=True))
    config = PipelineConfig(
        compression=CompressionConfig(max_width=160, max_height=160, quality=0.8, format="jpeg"),
        is_premium=True,
    )

    summary = process_batch_sync(assets, config)

    assert summary.total == 5
    assert summary.successful == 4
    assert summary.failed == 1
    assert summary.success_rate == pytest.approx(80.0)
    failed = summary.errors[0]
    assert failed.image_name == "broken.jpg"
    assert failed.error
    assert failed.processed is None
    for result in summary.succeeded:
        assert result.processed is not None
        assert result.processed.width <= 160 and result.processed.height <= 160


def test_progress_snapshots_are_consistent() -> None:
    assets = _assets(5)
    updates: list[BatchProgress] = []
    config = PipelineConfig(enhancement=magic_fix_preset(), is_premium=True, max_concurrent=2)

    summary = asyncio.run(process_batch(assets, config, updates.append))

    assert updates
    completed = [update.completed for update in updates]
    assert completed == sorted(completed)
    for update in updates:
        assert update.total == 5
        assert update.completed == update.successful + update.failed
        assert len(update.results) == 5
        assert sum(1 for result in update.results if result.is_terminal) == update.completed
    assert updates[-1].completed == 5
    assert summary.successful == 5
    # 快照不会被后续更新修改。
    assert updates[0].completed == 0
    assert any(result.status == "processing" for result in updates[0].results)


def test_results_keep_submission_order() -> None:
    assets = _assets(6)
    summary = process_batch_sync(assets, PipelineConfig(is_premium=True, max_concurrent=4))

    assert [result.image_id for result in summary.results] == [asset.id for asset in assets]


def test_explicit_queue_bounds_concurrency() -> None:
    assets = _assets(6)
    queue_holder: list[ConcurrencyQueue] = []

    async def scenario():
        queue = ConcurrencyQueue(2)
        queue_holder.append(queue)
        return await process_batch(assets, PipelineConfig(is_premium=True), queue=queue)

    summary = asyncio.run(scenario())

    assert summary.successful == 6
    assert 1 <= queue_holder[0].peak_running <= 2


def test_stages_run_in_order_and_share_format() -> None:
    asset = _assets(1, size=(800, 600))[0]
    config = PipelineConfig(
        compression=CompressionConfig(max_width=400, max_height=400, quality=0.9, format="png"),
        enhancement=EnhancementConfig(brightness=20),
        watermark=WatermarkConfig(text="Agent", position="top-left", font_size=16, opacity=1.0),
        is_premium=True,
    )

    processed = run_stages(asset, config)

    assert processed.original_id == asset.id
    assert processed.format == "png"
    assert (processed.width, processed.height) == (400, 300)
    assert processed.data.startswith(b"\x89PNG\r\n\x1a\n")


def test_premium_without_stages_returns_original_bytes() -> None:
    asset = _assets(1)[0]

    processed = run_stages(asset, PipelineConfig(is_premium=True))

    assert processed.data == asset.data
    assert processed.format == "jpeg"
    assert processed.original_id == asset.id


def test_non_premium_output_always_carries_brand_overlay() -> None:
    asset = _assets(1, size=(400, 400))[0]

    branded = run_stages(asset, PipelineConfig(is_premium=False))
    plain = run_stages(asset, PipelineConfig(is_premium=True, watermark=invisible_watermark()))

    # 两次输出走相同的 webp 编码，差异只能来自品牌叠加。
    assert branded.format == plain.format == "webp"
    bbox = ImageChops.difference(decode_image(branded.data), decode_image(plain.data)).getbbox()
    assert bbox is not None
    left, top, right, bottom = bbox
    assert left < 200 < right and top < 200 < bottom


def test_brand_overlay_is_drawn_before_encoding() -> None:
    original = decode_image(_assets(1, size=(400, 400))[0].data)

    branded = compose_watermarks(original, config=invisible_watermark(), is_premium=False)
    untouched = compose_watermarks(original, config=invisible_watermark(), is_premium=True)

    assert ImageChops.difference(original, untouched).getbbox() is None
    assert ImageChops.difference(original, branded).getbbox() is not None


def test_oversized_image_fails_alone(monkeypatch: pytest.MonkeyPatch) -> None:
    small = _jpeg((20, 20), (10, 200, 10))
    huge = _png((100, 100))
    # 超过像素上限两倍时 Pillow 拒绝打开，该图片只应单独失败。
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    assets = accept_uploads([UploadedFile("ok.jpg", small), UploadedFile("huge.png", huge)])
    summary = process_batch_sync(
        assets,
        PipelineConfig(compression=CompressionConfig(format="jpeg"), is_premium=True),
    )

    assert (assets[1].width, assets[1].height) == (0, 0)
    assert summary.successful == 1
    assert summary.failed == 1
    assert summary.errors[0].image_name == "huge.png"
    with pytest.raises(DecodeError):
        decode_image(huge)


def test_heic_upload_is_decoded_and_processed() -> None:
    buffer = io.BytesIO()
    Image.new("RGB", (64, 48), (200, 30, 30)).save(buffer, format="HEIF", quality=90)

    assets = accept_uploads([UploadedFile("iphone.heic", buffer.getvalue())])
    summary = process_batch_sync(
        assets,
        PipelineConfig(compression=CompressionConfig(format="jpeg"), is_premium=True),
    )

    assert assets[0].mime_type == "image/heic"
    assert (assets[0].width, assets[0].height) == (64, 48)
    assert summary.successful == 1
    processed = summary.results[0].processed
    assert processed is not None
    assert processed.format == "jpeg"
    assert (processed.width, processed.height) == (64, 48)
    red, green, blue = decode_image(processed.data).getpixel((32, 24))
    assert red > 150 and green < 80 and blue < 80


def test_invalid_config_is_rejected_before_processing() -> None:
    config = PipelineConfig(enhancement=EnhancementConfig(brightness=500))

    with pytest.raises(InvalidConfigurationError):
        process_batch_sync(_assets(1), config)


def test_empty_batch_returns_empty_summary() -> None:
    summary = process_batch_sync([], PipelineConfig())

    assert summary.total == 0
    assert summary.success_rate == 0.0


def test_batch_result_rejects_unknown_status() -> None:
    with pytest.raises(ValueError):
        BatchImageResult(image_id="1", image_name="a.jpg", status="done")

    result = BatchImageResult(image_id="1", image_name="a.jpg")
    result.status = "success"
    assert result.snapshot().is_terminal
