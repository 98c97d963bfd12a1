"""幻灯片帧合成与视频生成测试。"""

from __future__ import annotations

import asyncio
import io
import time

import pytest
from PIL import Image

from makler_media.core.config import SlideshowConfig
from makler_media.core.exceptions import EncodingSinkError, InvalidConfigurationError
from makler_media.core.progress import SlideshowProgress
from makler_media.processing.raster import create_image_asset
from makler_media.video.encoder import (
    BITRATE_BY_QUALITY,
    FfmpegVideoSink,
    OpenCVVideoSink,
    create_sink,
)
from makler_media.video.frames import count_frames, cover_fit, cover_geometry, iter_frames, render_transition
from makler_media.video.slideshow import generate_slideshow, generate_slideshow_sync

RED = (255, 0, 0)
BLUE = (0, 0, 255)


class FakeSink:
    mime_type = "video/mp4"

    def __init__(self, fail_at: int | None = None) -> None:
        self.fail_at = fail_at
        self.opened: tuple[int, int, int] | None = None
        self.frames: list[Image.Image] = []
        self.aborted = False
        self.closed = False

    def open(self, width: int, height: int, fps: int) -> None:
        self.opened = (width, height, fps)

    def write(self, frame: Image.Image) -> None:
        if self.fail_at is not None and len(self.frames) == self.fail_at:
            raise RuntimeError("disk full")
        self.frames.append(frame)

    def close(self) -> bytes:
        self.closed = True
        return b"fake-video"

    def abort(self) -> None:
        self.aborted = True


def _png(size: tuple[int, int], color: tuple[int, int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _near(pixel, expected, tolerance: int = 2) -> bool:
    return all(abs(a - b) <= tolerance for a, b in zip(pixel, expected))


def _small_config(images, **overrides) -> SlideshowConfig:
    params = dict(images=images, duration=1, transition="fade", transition_duration=0.5, aspect_ratio="1:1", fps=10)
    params.update(frame_scale=0.1)
    params.update(overrides)
    return SlideshowConfig(**params)


def test_default_frame_count() -> None:
    config = SlideshowConfig(images=[b"x"] * 4)

    assert count_frames(4, config) == 4 * 90 + 3 * 15
    assert count_frames(1, config) == 90
    assert count_frames(0, config) == 0


def test_frame_count_with_one_second_fade() -> None:
    config = SlideshowConfig(images=[b"x"] * 5, duration=3, transition="fade", transition_duration=1, fps=30)

    for count in range(1, 6):
        assert count_frames(count, config) == count * 90 + (count - 1) * 30


def test_frame_count_without_transition() -> None:
    config = SlideshowConfig(images=[b"x"] * 3, transition="none")

    assert count_frames(3, config) == 270


def test_dimensions_follow_aspect_ratio() -> None:
    assert SlideshowConfig(images=[b"x"]).dimensions() == (1080, 1920)
    assert SlideshowConfig(images=[b"x"], aspect_ratio="16:9").dimensions() == (1920, 1080)
    assert SlideshowConfig(images=[b"x"], aspect_ratio="1:1", frame_scale=0.1).dimensions() == (108, 108)


@pytest.mark.parametrize(
    ("image_size", "target", "expected"),
    [
        ((2000, 1000), (1080, 1920), ((3840, 1920), (1380, 0))),
        ((1000, 2000), (1920, 1080), ((1920, 3840), (0, 1380))),
        ((540, 960), (1080, 1920), ((1080, 1920), (0, 0))),
    ],
)
def test_cover_geometry(image_size, target, expected) -> None:
    assert cover_geometry(image_size, target) == expected


def test_cover_fit_leaves_no_black_bars() -> None:
    fitted = cover_fit(Image.new("RGB", (300, 100), (255, 255, 255)), (100, 200))

    assert fitted.size == (100, 200)
    assert all(low >= 250 for low, _ in fitted.getextrema())


def test_fade_and_slide_transitions() -> None:
    current = Image.new("RGB", (40, 20), RED)
    following = Image.new("RGB", (40, 20), BLUE)

    faded = render_transition(current, following, "fade", 0.5)
    red, green, blue = faded.getpixel((20, 10))
    assert abs(red - 127.5) <= 1 and green == 0 and abs(blue - 127.5) <= 1

    left = render_transition(current, following, "slide-left", 0.25)
    assert left.getpixel((5, 5)) == RED
    assert left.getpixel((35, 5)) == BLUE

    right = render_transition(current, following, "slide-right", 0.25)
    assert right.getpixel((5, 5)) == BLUE
    assert right.getpixel((35, 5)) == RED


def test_zoom_transitions() -> None:
    current = Image.new("RGB", (40, 20), RED)
    following = Image.new("RGB", (40, 20), BLUE)

    assert render_transition(current, following, "zoom-in", 0.0).getpixel((20, 10)) == RED

    zoomed_out = render_transition(current, following, "zoom-out", 0.5)
    corner = zoomed_out.getpixel((0, 0))
    assert corner[0] == 0 and abs(corner[2] - 128) <= 1
    center = zoomed_out.getpixel((20, 10))
    assert abs(center[0] - 64) <= 2 and abs(center[2] - 128) <= 1


def test_iter_frames_yields_timeline_in_order() -> None:
    images = [Image.new("RGB", (50, 50), RED), Image.new("RGB", (50, 50), BLUE)]
    config = _small_config(images, transition="slide-left")

    frames = list(iter_frames(images, config))

    assert len(frames) == count_frames(2, config) == 25
    assert all(frame.size == (108, 108) for frame in frames)
    assert _near(frames[0].getpixel((54, 54)), RED)
    assert _near(frames[-1].getpixel((54, 54)), BLUE)
    # 第一帧转场从当前图片开始。
    assert _near(frames[10].getpixel((54, 54)), RED)


def test_generate_slideshow_feeds_every_frame_to_sink() -> None:
    images = [_png((64, 48), RED), create_image_asset(_png((48, 64), BLUE), "b.png"), Image.new("RGB", (30, 30))]
    config = _small_config(images)
    sink = FakeSink()
    updates: list[SlideshowProgress] = []

    data = asyncio.run(generate_slideshow(config, sink=sink, progress_callback=updates.append))

    assert data == b"fake-video"
    assert sink.opened == (108, 108, 10)
    assert len(sink.frames) == count_frames(3, config) == 40
    assert sink.closed and not sink.aborted
    assert [update.status for update in updates[:4]] == ["preparing"] * 4
    assert [round(update.progress, 1) for update in updates[:4]] == [0.0, 6.7, 13.3, 20.0]
    assert updates[4].status == "rendering"
    assert updates[-1].status == "completed"
    assert updates[-1].progress == 100.0
    progress = [update.progress for update in updates]
    assert progress == sorted(progress)


def test_sink_failure_aborts_and_raises() -> None:
    sink = FakeSink(fail_at=3)
    updates: list[SlideshowProgress] = []

    with pytest.raises(EncodingSinkError):
        generate_slideshow_sync(_small_config([_png((20, 20), RED)]), sink=sink, progress_callback=updates.append)

    assert sink.aborted
    assert len(sink.frames) == 3
    assert updates[-1].status == "error"


def test_undecodable_image_stops_before_encoding() -> None:
    sink = FakeSink()

    with pytest.raises(EncodingSinkError):
        generate_slideshow_sync(_small_config([_png((20, 20), RED), b"broken"]), sink=sink)

    assert sink.opened is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"images": []},
        {"images": [b"x"] * 51},
        {"transition": "spin"},
        {"aspect_ratio": "4:3"},
        {"quality": "ultra"},
        {"frame_scale": 0},
    ],
)
def test_invalid_slideshow_config(overrides) -> None:
    params = {"images": [b"x"]}
    params.update(overrides)

    with pytest.raises(InvalidConfigurationError):
        generate_slideshow_sync(SlideshowConfig(**params), sink=FakeSink())


def test_realtime_cadence_paces_frames() -> None:
    config = _small_config([_png((20, 20), RED)], duration=0.5, fps=20)
    sink = FakeSink()

    started = time.monotonic()
    generate_slideshow_sync(config, sink=sink, realtime=True)
    elapsed = time.monotonic() - started

    assert len(sink.frames) == 10
    assert elapsed >= 0.45


def test_create_sink_backends() -> None:
    assert isinstance(create_sink("opencv"), OpenCVVideoSink)
    sink = create_sink("ffmpeg", quality="high")
    assert isinstance(sink, FfmpegVideoSink)
    assert sink.bitrate == BITRATE_BY_QUALITY["high"] == 2_500_000
    with pytest.raises(InvalidConfigurationError):
        create_sink("gstreamer")


def test_opencv_sink_produces_mp4() -> None:
    config = _small_config([_png((60, 40), RED), _png((40, 60), BLUE)], duration=0.3, transition_duration=0.2)

    data = generate_slideshow_sync(config, sink=OpenCVVideoSink())

    assert len(data) > 0
    assert b"ftyp" in data[:64]


def test_oversized_slide_fails_as_job_error(monkeypatch: pytest.MonkeyPatch) -> None:
    # 超过像素上限两倍时 Pillow 直接拒绝打开。
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    sink = FakeSink()
    updates: list[SlideshowProgress] = []
    config = _small_config([_png((20, 20), RED), _png((100, 100), BLUE)])

    with pytest.raises(EncodingSinkError):
        generate_slideshow_sync(config, sink=sink, progress_callback=updates.append)

    assert sink.opened is None
    assert updates[-1].status == "error"
    assert updates[-1].progress == pytest.approx(10.0)
