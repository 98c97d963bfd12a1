"""视频编码输出端：逐帧写入，结束时返回完整的视频字节。"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import IO, Optional, Protocol

import cv2
import numpy as np
from PIL import Image

from makler_media.core.exceptions import EncodingSinkError, InvalidConfigurationError

LOGGER = logging.getLogger(__name__)

BITRATE_BY_QUALITY = {
    "low": 1_000_000,
    "medium": 1_500_000,
    "high": 2_500_000,
}
DEFAULT_BITRATE = BITRATE_BY_QUALITY["medium"]


class VideoSink(Protocol):
    """视频编码输出端接口。"""

    mime_type: str

    def open(self, width: int, height: int, fps: int) -> None: ...

    def write(self, frame: Image.Image) -> None: ...

    def close(self) -> bytes: ...

    def abort(self) -> None: ...


class OpenCVVideoSink:
    """使用 ``cv2.VideoWriter`` 写入临时 MP4 文件，结束后读回字节。

    OpenCV 的写入器不支持设置码率，画质由编解码器默认值决定。
    """

    mime_type = "video/mp4"

    def __init__(self, fourcc: str = "mp4v", suffix: str = ".mp4") -> None:
        self._fourcc = fourcc
        self._suffix = suffix
        self._workdir: Optional[tempfile.TemporaryDirectory] = None
        self._path: Optional[Path] = None
        self._writer: Optional[cv2.VideoWriter] = None
        self._size: Optional[tuple[int, int]] = None

    def open(self, width: int, height: int, fps: int) -> None:
        self._workdir = tempfile.TemporaryDirectory(prefix="makler_video_")
        self._path = Path(self._workdir.name) / f"slideshow{self._suffix}"
        self._size = (width, height)
        fourcc = cv2.VideoWriter_fourcc(*self._fourcc)
        self._writer = cv2.VideoWriter(str(self._path), fourcc, float(fps), (width, height))
        if not self._writer.isOpened():
            self.abort()
            raise EncodingSinkError(f"无法打开视频写入器 (fourcc={self._fourcc})")
        LOGGER.debug("OpenCV 写入器已打开 %sx%s @ %s fps", width, height, fps)

    def write(self, frame: Image.Image) -> None:
        if self._writer is None:
            raise EncodingSinkError("视频写入器尚未打开")
        if frame.size != self._size:
            raise EncodingSinkError(f"帧尺寸 {frame.size} 与视频尺寸 {self._size} 不一致")
        array = np.asarray(frame.convert("RGB"))
        try:
            self._writer.write(cv2.cvtColor(array, cv2.COLOR_RGB2BGR))
        except cv2.error as exc:
            raise EncodingSinkError(f"写入视频帧失败: {exc}") from exc

    def close(self) -> bytes:
        if self._writer is None or self._path is None:
            raise EncodingSinkError("视频写入器尚未打开")
        try:
            self._writer.release()
            self._writer = None
            data = self._path.read_bytes()
        except (OSError, cv2.error) as exc:
            raise EncodingSinkError(f"视频封装失败: {exc}") from exc
        finally:
            self.abort()
        if not data:
            raise EncodingSinkError("编码器没有输出任何数据")
        return data

    def abort(self) -> None:
        if self._writer is not None:
            self._writer.release()
            self._writer = None
        if self._workdir is not None:
            self._workdir.cleanup()
            self._workdir = None
        self._path = None


class FfmpegVideoSink:
    """将原始 RGB 帧通过管道交给 ffmpeg，以固定目标码率编码 H.264。"""

    mime_type = "video/mp4"

    def __init__(self, bitrate: int = DEFAULT_BITRATE, executable: str = "ffmpeg") -> None:
        self.bitrate = bitrate
        self._executable = executable
        self._workdir: Optional[tempfile.TemporaryDirectory] = None
        self._path: Optional[Path] = None
        self._process: Optional[subprocess.Popen] = None
        self._log: Optional[IO[bytes]] = None
        self._size: Optional[tuple[int, int]] = None

    def open(self, width: int, height: int, fps: int) -> None:
        self._workdir = tempfile.TemporaryDirectory(prefix="makler_video_")
        self._path = Path(self._workdir.name) / "slideshow.mp4"
        self._size = (width, height)
        self._log = (Path(self._workdir.name) / "ffmpeg.log").open("wb")
        command = [
            self._executable,
            "-y",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{width}x{height}",
            "-r", str(fps),
            "-i", "-",
            "-c:v", "libx264",
            "-b:v", str(self.bitrate),
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            str(self._path),
        ]
        try:
            self._process = subprocess.Popen(command, stdin=subprocess.PIPE, stderr=self._log)
        except OSError as exc:
            self.abort()
            raise EncodingSinkError(f"无法启动 ffmpeg: {exc}") from exc
        LOGGER.debug("ffmpeg 已启动 %sx%s @ %s fps, bitrate=%d", width, height, fps, self.bitrate)

    def write(self, frame: Image.Image) -> None:
        if self._process is None or self._process.stdin is None:
            raise EncodingSinkError("ffmpeg 尚未启动")
        if frame.size != self._size:
            raise EncodingSinkError(f"帧尺寸 {frame.size} 与视频尺寸 {self._size} 不一致")
        try:
            self._process.stdin.write(frame.convert("RGB").tobytes())
        except (BrokenPipeError, OSError) as exc:
            raise EncodingSinkError(f"ffmpeg 管道已关闭: {exc}") from exc

    def close(self) -> bytes:
        if self._process is None or self._path is None:
            raise EncodingSinkError("ffmpeg 尚未启动")
        try:
            if self._process.stdin is not None:
                self._process.stdin.close()
            returncode = self._process.wait()
            self._process = None
            if returncode != 0:
                raise EncodingSinkError(f"ffmpeg 退出码 {returncode}: {self._read_log_tail()}")
            data = self._path.read_bytes()
        except OSError as exc:
            raise EncodingSinkError(f"视频封装失败: {exc}") from exc
        finally:
            self.abort()
        return data

    def abort(self) -> None:
        if self._process is not None:
            if self._process.stdin is not None and not self._process.stdin.closed:
                self._process.stdin.close()
            self._process.kill()
            self._process.wait()
            self._process = None
        if self._log is not None:
            self._log.close()
            self._log = None
        if self._workdir is not None:
            self._workdir.cleanup()
            self._workdir = None
        self._path = None

    def _read_log_tail(self, limit: int = 500) -> str:
        if self._workdir is None:
            return ""
        if self._log is not None:
            self._log.flush()
        log_path = Path(self._workdir.name) / "ffmpeg.log"
        try:
            return log_path.read_text(encoding="utf-8", errors="replace")[-limit:]
        except OSError:
            return ""


def create_sink(backend: str = "auto", *, quality: str = "medium") -> VideoSink:
    """按名称创建编码输出端；``auto`` 在 PATH 中存在 ffmpeg 时优先使用它。"""

    if backend == "auto":
        backend = "ffmpeg" if shutil.which("ffmpeg") else "opencv"
    if backend == "ffmpeg":
        return FfmpegVideoSink(bitrate=BITRATE_BY_QUALITY.get(quality, DEFAULT_BITRATE))
    if backend == "opencv":
        return OpenCVVideoSink()
    raise InvalidConfigurationError(f"未知的视频编码后端: {backend}")
