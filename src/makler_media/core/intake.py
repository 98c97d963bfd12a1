"""上传图片的数量、大小与类型校验。"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

from makler_media.core.exceptions import InputRejectedError
from makler_media.core.models import ImageAsset
from makler_media.processing.raster import create_image_asset

LOGGER = logging.getLogger(__name__)

MAX_FILES = 20
MAX_FILE_SIZE_MB = 50
SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/heic")

MIME_BY_SUFFIX = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
}


@dataclass(slots=True)
class UploadedFile:
    """外部应用交来的原始文件。"""

    name: str
    data: bytes
    mime_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


def guess_mime_type(name: str) -> Optional[str]:
    suffix = Path(name).suffix.lower()
    if suffix in MIME_BY_SUFFIX:
        return MIME_BY_SUFFIX[suffix]
    guessed, _ = mimetypes.guess_type(name)
    return guessed


def validate_uploads(
    files: Sequence[UploadedFile],
    *,
    max_files: int = MAX_FILES,
    max_file_size_mb: float = MAX_FILE_SIZE_MB,
    allowed_types: Iterable[str] = SUPPORTED_MIME_TYPES,
) -> None:
    """任一文件不满足限制时抛出 InputRejectedError，整批拒收。"""

    if len(files) > max_files:
        raise InputRejectedError(f"单次最多处理 {max_files} 张图片，收到 {len(files)} 张")

    allowed = set(allowed_types)
    limit_bytes = int(max_file_size_mb * 1024 * 1024)
    for upload in files:
        mime_type = upload.mime_type or guess_mime_type(upload.name)
        if mime_type not in allowed:
            raise InputRejectedError(f"不支持的文件类型: {upload.name} ({mime_type or '未知'})")
        if upload.size > limit_bytes:
            raise InputRejectedError(
                f"文件过大: {upload.name} ({upload.size / 1024 / 1024:.1f}MB > {max_file_size_mb}MB)"
            )


def accept_uploads(files: Sequence[UploadedFile]) -> list[ImageAsset]:
    """校验上传文件并创建 ImageAsset。

    无法解码的文件仍会被接收（尺寸记为 0），由流水线在该图片上记录 DecodeError，
    不影响同批次的其他图片。
    """

    validate_uploads(files)
    return [
        create_image_asset(upload.data, upload.name, upload.mime_type or guess_mime_type(upload.name), lenient=True)
        for upload in files
    ]
