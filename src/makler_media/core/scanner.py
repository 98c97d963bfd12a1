"""命令行输入的文件扫描：把文件与目录参数展开为图片路径列表。"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Sequence

from makler_media.core.intake import MIME_BY_SUFFIX, UploadedFile, guess_mime_type

IMAGE_EXTENSIONS = frozenset(MIME_BY_SUFFIX)


def _is_image(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS


def _expand(root: Path, recursive: bool) -> Iterator[Path]:
    """文件参数原样返回；目录按小写路径排序后返回其中的图片。"""

    if root.is_dir():
        pattern = "**/*" if recursive else "*"
        yield from sorted((p for p in root.glob(pattern) if _is_image(p)), key=lambda p: str(p).lower())
    elif _is_image(root):
        yield root


def collect_source_images(sources: Sequence[Path], *, recursive: bool = False) -> list[Path]:
    """按参数顺序展开并去重；同一文件只保留第一次出现的位置。"""

    seen: dict[Path, None] = {}
    for source in sources:
        for path in _expand(source.resolve(), recursive):
            seen.setdefault(path, None)
    return list(seen)


def read_uploads(paths: Sequence[Path]) -> list[UploadedFile]:
    """将磁盘文件读为 UploadedFile。"""

    return [UploadedFile(name=path.name, data=path.read_bytes(), mime_type=guess_mime_type(path.name)) for path in paths]
