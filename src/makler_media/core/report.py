"""批处理结果的 CSV 报告。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Mapping, Optional

from makler_media.core.models import BatchImageResult

HEADER = ["image_id", "image_name", "status", "output_path", "width", "height", "size", "error"]


def write_csv_report(
    results: Iterable[BatchImageResult],
    output_dir: Path,
    filename: str,
    output_paths: Optional[Mapping[str, Path]] = None,
) -> Path:
    """每张图片一行；失败或未写出的图片对应列留空。"""

    paths = dict(output_paths or {})
    report_path = output_dir / filename
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=HEADER)
        writer.writeheader()
        for result in results:
            writer.writerow(_row(result, paths.get(result.image_id)))
    return report_path


def _row(result: BatchImageResult, output_path: Optional[Path]) -> dict[str, object]:
    row: dict[str, object] = dict.fromkeys(HEADER, "")
    row.update(image_id=result.image_id, image_name=result.image_name, status=result.status)
    if output_path is not None:
        row["output_path"] = str(output_path)
    if result.processed is not None:
        row.update(width=result.processed.width, height=result.processed.height, size=result.processed.size)
    if result.error:
        row["error"] = result.error
    return row
