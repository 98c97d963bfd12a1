"""日志工具。"""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s"
LEVEL_ENV = "MAKLER_MEDIA_LOG_LEVEL"


def setup_logging(level: Optional[Union[int, str]] = None) -> None:
    """初始化项目日志配置；未指定级别时读取 MAKLER_MEDIA_LOG_LEVEL，默认 INFO。"""

    if level is None:
        level = os.environ.get(LEVEL_ENV, "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    # Pillow 的插件在 DEBUG 下会逐块输出解码细节。
    logging.getLogger("PIL").setLevel(max(level, logging.INFO))
