"""
CLI 入口的 logging 初始化。

说明：
- 库代码只使用 `logging.getLogger(__name__)`，不做全局配置；
- 日志统一写 stderr，保证 stdout 只输出机器可读 JSON。
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

LOG_LEVEL_VAR = "SKILLS_CATALOG_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None, *, default: str = "WARNING") -> str:
    """
    配置 root logger（可重复调用：已有 handler 时只调整 level）。

    优先级：显式 level > `SKILLS_CATALOG_LOG_LEVEL` > default（通常来自配置 `logging.level`）。

    返回：
    - 实际生效的 level 名称
    """

    chosen = (level or os.getenv(LOG_LEVEL_VAR) or default or "WARNING").strip().upper()
    if chosen not in logging.getLevelNamesMapping():
        chosen = "WARNING"

    if logging.root.handlers:
        logging.root.setLevel(chosen)
    else:
        logging.basicConfig(level=chosen, format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger(__name__).debug("Logging level set to %s", chosen)
    return chosen
