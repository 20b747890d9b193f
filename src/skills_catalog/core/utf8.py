"""
UTF-8 stdio 工具（CLI 入口用）。

说明：
- 在 `C` locale 下 stdout/stderr 可能为 ASCII，输出中文或 skill 正文时会触发 `UnicodeEncodeError`；
- 入口应尽早调用（在 argparse/help 或任何 print 之前）。
"""

from __future__ import annotations

import sys


def ensure_utf8_stdio() -> None:
    """best-effort 将 stdout/stderr reconfigure 为 UTF-8（失败时保持原状）。"""

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if not callable(reconfigure):
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace")
        except (OSError, ValueError):
            continue
