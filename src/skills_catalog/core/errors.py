"""
错误模型。

- `FrameworkIssue`：scan/lint/preflight 报告里的一条问题；`details.level == "warning"` 为 warning，否则为 error；
- `FrameworkError`：严格操作（mention 解析、dispatch、依赖解析、重名检查）直接抛出；
- `code` 是稳定的英文大写下划线错误码，CLI 输出与测试断言都以它为准。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class CatalogError(Exception):
    """skills-catalog 异常基类。"""


@dataclass(frozen=True)
class FrameworkIssue:
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_warning(self) -> bool:
        return isinstance(self.details, dict) and self.details.get("level") == "warning"


class FrameworkError(CatalogError):
    """带 `code/message/details` 的结构化异常。"""

    def __init__(self, *, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """转换为 `FrameworkIssue`（用于写入报告或 CLI 输出）。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """调用方传入了无效参数（例如对未扫描到的 skill 调用 `set_enabled`）。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(code=code, message=message, details=details)
