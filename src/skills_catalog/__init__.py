"""
skills-catalog（Python）。

说明：
- Skill Catalog：扫描 `SKILL.md` frontmatter（name/description/requires/skip_when），metadata-only；
- Matcher：对自由文本请求做确定性词法打分，应用 skip_when 与 requires 检查；
- Dispatcher：mention 优先、匹配兜底，按依赖顺序渲染注入文本；
- Lint：文档一致性检查（必填字段、依赖可解析、名称唯一）。
"""

from __future__ import annotations

from skills_catalog.core.errors import FrameworkError, FrameworkIssue, UserError
from skills_catalog.skills.manager import SkillsManager

__all__ = ["FrameworkError", "FrameworkIssue", "SkillsManager", "UserError", "__version__"]

__version__ = "0.1.0"
