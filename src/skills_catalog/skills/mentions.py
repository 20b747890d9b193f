"""
显式 mention：请求文本中的 `$[namespace].skill_name`。

- namespace 规则与 `skills.spaces[].namespace` 相同（见 `config.loader.namespace_is_valid`）；
- skill_name 为 2..64 位 slug，字符集 `[a-z0-9_-]`，首尾为字母数字。
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Dict, List, Tuple

from skills_catalog.config.loader import namespace_is_valid

_NS_SEGMENT = r"[a-z0-9][a-z0-9-]{0,62}[a-z0-9]"
_SLUG = r"[a-z0-9][a-z0-9_-]{0,62}[a-z0-9]"
_MENTION_RE = re.compile(
    rf"\$\[(?P<namespace>{_NS_SEGMENT}(?::{_NS_SEGMENT}){{0,6}})\]\.(?P<skill_name>{_SLUG})(?=(?P<next>.?))",
    re.DOTALL,
)
_SLUG_RE = re.compile(_SLUG)
# mention 之后紧跟这些字符时整体作废：slug 字符说明名称超长被截断；`]` 多为括号错位
_INVALID_FOLLOWERS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789_-]")


@dataclass(frozen=True)
class SkillMention:
    """一次合法 mention。"""

    namespace: str
    skill_name: str
    mention_text: str


def extract_skill_mentions(text: str) -> List[SkillMention]:
    """
    提取文本中的 mentions（按首次出现顺序去重）。

    解析是容错的：不合法的片段当作普通文本，不抛错。
    """

    found: Dict[Tuple[str, str], SkillMention] = {}
    for m in _MENTION_RE.finditer(text or ""):
        if m.group("next") in _INVALID_FOLLOWERS:
            continue
        key = (m.group("namespace"), m.group("skill_name"))
        if key not in found:
            found[key] = SkillMention(namespace=key[0], skill_name=key[1], mention_text=m.group(0))
    return list(found.values())


def is_valid_namespace(value: Any) -> bool:
    return namespace_is_valid(value)


def is_valid_skill_name_slug(value: Any) -> bool:
    """frontmatter name 能否被 mention 引用。"""

    return isinstance(value, str) and _SLUG_RE.fullmatch(value) is not None
