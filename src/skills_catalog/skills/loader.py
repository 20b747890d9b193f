"""
SKILL.md 解析。

文档以 YAML frontmatter 开头：

    ---
    name: docker-optimize
    description: Use when the user asks to shrink or speed up a Docker image.
    requires:
      tools: [docker]
      skills: [docker-basics]
      mcp: zen
      env: [DOCKER_HOST]
    skip_when:
      - the project has no Dockerfile
    ---

除 name/description/requires/skip_when 以外的键原样进入 `metadata`。
同目录下 `agents/openai.yaml` 中 `type: env_var` 的依赖会并入 `requires.env`。
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from skills_catalog.skills.models import REQUIREMENT_KINDS, Skill, SkillRequirements, unique_ordered

logger = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"
_FENCE = "---"
_CORE_KEYS = frozenset({"name", "description", "requires", "skip_when"})


class SkillLoadError(Exception):
    """SKILL.md 无法解析；`message` 是写入 scan 报告 `reason` 的稳定原因串。"""

    def __init__(self, message: str, path: Path) -> None:
        super().__init__(f"{message} ({path})")
        self.message = message
        self.path = path


@dataclass(frozen=True)
class SkillMetadata:
    """metadata-only 扫描的产物（不含正文）。"""

    skill_name: str
    description: str
    requires: SkillRequirements
    skip_when: Tuple[str, ...]
    metadata: Dict[str, Any]
    scope: str | None = None


def _squash(text: str) -> str:
    return " ".join(str(text).split())


def _take_frontmatter(lines: Iterable[str], *, path: Path, max_bytes: Optional[int]) -> Dict[str, Any]:
    """
    从行迭代器中消费 frontmatter（到闭合的 `---` 为止）。

    迭代器中剩余的行即正文，调用方可以继续消费或直接丢弃。
    `max_bytes` 为 None 时不限制大小。
    """

    remaining = max_bytes
    opened = False
    block: List[str] = []
    for line in lines:
        if remaining is not None:
            remaining -= len(line.encode("utf-8"))
            if remaining < 0:
                raise SkillLoadError("frontmatter_too_large", path)
        if not opened:
            if line.strip() != _FENCE:
                raise SkillLoadError("frontmatter_missing", path)
            opened = True
        elif line.strip() == _FENCE:
            return _yaml_mapping("".join(block), path=path)
        else:
            block.append(line)
    raise SkillLoadError("frontmatter_unterminated" if opened else "frontmatter_missing", path)


def _yaml_mapping(text: str, *, path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SkillLoadError(f"frontmatter_yaml_invalid: {exc}", path) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SkillLoadError("frontmatter_not_mapping", path)
    return data


def _openai_env_vars(skill_dir: Path) -> Tuple[str, ...]:
    """`agents/openai.yaml` 声明的 env_var 依赖；文件缺失或无法解析时为空。"""

    p = skill_dir / "agents" / "openai.yaml"
    if not p.is_file():
        return ()
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError):
        logger.debug("Ignoring unreadable %s", p, exc_info=True)
        return ()

    deps = doc.get("dependencies") if isinstance(doc, dict) else None
    tools = deps.get("tools") if isinstance(deps, dict) else None
    if not isinstance(tools, list):
        return ()
    return unique_ordered(
        item["value"]
        for item in tools
        if isinstance(item, dict) and item.get("type") == "env_var" and isinstance(item.get("value"), str) and item["value"]
    )


def parse_string_list(value: Any, *, field: str, path: Path) -> List[str]:
    """`str | list[str] | None` -> list[str]（空白折叠，空项丢弃）；其它形态报 `<field>_invalid`。"""

    if value is None:
        return []
    items = [value] if isinstance(value, str) else value
    if not isinstance(items, list) or not all(isinstance(item, str) for item in items):
        raise SkillLoadError(f"{field}_invalid", path)
    return [text for text in map(_squash, items) if text]


def parse_requires(raw: Any, *, path: Path) -> SkillRequirements:
    """
    解析 `requires`：mapping，键限定为 tools/skills/mcp/env，值为字符串或字符串列表。
    """

    if raw is None:
        return SkillRequirements()
    if not isinstance(raw, dict):
        raise SkillLoadError("requires_invalid", path)
    unknown = sorted(str(k) for k in raw if k not in REQUIREMENT_KINDS)
    if unknown:
        raise SkillLoadError(f"requires_unknown_keys: {','.join(unknown)}", path)
    return SkillRequirements(
        **{kind: unique_ordered(parse_string_list(raw.get(kind), field="requires", path=path)) for kind in REQUIREMENT_KINDS}
    )


def _required_text(fm: Dict[str, Any], key: str, *, path: Path) -> str:
    value = fm.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SkillLoadError(f"frontmatter 缺少必填字段 {key}", path)
    return value.strip()


def _metadata_from_frontmatter(fm: Dict[str, Any], *, path: Path, scope: str | None) -> SkillMetadata:
    name = _required_text(fm, "name", path=path)
    description = _required_text(fm, "description", path=path)
    if len(name.split()) != 1:
        raise SkillLoadError("frontmatter 字段 name 非法（不得包含空白）", path)

    requires = parse_requires(fm.get("requires"), path=path).with_env(_openai_env_vars(path.parent))
    skip_when = unique_ordered(parse_string_list(fm.get("skip_when"), field="skip_when", path=path))

    extra = {k: v for k, v in fm.items() if k not in _CORE_KEYS}
    nested = extra.get("metadata")
    if isinstance(nested, dict) and isinstance(nested.get("short-description"), str):
        extra["metadata"] = {**nested, "short-description": _squash(nested["short-description"])}

    return SkillMetadata(
        skill_name=name,
        description=_squash(description),
        requires=requires,
        skip_when=skip_when,
        metadata=extra,
        scope=scope,
    )


def _skill_file(path: Path) -> Path:
    p = Path(path).resolve()
    if p.name != SKILL_FILENAME:
        raise SkillLoadError("文件名必须为 SKILL.md", p)
    if not p.is_file():
        raise SkillLoadError("SKILL.md 不存在或不是文件", p)
    return p


def load_skill_metadata_from_path(
    path: Path,
    *,
    scope: str | None = None,
    max_frontmatter_bytes: int = 65536,
) -> SkillMetadata:
    """只读 frontmatter（逐行读到闭合 `---`），不读取正文。"""

    p = _skill_file(path)
    with p.open("r", encoding="utf-8") as fh:
        fm = _take_frontmatter(fh, path=p, max_bytes=max(1, int(max_frontmatter_bytes)))
    return _metadata_from_frontmatter(fm, path=p, scope=scope)


def load_skill_from_path(path: Path, *, scope: str | None = None) -> Skill:
    """
    一次性读取整个 SKILL.md 并构造独立 Skill（不属于任何 space）。

    正文 markdown 额外放在 `metadata["body_markdown"]`，便于单文件校验。
    """

    p = _skill_file(path)
    raw = p.read_text(encoding="utf-8")
    lines = iter(raw.splitlines(keepends=True))
    meta = _metadata_from_frontmatter(_take_frontmatter(lines, path=p, max_bytes=None), path=p, scope=scope)
    body = "".join(lines)

    return Skill(
        space_id="",
        source_id="",
        namespace="",
        skill_name=meta.skill_name,
        description=meta.description,
        locator=str(p),
        path=p,
        body_size=len(raw.encode("utf-8")),
        body_loader=lambda: raw,
        requires=meta.requires,
        skip_when=meta.skip_when,
        metadata={"body_markdown": body, **meta.metadata},
        scope=scope,
    )
