"""
skills 配置的静态检查。

- `validate_and_normalize_config`：scan 前必须满足的条件（source 类型可用、space 引用的 source 存在）；
- `preflight`：零 I/O 的完整检查，不访问文件系统、不读取环境变量内容，供 CLI `skills preflight` 使用。

两者都是纯函数，不依赖 SkillsManager 实例。
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Tuple

from skills_catalog.config.loader import SkillsConfig
from skills_catalog.core.errors import FrameworkIssue
from skills_catalog.skills.mentions import is_valid_namespace
from skills_catalog.skills.sources import SUPPORTED_SOURCE_TYPES

_MCP_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")
_REQUIRED_SOURCE_OPTION = {"filesystem": "root", "in-memory": "namespace"}


def scan_options_from_config(skills_config: SkillsConfig) -> Dict[str, int | bool]:
    """source 扫描函数使用的 scan 参数（plain dict）。"""

    return skills_config.scan.model_dump(include={"ignore_dot_entries", "max_depth", "max_dirs_per_root", "max_frontmatter_bytes"})


def build_sources_map(skills_config: SkillsConfig) -> Dict[str, SkillsConfig.Source]:
    """source id -> source；id 重复时后定义的生效（preflight 会单独报告重复）。"""

    return {source.id: source for source in skills_config.sources}


def validate_and_normalize_config(skills_config: SkillsConfig) -> Tuple[SkillsConfig, List[FrameworkIssue]]:
    """返回 (按 id 去重 sources 后的配置副本, 阻断 scan 的错误)。"""

    sources_map = build_sources_map(skills_config)
    normalized = skills_config.model_copy(update={"sources": list(sources_map.values())})

    errors = [
        FrameworkIssue(
            code="SKILL_SCAN_METADATA_INVALID",
            message="Skill source type is invalid.",
            details={"source_id": source.id, "source_type": source.type},
        )
        for source in normalized.sources
        if source.type not in SUPPORTED_SOURCE_TYPES
    ]
    errors.extend(
        FrameworkIssue(
            code="SKILL_SCAN_METADATA_INVALID",
            message="Space references an unknown source id.",
            details={"space_id": space.id, "source_id": source_id},
        )
        for space in normalized.spaces
        for source_id in space.sources
        if source_id not in sources_map
    )
    return normalized, errors


class _Preflight:
    """按固定顺序收集问题；每条问题的 `details.path` 指向出问题的配置字段。"""

    def __init__(self, skills_config: SkillsConfig) -> None:
        self.cfg = skills_config
        self.issues: List[FrameworkIssue] = []

    def add(self, code: str, message: str, path: str, *, warning: bool = False, **details: Any) -> None:
        payload: Dict[str, Any] = {"path": path}
        if warning:
            payload["level"] = "warning"
        payload.update(details)
        self.issues.append(FrameworkIssue(code=code, message=message, details=payload))

    def check_spaces(self) -> None:
        first_index: Dict[str, int] = {}
        for idx, space in enumerate(self.cfg.spaces):
            if space.id in first_index:
                self.add(
                    "SKILL_CONFIG_DUPLICATE_SPACE_ID",
                    "Duplicate skills space id found.",
                    f"skills.spaces[{idx}].id",
                    space_id=space.id,
                    first_index=first_index[space.id],
                )
            else:
                first_index[space.id] = idx

            if not is_valid_namespace(space.namespace):
                self.add(
                    "SKILL_CONFIG_INVALID_SPACE_NAMESPACE",
                    "Invalid skills space namespace.",
                    f"skills.spaces[{idx}].namespace",
                    space_id=space.id,
                    actual=space.namespace,
                )

            if not space.sources:
                self.add(
                    "SKILL_CONFIG_SPACE_WITHOUT_SOURCES",
                    "Skills space has no sources and will never contribute skills.",
                    f"skills.spaces[{idx}].sources",
                    warning=True,
                    space_id=space.id,
                )

    def check_namespaces(self) -> None:
        owner: Dict[str, str] = {}
        for idx, space in enumerate(self.cfg.spaces):
            if not space.enabled:
                continue
            if space.namespace not in owner:
                owner[space.namespace] = space.id
                continue
            self.add(
                "SKILL_CONFIG_DUPLICATE_NAMESPACE",
                "Multiple enabled spaces share a namespace; skill names may collide.",
                f"skills.spaces[{idx}].namespace",
                warning=True,
                space_id=space.id,
                first_space_id=owner[space.namespace],
                namespace=space.namespace,
            )

    def check_sources(self) -> None:
        first_index: Dict[str, int] = {}
        for idx, source in enumerate(self.cfg.sources):
            if source.id in first_index:
                self.add(
                    "SKILL_CONFIG_DUPLICATE_SOURCE_ID",
                    "Duplicate skills source id found.",
                    f"skills.sources[{idx}].id",
                    source_id=source.id,
                    first_index=first_index[source.id],
                )
            else:
                first_index[source.id] = idx

            option = _REQUIRED_SOURCE_OPTION.get(source.type)
            if option is None:
                self.add(
                    "SKILL_CONFIG_UNSUPPORTED_SOURCE_TYPE",
                    "Unsupported skills source type.",
                    f"skills.sources[{idx}].type",
                    source_id=source.id,
                    actual=source.type,
                    supported=sorted(SUPPORTED_SOURCE_TYPES),
                )
                continue

            value = source.options.get(option)
            if not isinstance(value, str) or not value.strip():
                self.add(
                    "SKILL_CONFIG_MISSING_SOURCE_OPTION",
                    "Skills source is missing a required option.",
                    f"skills.sources[{idx}].options.{option}",
                    source_id=source.id,
                    source_type=source.type,
                    option=option,
                )

    def check_source_refs(self) -> None:
        known = {source.id for source in self.cfg.sources}
        for sidx, space in enumerate(self.cfg.spaces):
            for ridx, ref in enumerate(space.sources):
                if ref in known:
                    continue
                self.add(
                    "SKILL_CONFIG_UNKNOWN_SOURCE_REF",
                    "Space references an unknown source id.",
                    f"skills.spaces[{sidx}].sources[{ridx}]",
                    space_id=space.id,
                    source_id=ref,
                )

    def check_mcp_names(self) -> None:
        for idx, name in enumerate(self.cfg.requirements.available_mcp):
            if isinstance(name, str) and _MCP_NAME_RE.fullmatch(name):
                continue
            self.add(
                "SKILL_CONFIG_INVALID_MCP_NAME",
                "Invalid MCP integration name.",
                f"skills.requirements.available_mcp[{idx}]",
                actual=name,
            )


def preflight(skills_config: SkillsConfig) -> List[FrameworkIssue]:
    """零 I/O 静态检查；warning 以 `details.level = "warning"` 标记。"""

    checker = _Preflight(skills_config)
    checker.check_spaces()
    checker.check_namespaces()
    checker.check_sources()
    checker.check_source_refs()
    checker.check_mcp_names()
    return checker.issues
