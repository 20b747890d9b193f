"""
Skills 数据模型（Skill Descriptor + 扫描/匹配/分发结果）。

说明：
- `Skill` 在加载后不可变；正文只通过 `body_loader` 懒加载（scan 阶段 metadata-only）。
- 所有 `to_jsonable()` 投影都经过 JSON 清洗，保证 `json.dumps(..., allow_nan=False)` 不抛。
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from skills_catalog.core.errors import FrameworkIssue

REQUIREMENT_KINDS: Tuple[str, ...] = ("tools", "skills", "mcp", "env")


def unique_ordered(values: Iterable[str]) -> Tuple[str, ...]:
    """去重 + 保序（requires.* 与 skip_when 的规范化形态）。"""

    return tuple(dict.fromkeys(values))


@dataclass(frozen=True)
class SkillRequirements:
    """
    skill 的外部依赖声明（frontmatter `requires`）。

    字段（集合语义；按声明顺序去重存储）：
    - tools：需要的外部 CLI 工具
    - skills：依赖的其它 skill 名称
    - mcp：需要的外部服务集成
    - env：需要的环境变量
    """

    tools: Tuple[str, ...] = ()
    skills: Tuple[str, ...] = ()
    mcp: Tuple[str, ...] = ()
    env: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        """是否未声明任何依赖。"""

        return not (self.tools or self.skills or self.mcp or self.env)

    def with_env(self, extra_env: Iterable[str]) -> "SkillRequirements":
        """返回合并额外 env 依赖后的新对象（去重保序）。"""

        return SkillRequirements(
            tools=self.tools,
            skills=self.skills,
            mcp=self.mcp,
            env=unique_ordered([*self.env, *extra_env]),
        )

    def to_jsonable(self) -> Dict[str, List[str]]:
        """投影为 JSON 友好的 dict。"""

        return {kind: list(getattr(self, kind)) for kind in REQUIREMENT_KINDS}


@dataclass(frozen=True)
class Skill:
    """
    Skill 结构（加载后的稳定表示）。

    字段：
    - skill_name/description：来自 frontmatter（必填）
    - space_id/source_id/namespace：来源空间与命名信息
    - locator：跨 source 的稳定定位符（path/mem://...）
    - path：SKILL.md 的 canonical 路径（非 filesystem source 时为 None）
    - body_size：文档字节数（未知可为 None）
    - body_loader：懒加载正文函数（dispatch/show 时调用）
    - requires：外部依赖声明
    - skip_when：不应使用该 skill 的条件（有序）
    - metadata：frontmatter 的其它字段（fail-open）
    """

    space_id: str
    source_id: str
    namespace: str
    skill_name: str
    description: str
    locator: str
    path: Optional[Path]
    body_size: Optional[int]
    body_loader: Callable[[], str]
    requires: SkillRequirements = field(default_factory=SkillRequirements)
    skip_when: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    scope: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        """mention 形式的全名：`$[namespace].skill_name`。"""

        return f"$[{self.namespace}].{self.skill_name}"

    def to_metadata_dict(self) -> Dict[str, object]:
        """将 Skill 投影为可 JSON 序列化的 metadata-only 视图（不含正文）。"""

        metadata_obj: Dict[str, Any] = dict(self.metadata) if isinstance(self.metadata, Mapping) else {"value": self.metadata}
        metadata_obj.pop("body_markdown", None)

        return {
            "space_id": self.space_id,
            "source_id": self.source_id,
            "namespace": self.namespace,
            "skill_name": self.skill_name,
            "description": self.description,
            "locator": self.locator,
            "path": str(self.path) if self.path is not None else None,
            "body_size": self.body_size,
            "requires": self.requires.to_jsonable(),
            "skip_when": list(self.skip_when),
            "metadata": json_sanitize(metadata_obj),
            "scope": self.scope,
        }


@dataclass(frozen=True)
class ScanReport:
    """Skills 扫描报告（metadata-only）。"""

    scan_id: str
    skills: List[Skill]
    errors: List[FrameworkIssue]
    warnings: List[FrameworkIssue]
    stats: Dict[str, int]

    def to_jsonable(self) -> Dict[str, object]:
        """将 ScanReport 投影为可 JSON 序列化的只读视图（不读取正文）。"""

        return {
            "scan_id": self.scan_id,
            "skills": [s.to_metadata_dict() for s in self.skills],
            "errors": [issue_to_jsonable(it) for it in self.errors],
            "warnings": [issue_to_jsonable(it) for it in self.warnings],
            "stats": {str(k): _coerce_int(v) for k, v in (self.stats or {}).items()},
        }

    def __len__(self) -> int:
        return len(self.skills)

    def __iter__(self):
        return iter(self.skills)

    def __getitem__(self, index: int) -> Skill:
        return self.skills[index]


@dataclass(frozen=True)
class RequirementCheck:
    """requires.* 可用性检查结果（只记录缺失项）。"""

    missing_tools: Tuple[str, ...] = ()
    missing_env: Tuple[str, ...] = ()
    missing_skills: Tuple[str, ...] = ()
    missing_mcp: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not (self.missing_tools or self.missing_env or self.missing_skills or self.missing_mcp)

    def to_jsonable(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "missing_tools": list(self.missing_tools),
            "missing_env": list(self.missing_env),
            "missing_skills": list(self.missing_skills),
            "missing_mcp": list(self.missing_mcp),
        }


@dataclass(frozen=True)
class MatchResult:
    """一次请求匹配中某个 skill 的打分结果。"""

    skill: Skill
    score: float
    matched_terms: Tuple[str, ...]
    skip_reasons: Tuple[str, ...]
    requirements: RequirementCheck

    @property
    def skipped(self) -> bool:
        """命中任一 skip_when 条件即视为 skipped。"""

        return bool(self.skip_reasons)

    def to_jsonable(self) -> Dict[str, object]:
        return {
            "namespace": self.skill.namespace,
            "skill_name": self.skill.skill_name,
            "description": self.skill.description,
            "score": json_sanitize(self.score),
            "matched_terms": list(self.matched_terms),
            "skipped": self.skipped,
            "skip_reasons": list(self.skip_reasons),
            "requirements": self.requirements.to_jsonable(),
        }


@dataclass(frozen=True)
class DispatchedSkill:
    """被分发（注入）的 skill 及其选中原因：mention | match | dependency。"""

    skill: Skill
    reason: str
    mention_text: Optional[str] = None
    score: Optional[float] = None

    def to_jsonable(self) -> Dict[str, object]:
        return {
            "namespace": self.skill.namespace,
            "skill_name": self.skill.skill_name,
            "locator": self.skill.locator,
            "reason": self.reason,
            "mention_text": self.mention_text,
            "score": json_sanitize(self.score),
        }


@dataclass(frozen=True)
class DispatchResult:
    """dispatch 的输出：选中的 skills（依赖在前）+ 渲染后的注入文本。"""

    request: str
    selected: List[DispatchedSkill]
    warnings: List[FrameworkIssue]
    rendered: str

    def to_jsonable(self) -> Dict[str, object]:
        return {
            "request": self.request,
            "selected": [it.to_jsonable() for it in self.selected],
            "warnings": [issue_to_jsonable(it) for it in self.warnings],
            "rendered": self.rendered,
        }


def _coerce_int(value: Any) -> int:
    """将任意值尽力转换为 int（失败则返回 0）。"""

    if isinstance(value, float) and not math.isfinite(value):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def json_sanitize(value: Any, *, _depth: int = 0, _max_depth: int = 8, _stack: Optional[Set[int]] = None) -> Any:
    """
    将任意对象递归清洗为 JSON 兼容值（dict/list/str/int/float/bool/None）。

    关键规则：
    - float NaN/Inf 降级为字符串（避免 `allow_nan=False` 失败）
    - Path/bytes/date 等降级为字符串
    - dict key 强制转为 string，输出按 key 排序
    - set 转为排序后的 list（保证稳定输出）
    - 最大深度与循环引用保护
    """

    if _depth >= _max_depth:
        return "<max_depth_reached>"

    if value is None or isinstance(value, (bool, int, str)):
        return value

    if isinstance(value, float):
        if math.isfinite(value):
            return value
        if math.isnan(value):
            return "NaN"
        return "Infinity" if value > 0 else "-Infinity"

    if isinstance(value, Path):
        return str(value)

    if isinstance(value, bytes):
        return {"__type__": "bytes", "len": len(value)}

    stack = _stack if _stack is not None else set()
    value_id = id(value)
    if value_id in stack:
        return "<cycle>"

    if isinstance(value, (list, tuple, set, frozenset)):
        stack.add(value_id)
        try:
            items = [json_sanitize(v, _depth=_depth + 1, _max_depth=_max_depth, _stack=stack) for v in value]
        finally:
            stack.discard(value_id)
        if isinstance(value, (set, frozenset)):
            return sorted(items, key=repr)
        return items

    if isinstance(value, Mapping):
        stack.add(value_id)
        try:
            out = {
                str(k): json_sanitize(v, _depth=_depth + 1, _max_depth=_max_depth, _stack=stack)
                for k, v in value.items()
            }
        finally:
            stack.discard(value_id)
        return {k: out[k] for k in sorted(out)}

    # YAML 会把 `2024-01-01` 解析为 date；其余未知对象统一降级为字符串
    return str(value)


def issue_to_jsonable(issue: FrameworkIssue) -> Dict[str, object]:
    """将 FrameworkIssue 投影为可 JSON 序列化结构（details 做清洗）。"""

    details = issue.details if isinstance(issue.details, Mapping) else {"value": issue.details}
    return {"code": issue.code, "message": issue.message, "details": json_sanitize(details)}
