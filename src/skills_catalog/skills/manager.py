"""
SkillsManager（配置驱动 scan + strict mentions + 请求匹配/分发 + lint）。

说明：
- scan 阶段 metadata-only：只读 frontmatter，正文在注入时懒加载；
- 匹配与分发为确定性词法规则，不依赖外部模型或网络；
- 线程安全边界：scan/lint 在同一把锁内执行，其余读操作基于最近一次 scan 的不可变索引。
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import shutil
import threading
import time
from types import TracebackType
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple
import uuid

from skills_catalog.config.loader import SkillsConfig
from skills_catalog.core.errors import FrameworkError, FrameworkIssue, UserError
from skills_catalog.skills import manager_ops
from skills_catalog.skills.config_validator import build_sources_map, preflight, scan_options_from_config
from skills_catalog.skills.dependencies import make_dependency_lookup
from skills_catalog.skills.dispatcher import dispatch as _dispatch
from skills_catalog.skills.lint import lint_skills
from skills_catalog.skills.matcher import check_requirements as _check_requirements, match_skills
from skills_catalog.skills.mentions import SkillMention
from skills_catalog.skills.models import DispatchResult, MatchResult, RequirementCheck, ScanReport, Skill
from skills_catalog.skills.sources import scan_filesystem_source, scan_in_memory_source

WhichFn = Callable[[str], Optional[str]]


class SkillsManager:
    """Skills 管理器（catalog 的唯一入口）。"""

    def __init__(
        self,
        *,
        workspace_root: Path,
        skills_config: Optional[SkillsConfig | Dict[str, Any]] = None,
        in_memory_registry: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        environ: Optional[Mapping[str, str]] = None,
        which: Optional[WhichFn] = None,
    ) -> None:
        """创建 SkillsManager。

        参数：
        - `workspace_root`：工作区根目录（filesystem source 相对路径的锚点）
        - `skills_config`：skills 配置（对象或 dict；None 表示空 catalog）
        - `in_memory_registry`：in-memory source 注入注册表（namespace -> rows）
        - `environ`：requires.env 检查使用的环境变量映射（默认 `os.environ`）
        - `which`：requires.tools 检查使用的查找函数（默认 `shutil.which`）
        """
        self._workspace_root = Path(workspace_root).resolve()
        self._in_memory_registry = in_memory_registry or {}
        self._environ: Mapping[str, str] = os.environ if environ is None else environ
        self._which: WhichFn = which or shutil.which

        if isinstance(skills_config, dict):
            skills_config = SkillsConfig.model_validate(skills_config)
        self._skills_config: SkillsConfig = skills_config or SkillsConfig()

        self._scan_lock = threading.RLock()
        self._index: Optional[manager_ops.CatalogIndex] = None
        self._scan_cache: Optional[manager_ops.ScanCache] = None
        self._disabled_paths: Set[Path] = set()

    @staticmethod
    def _now_monotonic() -> float:
        return time.monotonic()

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    @property
    def skills_config(self) -> SkillsConfig:
        return self._skills_config

    @property
    def last_scan_report(self) -> Optional[ScanReport]:
        """
        最近一次 scan 的报告。

        `scan()` 因重名抛错时报告仍会先写入，CLI 用它在失败时输出 errors。
        """
        return self._index.report if self._index is not None else None

    # ---- scan internals（由 manager_ops 调用） ----

    def _cache_key(self) -> str:
        """scan 缓存 key：配置变化即失效。"""
        return json.dumps(self._skills_config.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))

    def _refresh_failed_warning(self, *, refresh_policy: str, reason: str) -> FrameworkIssue:
        return FrameworkIssue(
            code="SKILL_SCAN_REFRESH_FAILED",
            message="Skill scan refresh failed; returning cached result.",
            details={"level": "warning", "refresh_policy": refresh_policy, "reason": reason},
        )

    def _make_scan_report(
        self,
        *,
        skills: List[Skill],
        errors: List[FrameworkIssue],
        warnings: List[FrameworkIssue],
    ) -> ScanReport:
        return ScanReport(
            scan_id=f"scan_{uuid.uuid4().hex[:12]}",
            skills=skills,
            errors=errors,
            warnings=warnings,
            stats={
                "spaces_total": sum(1 for s in self._skills_config.spaces if s.enabled),
                "sources_total": len(build_sources_map(self._skills_config)),
                "skills_total": len(skills),
            },
        )

    def _scan_source(
        self,
        *,
        space: SkillsConfig.Space,
        source: SkillsConfig.Source,
        sink: List[Skill],
        errors: List[FrameworkIssue],
    ) -> None:
        """按 source.type 分发到对应扫描函数（类型已由配置校验保证受支持）。"""
        if source.type == "filesystem":
            scan_filesystem_source(
                workspace_root=self._workspace_root,
                scan_options=scan_options_from_config(self._skills_config),
                space=space,
                source=source,
                sink=sink,
                errors=errors,
            )
        elif source.type == "in-memory":
            scan_in_memory_source(
                in_memory_registry=self._in_memory_registry,
                space=space,
                source=source,
                sink=sink,
                errors=errors,
            )

    # ---- catalog ----

    def preflight(self) -> List[FrameworkIssue]:
        """对 skills 配置做零 I/O 预检（不触碰文件系统）。"""
        return preflight(self._skills_config)

    def scan(self, *, force_refresh: bool = False) -> ScanReport:
        """执行 skills scan 并返回 ScanReport（遵循 `scan.refresh_policy`）。"""
        return manager_ops.scan(self, force_refresh=force_refresh)

    def refresh(self) -> ScanReport:
        return self.scan(force_refresh=True)

    def _is_enabled(self, skill: Skill) -> bool:
        # 只有 filesystem skill 有 path，可被禁用
        return skill.path is None or skill.path not in self._disabled_paths

    def list_skills(self, *, enabled_only: bool = False) -> List[Skill]:
        """返回最近一次 scan 的 skills（未 scan 时为空）。"""

        if self._index is None:
            return []
        return [s for s in self._index.report.skills if not enabled_only or self._is_enabled(s)]

    def set_enabled(self, skill_path: Path, enabled: bool) -> None:
        """按 SKILL.md 路径启用/禁用（运行态过滤，不修改文件）。"""

        p = Path(skill_path).resolve()
        if self._index is None or p not in self._index.by_path:
            raise UserError(f"skill is not in the current scan: {p}", details={"path": str(p)})
        if enabled:
            self._disabled_paths.discard(p)
        else:
            self._disabled_paths.add(p)

    def get_skill(self, name: str, *, namespace: Optional[str] = None) -> Skill:
        """
        按名称查找 skill（尚未 scan 时先 scan）。

        规则：
        - 指定 namespace：精确匹配 (namespace, name)
        - 未指定：名称在 catalog 中唯一时返回，否则报 `SKILL_AMBIGUOUS_NAME`
        - 已禁用的 skill 视为不存在（`SKILL_UNKNOWN`）
        """

        if self._index is None:
            self.scan()
        index = self._index
        assert index is not None

        if namespace is not None:
            hit = index.by_key.get((namespace, name))
            candidates = [hit] if hit is not None else []
        else:
            candidates = index.by_name.get(name, [])
        candidates = [s for s in candidates if self._is_enabled(s)]

        if not candidates:
            raise FrameworkError(
                code="SKILL_UNKNOWN",
                message="Skill is not found in configured spaces.",
                details={"skill_name": name, "namespace": namespace},
            )
        if len(candidates) > 1:
            raise FrameworkError(
                code="SKILL_AMBIGUOUS_NAME",
                message="Skill name exists in more than one namespace; specify a namespace.",
                details={"skill_name": name, "namespaces": sorted(s.namespace for s in candidates)},
            )
        return candidates[0]

    def resolve_mentions(self, text: str) -> List[Tuple[Skill, SkillMention]]:
        """解析文本中的 `$[namespace].skill_name`（严格：任何一个无法解析即抛错）。"""
        return manager_ops.resolve_mentions(self, text)

    # ---- matcher / dispatcher / lint ----

    def check_requirements(self, skill: Skill) -> RequirementCheck:
        req = self._skills_config.requirements
        return _check_requirements(
            skill,
            lookup=make_dependency_lookup(self.list_skills(enabled_only=True)),
            environ=self._environ,
            which=self._which,
            available_mcp=req.available_mcp,
            check_tools=req.check_tools,
            check_env=req.check_env,
        )

    def match(self, request: str, *, limit: Optional[int] = None, include_skipped: bool = False) -> List[MatchResult]:
        """对请求做词法匹配，返回按得分排序的候选（只包含已启用 skills）。"""

        self.scan()
        return match_skills(
            self.list_skills(enabled_only=True),
            request,
            matching=self._skills_config.matching,
            requirements=self._skills_config.requirements,
            environ=self._environ,
            which=self._which,
            include_skipped=include_skipped,
            limit=limit,
        )

    def dispatch(self, request: str) -> DispatchResult:
        return _dispatch(self, request)

    def lint(self) -> List[FrameworkIssue]:
        """
        对 catalog 做一致性检查（不走 scan 缓存，也不因重名抛错）。

        返回：
        - errors 在前、warnings 在后的问题列表
        """

        with self._scan_lock:
            skills, errors = manager_ops.collect_skills(self)
        return lint_skills(skills, scan_errors=errors, skills_config=self._skills_config)

    # ---- rendering ----

    def render_injected_skill(self, skill: Skill) -> str:
        return manager_ops.render_injected_skill(self, skill)

    def render_skills_list(self) -> str:
        """渲染 `<available_skills>` 列表（供 agent prompt 嵌入）。"""

        self.scan()
        return manager_ops.render_skills_list(self.list_skills(enabled_only=True))

    def close(self) -> None:
        """丢弃 scan 结果与缓存。"""

        with self._scan_lock:
            self._index = None
            self._scan_cache = None

    def __enter__(self) -> "SkillsManager":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
