"""
Dispatcher：把请求映射为要注入的 skills，并渲染其正文。

选择顺序：
1. 请求中含显式 mention（`$[namespace].skill_name`）：严格解析，全部注入；
   mention 全部指向已禁用 skill 时返回空选择（SKILL_MENTION_DISABLED），不再回退到匹配；
2. 否则取 Matcher 的最佳非 skipped 结果（若有）；
3. `injection.include_dependencies` 时按依赖顺序前置 `requires.skills`；
4. 按 `requirements.missing_policy` 处理依赖缺失（warn/skip_skill/fail_fast）；
5. 逐个渲染（lazy-load body + max_bytes 校验）。
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from skills_catalog.core.errors import FrameworkError, FrameworkIssue
from skills_catalog.skills.dependencies import make_dependency_lookup, resolve_dependency_order
from skills_catalog.skills.mentions import extract_skill_mentions
from skills_catalog.skills.models import DispatchedSkill, DispatchResult, RequirementCheck, Skill

logger = logging.getLogger(__name__)


def _select_roots(manager, request: str, warnings: List[FrameworkIssue]) -> List[DispatchedSkill]:
    """按 mention 优先、match 兜底选出根 skills。"""

    resolved = manager.resolve_mentions(request)
    if resolved:
        return [DispatchedSkill(skill=skill, reason="mention", mention_text=mention.mention_text) for skill, mention in resolved]

    mentions = extract_skill_mentions(request)
    if mentions:
        warnings.append(
            FrameworkIssue(
                code="SKILL_MENTION_DISABLED",
                message="Every mentioned skill is disabled.",
                details={"level": "warning", "mentions": [m.mention_text for m in mentions]},
            )
        )
        return []

    for result in manager.match(request, limit=1):
        if result.skipped:
            continue
        return [DispatchedSkill(skill=result.skill, reason="match", score=result.score)]
    return []


def _with_dependencies(manager, roots: List[DispatchedSkill]) -> List[DispatchedSkill]:
    """前置传递依赖（依赖在前，每个 skill 只出现一次）。"""

    skills = manager.list_skills(enabled_only=True)
    ordered = resolve_dependency_order([it.skill for it in roots], make_dependency_lookup(skills))
    by_key: Dict[Tuple[str, str], DispatchedSkill] = {(it.skill.namespace, it.skill.skill_name): it for it in roots}
    return [by_key.get((s.namespace, s.skill_name)) or DispatchedSkill(skill=s, reason="dependency") for s in ordered]


def _requirements_issue(skill: Skill, check: RequirementCheck, *, policy: str) -> FrameworkIssue:
    """构造依赖缺失问题（warn/skip_skill 作为 warning 返回）。"""

    return FrameworkIssue(
        code="SKILL_REQUIREMENTS_MISSING",
        message="Skill requirements are not satisfied in this environment.",
        details={
            "level": "warning",
            "namespace": skill.namespace,
            "skill_name": skill.skill_name,
            "policy": policy,
            **check.to_jsonable(),
        },
    )


def dispatch(manager, request: str) -> DispatchResult:
    """
    执行一次分发（见模块说明）。

    异常：
    - FrameworkError：mention 解析失败、依赖未知/成环、fail_fast 策略下依赖缺失、正文读取失败/超限
    """

    cfg = manager.skills_config
    warnings: List[FrameworkIssue] = []

    selected = _select_roots(manager, request, warnings)
    if not selected:
        if warnings:
            return DispatchResult(request=request, selected=[], warnings=warnings, rendered="")
        warnings.append(
            FrameworkIssue(
                code="SKILL_NO_MATCH",
                message="No skill matched the request.",
                details={"level": "warning", "request": request},
            )
        )
        return DispatchResult(request=request, selected=[], warnings=warnings, rendered="")

    if cfg.injection.include_dependencies:
        selected = _with_dependencies(manager, selected)

    policy = cfg.requirements.missing_policy
    kept: List[DispatchedSkill] = []
    for item in selected:
        check = manager.check_requirements(item.skill)
        if check.ok:
            kept.append(item)
            continue
        issue = _requirements_issue(item.skill, check, policy=policy)
        if policy == "fail_fast":
            details = dict(issue.details)
            details.pop("level", None)
            raise FrameworkError(code=issue.code, message=issue.message, details=details)
        warnings.append(issue)
        if policy == "skip_skill":
            logger.info("Dropping skill %s: requirements missing", item.skill.qualified_name)
            continue
        kept.append(item)

    rendered = "\n\n".join(manager.render_injected_skill(item.skill) for item in kept)
    logger.info("Dispatched %d skill(s): %s", len(kept), [it.skill.qualified_name for it in kept])
    return DispatchResult(request=request, selected=kept, warnings=warnings, rendered=rendered)
