"""
Skills 文档一致性检查（lint）。

检查项：
- 扫描阶段的文档错误（缺 name/description、frontmatter 非法等）原样作为 error；
- 同一 namespace 内重名（error）；
- `requires.skills` 无法解析（error）与依赖环（error，含自依赖）；
- env 名称不符合 `^[A-Z_][A-Z0-9_]*$`、description 过短、skip_when 重复（warning）。

说明：
- lint 只收集问题，不抛错；warning 以 `details.level = "warning"` 标记。
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Sequence, Tuple

from skills_catalog.config.loader import SkillsConfig
from skills_catalog.core.errors import FrameworkIssue
from skills_catalog.skills.dependencies import find_dependency_cycles, make_dependency_lookup
from skills_catalog.skills.models import Skill

_ENV_NAME_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")


def _warning(code: str, message: str, **details) -> FrameworkIssue:
    """构造 warning 级别问题。"""

    return FrameworkIssue(code=code, message=message, details={"level": "warning", **details})


def _check_duplicates(skills: Sequence[Skill]) -> List[FrameworkIssue]:
    """同一 (namespace, skill_name) 出现多次。"""

    bucket: Dict[Tuple[str, str], List[Skill]] = {}
    for skill in skills:
        bucket.setdefault((skill.namespace, skill.skill_name), []).append(skill)

    issues: List[FrameworkIssue] = []
    for (namespace, skill_name), members in sorted(bucket.items()):
        if len(members) <= 1:
            continue
        issues.append(
            FrameworkIssue(
                code="SKILL_LINT_DUPLICATE_NAME",
                message="Duplicate skill name found in namespace.",
                details={
                    "namespace": namespace,
                    "skill_name": skill_name,
                    "locators": [s.locator for s in members],
                },
            )
        )
    return issues


def _check_dependencies(skills: Sequence[Skill]) -> List[FrameworkIssue]:
    """`requires.skills` 必须能解析到 catalog 内的 skill。"""

    lookup = make_dependency_lookup(skills)
    names: Dict[str, int] = {}
    for skill in skills:
        names[skill.skill_name] = names.get(skill.skill_name, 0) + 1

    issues: List[FrameworkIssue] = []
    for skill in skills:
        for dep_name in skill.requires.skills:
            if lookup(dep_name, skill) is not None:
                continue
            issues.append(
                FrameworkIssue(
                    code="SKILL_LINT_UNKNOWN_DEPENDENCY",
                    message="Skill depends on a skill that cannot be resolved.",
                    details={
                        "namespace": skill.namespace,
                        "skill_name": skill.skill_name,
                        "locator": skill.locator,
                        "dependency": dep_name,
                        "reason": "ambiguous" if names.get(dep_name, 0) > 1 else "not_found",
                    },
                )
            )

    for cycle in find_dependency_cycles(skills):
        names_in_cycle = [s.skill_name for s in cycle]
        issues.append(
            FrameworkIssue(
                code="SKILL_LINT_DEPENDENCY_CYCLE",
                message="Skill dependencies form a cycle.",
                details={
                    "namespace": cycle[0].namespace,
                    "cycle": [*names_in_cycle, names_in_cycle[0]],
                    "locators": [s.locator for s in cycle],
                },
            )
        )
    return issues


def _check_documents(skills: Iterable[Skill], *, min_description_chars: int) -> List[FrameworkIssue]:
    """单文档层面的 warning（env 名称、description 长度、skip_when 重复）。"""

    issues: List[FrameworkIssue] = []
    for skill in skills:
        where = {"namespace": skill.namespace, "skill_name": skill.skill_name, "locator": skill.locator}

        for env_name in skill.requires.env:
            if not _ENV_NAME_RE.match(env_name):
                issues.append(
                    _warning(
                        "SKILL_LINT_INVALID_ENV_NAME",
                        "Required environment variable name is not upper snake case.",
                        env=env_name,
                        **where,
                    )
                )

        if min_description_chars > 0 and len(skill.description) < min_description_chars:
            issues.append(
                _warning(
                    "SKILL_LINT_DESCRIPTION_TOO_SHORT",
                    "Skill description is too short to match reliably.",
                    actual_chars=len(skill.description),
                    min_chars=min_description_chars,
                    **where,
                )
            )

        # loader 已做精确去重；这里按大小写/空白不敏感再查一次
        seen: Dict[str, str] = {}
        for condition in skill.skip_when:
            folded = " ".join(condition.casefold().split())
            if folded in seen:
                issues.append(
                    _warning(
                        "SKILL_LINT_DUPLICATE_SKIP_WHEN",
                        "skip_when contains the same condition more than once.",
                        condition=condition,
                        first=seen[folded],
                        **where,
                    )
                )
            else:
                seen[folded] = condition
    return issues


def lint_skills(
    skills: Sequence[Skill],
    *,
    scan_errors: Sequence[FrameworkIssue] = (),
    skills_config: SkillsConfig | None = None,
) -> List[FrameworkIssue]:
    """
    对已收集的 skills 做一致性检查，返回 errors + warnings（errors 在前）。

    参数：
    - skills：收集到的 skills（允许包含重名，lint 负责报告）
    - scan_errors：收集阶段产生的文档/source 错误
    - skills_config：读取 `lint.min_description_chars`
    """

    cfg = skills_config or SkillsConfig()
    issues: List[FrameworkIssue] = list(scan_errors)
    issues.extend(_check_duplicates(skills))
    issues.extend(_check_dependencies(skills))
    issues.extend(_check_documents(skills, min_description_chars=int(cfg.lint.min_description_chars)))

    errors = [it for it in issues if not it.is_warning]
    warnings = [it for it in issues if it.is_warning]
    return [*errors, *warnings]
