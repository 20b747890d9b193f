"""
请求匹配（Matcher）：对自由文本请求做词法打分，并应用 skip_when 与 requires 检查。

打分规则（确定性，无外部模型）：
- 请求与 skill 名称/描述分别切词（小写、去停用词、轻量单复数归一）；
- score = name_weight * |请求词 ∩ 名称词| + description_weight * |请求词 ∩ 描述词|
  + exact_name_bonus（请求中出现完整名称，`-`/`_` 视为空格）；
- 结果按 (-score, skill_name, namespace) 排序。

skip_when 规则：
- 条件原文（小写）出现在请求中，或条件的全部内容词都出现在请求词中，即视为命中。
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from typing import Callable, Collection, Iterable, List, Mapping, Optional, Sequence, Tuple

from skills_catalog.config.loader import SkillsConfig
from skills_catalog.skills.dependencies import DependencyLookup, make_dependency_lookup
from skills_catalog.skills.models import MatchResult, RequirementCheck, Skill, unique_ordered

logger = logging.getLogger(__name__)

_TERM_RE = re.compile(r"[a-z0-9]+[+#]*")

# 否定词（no/not/without）刻意不在停用词里：skip_when 条件常依赖它们
STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "could", "do", "does", "for", "from",
        "has", "have", "help", "how", "i", "if", "in", "into", "is", "it", "its", "me", "my", "of",
        "on", "or", "our", "please", "should", "so", "some", "that", "the", "their", "them", "then",
        "there", "these", "this", "to", "up", "us", "use", "used", "user", "uses", "using", "want",
        "was", "we", "what", "when", "which", "while", "who", "why", "will", "with", "would", "you",
        "your",
    }
)

WhichFn = Callable[[str], Optional[str]]


def _normalize_term(term: str) -> str:
    """轻量单复数归一（dependencies -> dependency，images -> image）。"""

    if len(term) > 4 and term.endswith("ies"):
        return term[:-3] + "y"
    if len(term) > 3 and term.endswith("s") and not term.endswith("ss"):
        return term[:-1]
    return term


def tokenize(text: str, extra_stopwords: Iterable[str] = ()) -> Tuple[str, ...]:
    """把文本切为内容词（小写、长度 >= 2、去停用词、去重保序）。"""

    if not text:
        return ()
    stop = STOPWORDS | {s.lower() for s in extra_stopwords}
    out: List[str] = []
    for raw in _TERM_RE.findall(text.lower()):
        if len(raw) < 2 or raw in stop:
            continue
        out.append(_normalize_term(raw))
    return unique_ordered(out)


def _phrase_text(text: str) -> str:
    """把 `-`/`_` 视为空格并折叠空白（用于名称整体命中与 skip_when 原文匹配）。"""

    return " ".join(re.sub(r"[-_]+", " ", text.lower()).split())


def _contains_phrase(haystack: str, phrase: str) -> bool:
    """phrase 是否以完整词边界出现在 haystack 中。"""

    if not phrase:
        return False
    return re.search(rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])", haystack) is not None


def skip_reasons(skill: Skill, request: str, extra_stopwords: Iterable[str] = ()) -> Tuple[str, ...]:
    """返回请求命中的 skip_when 条件（保持声明顺序）。"""

    if not skill.skip_when or not request:
        return ()
    request_phrase = _phrase_text(request)
    request_terms = set(tokenize(request, extra_stopwords))
    hits: List[str] = []
    for condition in skill.skip_when:
        if _contains_phrase(request_phrase, _phrase_text(condition)):
            hits.append(condition)
            continue
        condition_terms = tokenize(condition, extra_stopwords)
        if condition_terms and all(t in request_terms for t in condition_terms):
            hits.append(condition)
    return tuple(hits)


def check_requirements(
    skill: Skill,
    *,
    lookup: DependencyLookup,
    environ: Mapping[str, str],
    which: WhichFn = shutil.which,
    available_mcp: Collection[str] = (),
    check_tools: bool = True,
    check_env: bool = True,
) -> RequirementCheck:
    """
    检查 skill 的 requires.* 在当前环境是否满足。

    说明：
    - tools：按 PATH 查找（`which`）
    - env：变量存在且非空
    - skills：`lookup` 能解析该名称（同 namespace 优先，否则全局唯一）
    - mcp：名称出现在配置的 available_mcp 中
    """

    req = skill.requires
    missing_tools = tuple(t for t in req.tools if check_tools and not which(t))
    missing_env = tuple(e for e in req.env if check_env and not environ.get(e))
    missing_skills = tuple(s for s in req.skills if lookup(s, skill) is None)
    missing_mcp = tuple(m for m in req.mcp if m not in available_mcp)
    return RequirementCheck(
        missing_tools=missing_tools,
        missing_env=missing_env,
        missing_skills=missing_skills,
        missing_mcp=missing_mcp,
    )


def score_skill(
    skill: Skill,
    *,
    request_terms: Sequence[str],
    request_text: str,
    matching: SkillsConfig.Matching,
) -> Tuple[float, Tuple[str, ...]]:
    """计算单个 skill 的得分与命中词（命中词按请求词顺序）。"""

    extra = matching.stopwords_extra
    name_terms = set(tokenize(_phrase_text(skill.skill_name), extra))
    desc_terms = set(tokenize(skill.description, extra))

    name_hits = [t for t in request_terms if t in name_terms]
    desc_hits = [t for t in request_terms if t in desc_terms]

    score = matching.name_weight * len(name_hits) + matching.description_weight * len(desc_hits)
    lowered = " ".join(request_text.lower().split())
    if _contains_phrase(_phrase_text(request_text), _phrase_text(skill.skill_name)) or _contains_phrase(lowered, skill.skill_name.lower()):
        score += matching.exact_name_bonus

    matched = tuple(t for t in request_terms if t in name_terms or t in desc_terms)
    return float(score), matched


def match_skills(
    skills: Sequence[Skill],
    request: str,
    *,
    matching: SkillsConfig.Matching,
    requirements: SkillsConfig.Requirements,
    environ: Optional[Mapping[str, str]] = None,
    which: WhichFn = shutil.which,
    include_skipped: bool = False,
    limit: Optional[int] = None,
) -> List[MatchResult]:
    """
    对 skills 按请求打分并过滤。

    规则：
    - 得分为 0 或低于 min_score 的 skill 不进入结果
    - 命中 skip_when 的 skill 默认剔除（include_skipped=True 时保留并标记）
    - 结果截断为 limit（缺省为 matching.max_results）
    """

    request = request or ""
    request_terms = tokenize(request, matching.stopwords_extra)
    if not request_terms:
        return []

    env = environ if environ is not None else os.environ
    lookup = make_dependency_lookup(skills)

    results: List[MatchResult] = []
    for skill in skills:
        score, matched = score_skill(skill, request_terms=request_terms, request_text=request, matching=matching)
        if score <= 0 or score < matching.min_score:
            continue
        reasons = skip_reasons(skill, request, matching.stopwords_extra)
        if reasons and not include_skipped:
            logger.debug("Skill %s skipped by skip_when: %s", skill.qualified_name, reasons)
            continue
        check = check_requirements(
            skill,
            lookup=lookup,
            environ=env,
            which=which,
            available_mcp=requirements.available_mcp,
            check_tools=requirements.check_tools,
            check_env=requirements.check_env,
        )
        results.append(
            MatchResult(
                skill=skill,
                score=score,
                matched_terms=matched,
                skip_reasons=reasons,
                requirements=check,
            )
        )

    results.sort(key=lambda r: (-r.score, r.skill.skill_name, r.skill.namespace))
    max_results = int(limit) if limit is not None and limit >= 1 else int(matching.max_results)
    logger.debug("Matched %d skill(s) for request terms %s", len(results), list(request_terms))
    return results[:max_results]
