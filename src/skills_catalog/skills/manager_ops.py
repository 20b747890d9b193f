"""
Scan, mention resolution and rendering for `SkillsManager`.

Kept as module-level functions taking the manager so the class stays a thin
facade; none of these are part of the public API.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from skills_catalog.core.errors import FrameworkError, FrameworkIssue
from skills_catalog.skills.config_validator import build_sources_map, validate_and_normalize_config
from skills_catalog.skills.mentions import SkillMention, extract_skill_mentions
from skills_catalog.skills.models import ScanReport, Skill

logger = logging.getLogger(__name__)

SkillKey = Tuple[str, str]


@dataclass(frozen=True)
class CatalogIndex:
    """One scan's report plus the lookup tables built from it."""

    report: ScanReport
    by_key: Dict[SkillKey, Skill] = field(default_factory=dict)
    by_path: Dict[Path, Skill] = field(default_factory=dict)
    by_name: Dict[str, List[Skill]] = field(default_factory=dict)

    @classmethod
    def from_report(cls, report: ScanReport) -> "CatalogIndex":
        by_name: Dict[str, List[Skill]] = {}
        for skill in report.skills:
            by_name.setdefault(skill.skill_name, []).append(skill)
        return cls(
            report=report,
            by_key={(s.namespace, s.skill_name): s for s in report.skills},
            by_path={s.path: s for s in report.skills if s.path is not None},
            by_name=by_name,
        )


@dataclass(frozen=True)
class ScanCache:
    """Last error-free scan, keyed by the config it was produced with."""

    key: str
    at_monotonic: float
    index: CatalogIndex


def collect_skills(manager) -> Tuple[List[Skill], List[FrameworkIssue]]:
    """
    Walk every enabled space/source once; return (skills, errors).

    Duplicates are left in place so lint can report all of them.
    """

    config, errors = validate_and_normalize_config(manager.skills_config)
    if errors:
        return [], errors

    sources = build_sources_map(config)
    collected: List[Skill] = []
    for space in config.spaces:
        if not space.enabled:
            continue
        for source_id in space.sources:
            manager._scan_source(space=space, source=sources[source_id], sink=collected, errors=errors)

    collected.sort(key=lambda s: (s.skill_name, s.space_id, s.source_id, s.locator))
    return collected, errors


def duplicate_name_error(skills: Sequence[Skill]) -> Optional[FrameworkError]:
    """First (namespace, skill_name) claimed by more than one document, as an error."""

    groups: Dict[SkillKey, List[Skill]] = {}
    for skill in skills:
        groups.setdefault((skill.namespace, skill.skill_name), []).append(skill)
    for (namespace, skill_name), members in groups.items():
        if len(members) > 1:
            return FrameworkError(
                code="SKILL_DUPLICATE_NAME",
                message="Duplicate skill found in namespace.",
                details={
                    "namespace": namespace,
                    "skill_name": skill_name,
                    "conflicts": [
                        {"space_id": s.space_id, "source_id": s.source_id, "locator": s.locator} for s in members
                    ],
                },
            )
    return None


def perform_full_scan(manager) -> Tuple[CatalogIndex, Optional[FrameworkError]]:
    """
    Scan once, ignoring the refresh cache.

    A duplicate name yields an index with no skills plus the error to raise.
    """

    skills, errors = collect_skills(manager)
    duplicate = duplicate_name_error(skills)
    if duplicate is not None:
        report = manager._make_scan_report(skills=[], errors=[duplicate.to_issue(), *errors], warnings=[])
        return CatalogIndex(report=report), duplicate

    report = manager._make_scan_report(skills=skills, errors=errors, warnings=[])
    logger.info("Skills scan %s finished: %d skill(s), %d error(s)", report.scan_id, len(skills), len(errors))
    return CatalogIndex.from_report(report), None


def _cache_is_fresh(manager, cache: ScanCache) -> bool:
    scan_cfg = manager.skills_config.scan
    if scan_cfg.refresh_policy == "manual":
        return True
    if scan_cfg.refresh_policy == "ttl":
        return manager._now_monotonic() - cache.at_monotonic < scan_cfg.ttl_sec
    return False


def scan(manager, *, force_refresh: bool = False) -> ScanReport:
    """
    Scan honouring `scan.refresh_policy`.

    - always: rescan on every call
    - ttl: reuse the last good scan for `ttl_sec`
    - manual: reuse the last good scan until `force_refresh`

    Under ttl/manual a failing rescan returns the cached skills with a
    SKILL_SCAN_REFRESH_FAILED warning instead of failing.
    """

    policy = manager.skills_config.scan.refresh_policy
    key = manager._cache_key()

    with manager._scan_lock:
        cache: Optional[ScanCache] = manager._scan_cache
        if cache is not None and cache.key != key:
            cache = None

        if cache is not None and not force_refresh and _cache_is_fresh(manager, cache):
            manager._index = cache.index
            return cache.index.report

        index, fatal = perform_full_scan(manager)

        if cache is not None and policy != "always" and (fatal is not None or index.report.errors):
            reason = str(fatal) if fatal is not None else f"scan_errors: {[e.code for e in index.report.errors]}"
            logger.warning("Skills refresh failed, keeping cached scan: %s", reason)
            fallback = manager._make_scan_report(
                skills=list(cache.index.report.skills),
                errors=[],
                warnings=[manager._refresh_failed_warning(refresh_policy=policy, reason=reason)],
            )
            manager._index = replace(cache.index, report=fallback)
            return fallback

        manager._index = index
        if fatal is not None:
            raise fatal
        if not index.report.errors:
            manager._scan_cache = ScanCache(key=key, at_monotonic=manager._now_monotonic(), index=index)
        return index.report


def _space_not_configured(mention: SkillMention) -> FrameworkError:
    return FrameworkError(
        code="SKILL_SPACE_NOT_CONFIGURED",
        message="Skill space is not configured or disabled.",
        details={"mention": mention.mention_text, "namespace": mention.namespace},
    )


def _is_source_level(issue: FrameworkIssue) -> bool:
    """Config/source problems carry neither a document path nor a row index."""

    return issue.code == "SKILL_SCAN_METADATA_INVALID" and "path" not in issue.details and "index" not in issue.details


def resolve_mentions(manager, text: str) -> List[Tuple[Skill, SkillMention]]:
    """Strict: every mention must name a configured namespace and a scanned skill."""

    mentions = extract_skill_mentions(text)
    if not mentions:
        return []

    cfg = manager.skills_config
    namespaces = {space.namespace for space in cfg.spaces if space.enabled}
    if not namespaces or not cfg.sources:
        raise _space_not_configured(mentions[0])

    report = manager.scan()
    for issue in report.errors:
        if _is_source_level(issue):
            raise FrameworkError(code=issue.code, message=issue.message, details=dict(issue.details))

    selected: Dict[SkillKey, Tuple[Skill, SkillMention]] = {}
    for mention in mentions:
        if mention.namespace not in namespaces:
            raise _space_not_configured(mention)
        skill = manager._index.by_key.get((mention.namespace, mention.skill_name))
        if skill is None:
            raise FrameworkError(
                code="SKILL_UNKNOWN",
                message="Referenced skill is not found in configured spaces.",
                details={"mention": mention.mention_text},
            )
        if manager._is_enabled(skill):
            selected.setdefault((skill.namespace, skill.skill_name), (skill, mention))
    return list(selected.values())


def render_injected_skill(manager, skill: Skill) -> str:
    """Load the body lazily and wrap it; enforces `injection.max_bytes`."""

    where = {"skill_name": skill.skill_name, "locator": skill.locator}
    try:
        body = skill.body_loader()
    except Exception as exc:
        raise FrameworkError(
            code="SKILL_BODY_READ_FAILED",
            message="Skill body read failed.",
            details={**where, "reason": str(exc)},
        ) from exc

    size = len(body.encode("utf-8"))
    limit = manager.skills_config.injection.max_bytes
    if limit is not None and size > limit:
        raise FrameworkError(
            code="SKILL_BODY_TOO_LARGE",
            message="Skill body exceeds configured max bytes.",
            details={**where, "limit_bytes": limit, "actual_bytes": size},
        )

    return f"<skill>\n<name>{skill.skill_name}</name>\n<path>{skill.locator}</path>\n{body}\n</skill>"


def render_skills_list(skills: Sequence[Skill]) -> str:
    """Format the catalog as the `<available_skills>` block an agent prompt embeds."""

    if not skills:
        return "<available_skills>\n<!-- No skills found -->\n</available_skills>"

    entries = [
        f"<skill>\n<name>{s.qualified_name}</name>\n<description>{s.description}</description>\n</skill>"
        for s in skills
    ]
    return "<available_skills>\n" + "\n".join(entries) + "\n</available_skills>"
