"""
Skills 系统（SKILL.md 扫描、请求匹配、分发注入、一致性检查）。
"""

from __future__ import annotations

from skills_catalog.skills.loader import SkillLoadError, load_skill_from_path
from skills_catalog.skills.manager import SkillsManager
from skills_catalog.skills.models import DispatchResult, MatchResult, ScanReport, Skill, SkillRequirements

__all__ = [
    "DispatchResult",
    "MatchResult",
    "ScanReport",
    "Skill",
    "SkillLoadError",
    "SkillRequirements",
    "SkillsManager",
    "load_skill_from_path",
]
