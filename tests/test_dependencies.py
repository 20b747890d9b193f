from __future__ import annotations

import pytest

from skills_catalog.core.errors import FrameworkError
from skills_catalog.skills.dependencies import find_dependency_cycles, make_dependency_lookup, resolve_dependency_order
from skills_catalog.skills.models import Skill, SkillRequirements


def _skill(name: str, *deps: str, namespace: str = "ws") -> Skill:
    """构造带 requires.skills 的内存 Skill fixture。"""

    return Skill(
        space_id="space",
        source_id="mem",
        namespace=namespace,
        skill_name=name,
        description=f"{name} skill",
        locator=f"mem://{namespace}/{name}",
        path=None,
        body_size=None,
        body_loader=lambda: "",
        requires=SkillRequirements(skills=tuple(deps)),
    )


def _names(skills) -> list[str]:
    return [s.skill_name for s in skills]


def test_dependencies_come_first_and_appear_once() -> None:
    a, b, c = _skill("aa", "bb"), _skill("bb", "cc"), _skill("cc")
    lookup = make_dependency_lookup([a, b, c])

    assert _names(resolve_dependency_order([a], lookup)) == ["cc", "bb", "aa"]
    assert _names(resolve_dependency_order([a, c], lookup)) == ["cc", "bb", "aa"]
    assert _names(resolve_dependency_order([c, a], lookup)) == ["cc", "bb", "aa"]


def test_unknown_dependency_raises() -> None:
    a = _skill("aa", "missing")
    with pytest.raises(FrameworkError) as ei:
        resolve_dependency_order([a], make_dependency_lookup([a]))
    assert ei.value.code == "SKILL_DEPENDENCY_UNKNOWN"
    assert ei.value.details["dependency"] == "missing"


@pytest.mark.parametrize(
    "skills,expected_cycle",
    [
        ([_skill("aa", "bb"), _skill("bb", "aa")], ["aa", "bb", "aa"]),
        ([_skill("aa", "aa")], ["aa", "aa"]),
    ],
)
def test_cycle_raises_with_path(skills: list[Skill], expected_cycle: list[str]) -> None:
    with pytest.raises(FrameworkError) as ei:
        resolve_dependency_order([skills[0]], make_dependency_lookup(skills))
    assert ei.value.code == "SKILL_DEPENDENCY_CYCLE"
    assert ei.value.details["cycle"] == expected_cycle


def test_lookup_prefers_same_namespace_then_unique_name() -> None:
    base_one = _skill("base", namespace="one")
    base_two = _skill("base", namespace="two")
    user_one = _skill("user", "base", namespace="one")
    other = _skill("other", "base", namespace="three")
    solo = _skill("solo", namespace="two")
    lookup = make_dependency_lookup([base_one, base_two, user_one, other, solo])

    assert lookup("base", user_one) is base_one
    assert lookup("base", other) is None
    assert lookup("solo", user_one) is solo
    assert lookup("nothing", user_one) is None


def test_find_dependency_cycles_reports_each_cycle_once() -> None:
    skills = [
        _skill("aa", "bb"),
        _skill("bb", "cc"),
        _skill("cc", "aa"),
        _skill("dd", "dd"),
        _skill("ee", "aa"),
        _skill("ff", "unknown"),
    ]
    cycles = find_dependency_cycles(skills)
    assert [_names(c) for c in cycles] == [["aa", "bb", "cc"], ["dd"]]


def test_find_dependency_cycles_uses_canonical_rotation() -> None:
    skills = [_skill("aa", "cc"), _skill("cc", "bb"), _skill("bb", "cc")]
    cycles = find_dependency_cycles(skills)
    assert [_names(c) for c in cycles] == [["bb", "cc"]]
