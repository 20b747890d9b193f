"""
Skill dependency resolution (`requires.skills`).

Name resolution rule: a dependency name resolves to the skill with that name in
the depending skill's namespace first, then to the single skill with that name
anywhere in the catalog. Ambiguous or missing names are unresolved.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from skills_catalog.core.errors import FrameworkError
from skills_catalog.skills.models import Skill

SkillKey = Tuple[str, str]
DependencyLookup = Callable[[str, Skill], Optional[Skill]]


def _key(skill: Skill) -> SkillKey:
    return (skill.namespace, skill.skill_name)


def make_dependency_lookup(skills: Iterable[Skill]) -> DependencyLookup:
    """Build a `lookup(name, from_skill)` function over a skill collection."""

    by_key: Dict[SkillKey, Skill] = {}
    by_name: Dict[str, List[Skill]] = {}
    for skill in skills:
        by_key[_key(skill)] = skill
        by_name.setdefault(skill.skill_name, []).append(skill)

    def lookup(name: str, from_skill: Skill) -> Optional[Skill]:
        same_ns = by_key.get((from_skill.namespace, name))
        if same_ns is not None:
            return same_ns
        candidates = by_name.get(name, [])
        if len(candidates) == 1:
            return candidates[0]
        return None

    return lookup


def resolve_dependency_order(roots: Sequence[Skill], lookup: DependencyLookup) -> List[Skill]:
    """
    Return `roots` plus their transitive dependencies, dependencies first.

    Depth-first post-order over `requires.skills`; each skill appears once and
    roots keep their relative order.

    Raises:
    - FrameworkError(SKILL_DEPENDENCY_UNKNOWN): a dependency name does not resolve
    - FrameworkError(SKILL_DEPENDENCY_CYCLE): dependencies form a cycle (`details.cycle`)
    """

    ordered: List[Skill] = []
    done: Set[SkillKey] = set()
    stack: List[Skill] = []
    on_stack: Set[SkillKey] = set()

    def visit(skill: Skill) -> None:
        key = _key(skill)
        if key in done:
            return
        if key in on_stack:
            start = next(i for i, s in enumerate(stack) if _key(s) == key)
            cycle = [s.skill_name for s in stack[start:]] + [skill.skill_name]
            raise FrameworkError(
                code="SKILL_DEPENDENCY_CYCLE",
                message="Skill dependencies form a cycle.",
                details={"namespace": skill.namespace, "cycle": cycle},
            )

        stack.append(skill)
        on_stack.add(key)
        for dep_name in skill.requires.skills:
            dep = lookup(dep_name, skill)
            if dep is None:
                raise FrameworkError(
                    code="SKILL_DEPENDENCY_UNKNOWN",
                    message="Skill depends on a skill that is not in the catalog.",
                    details={
                        "namespace": skill.namespace,
                        "skill_name": skill.skill_name,
                        "dependency": dep_name,
                    },
                )
            visit(dep)
        stack.pop()
        on_stack.discard(key)
        done.add(key)
        ordered.append(skill)

    for root in roots:
        visit(root)
    return ordered


def _canonical_cycle(keys: List[SkillKey]) -> Tuple[SkillKey, ...]:
    """Rotate a cycle so that its smallest key comes first."""

    pivot = keys.index(min(keys))
    return tuple(keys[pivot:] + keys[:pivot])


def find_dependency_cycles(skills: Sequence[Skill]) -> List[List[Skill]]:
    """
    Find dependency cycles in a catalog (used by lint).

    Every group of mutually dependent skills yields at least one cycle. Each
    cycle is reported once, rotated so its smallest (namespace, name) comes
    first; a self-dependency is a one-element cycle. Unresolved names are ignored
    here (lint reports them separately).
    """

    lookup = make_dependency_lookup(skills)
    by_key: Dict[SkillKey, Skill] = {_key(s): s for s in skills}
    seen_cycles: Set[Tuple[SkillKey, ...]] = set()
    cycles: List[List[Skill]] = []
    finished: Set[SkillKey] = set()

    def visit(skill: Skill, path: List[SkillKey], on_path: Set[SkillKey]) -> None:
        key = _key(skill)
        path.append(key)
        on_path.add(key)
        for dep_name in skill.requires.skills:
            dep = lookup(dep_name, skill)
            if dep is None:
                continue
            dep_key = _key(dep)
            if dep_key in on_path:
                canonical = _canonical_cycle(path[path.index(dep_key):])
                if canonical not in seen_cycles:
                    seen_cycles.add(canonical)
                    cycles.append([by_key[k] for k in canonical])
                continue
            if dep_key not in finished:
                visit(dep, path, on_path)
        path.pop()
        on_path.discard(key)
        finished.add(key)

    for skill in sorted(skills, key=_key):
        if _key(skill) not in finished:
            visit(skill, [], set())
    return cycles
