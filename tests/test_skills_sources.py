from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List

import pytest

from skills_catalog.config.loader import SkillsConfig
from skills_catalog.core.errors import FrameworkIssue
from skills_catalog.skills.models import Skill
from skills_catalog.skills.sources import scan_filesystem_source, scan_in_memory_source


def _write_skill(dir_path: Path, *, name: str, description: str = "d", body: str = "body\n") -> Path:
    """写入 skill fixture。"""

    dir_path.mkdir(parents=True, exist_ok=True)
    p = dir_path / "SKILL.md"
    p.write_text(f"---\nname: {name}\ndescription: {description}\n---\n{body}", encoding="utf-8")
    return p


SPACE = SkillsConfig.Space(id="space-eng", namespace="alice:engineering", sources=["src"])


def _scan_fs(tmp_path: Path, root: str, **scan_overrides: Any) -> tuple[List[Skill], List[FrameworkIssue]]:
    """调用 filesystem source 扫描并返回 (skills, errors)。"""

    options: Dict[str, Any] = {
        "ignore_dot_entries": True,
        "max_depth": 99,
        "max_dirs_per_root": 100000,
        "max_frontmatter_bytes": 65536,
    }
    options.update(scan_overrides)
    sink: List[Skill] = []
    errors: List[FrameworkIssue] = []
    scan_filesystem_source(
        workspace_root=tmp_path,
        scan_options=options,
        space=SPACE,
        source=SkillsConfig.Source(id="src", type="filesystem", options={"root": root}),
        sink=sink,
        errors=errors,
    )
    return sink, errors


def test_filesystem_scan_is_metadata_only_and_body_is_lazy(tmp_path: Path) -> None:
    p = _write_skill(tmp_path / "skills" / "a", name="python_testing", body="v1\n")
    skills, errors = _scan_fs(tmp_path, "skills")

    assert errors == []
    assert len(skills) == 1
    skill = skills[0]
    assert skill.namespace == "alice:engineering"
    assert skill.path == p.resolve()
    assert skill.locator == str(p)
    assert "updated_at" in skill.metadata and skill.metadata["updated_at"].endswith("Z")

    p.write_text("---\nname: python_testing\ndescription: d\n---\nv2\n", encoding="utf-8")
    assert skill.body_loader().endswith("v2\n")


def test_filesystem_scan_ignores_dot_entries_and_honours_depth(tmp_path: Path) -> None:
    _write_skill(tmp_path / "skills" / ".hidden", name="hidden_skill")
    _write_skill(tmp_path / "skills" / "group" / "deep", name="deep_skill")
    _write_skill(tmp_path / "skills" / "top", name="top_skill")

    skills, _ = _scan_fs(tmp_path, "skills")
    assert sorted(s.skill_name for s in skills) == ["deep_skill", "top_skill"]

    skills, _ = _scan_fs(tmp_path, "skills", max_depth=1)
    assert [s.skill_name for s in skills] == ["top_skill"]

    skills, _ = _scan_fs(tmp_path, "skills", ignore_dot_entries=False)
    assert sorted(s.skill_name for s in skills) == ["deep_skill", "hidden_skill", "top_skill"]


def test_filesystem_scan_missing_root_is_empty(tmp_path: Path) -> None:
    assert _scan_fs(tmp_path, "does-not-exist") == ([], [])


def test_filesystem_scan_collects_per_document_errors(tmp_path: Path) -> None:
    _write_skill(tmp_path / "skills" / "good", name="good_skill")
    _write_skill(tmp_path / "skills" / "upper", name="Bad_Name")
    bad = tmp_path / "skills" / "broken" / "SKILL.md"
    bad.parent.mkdir(parents=True)
    bad.write_text("no frontmatter\n", encoding="utf-8")

    skills, errors = _scan_fs(tmp_path, "skills")

    assert [s.skill_name for s in skills] == ["good_skill"]
    reasons = sorted(e.details["reason"] for e in errors)
    assert reasons == ["frontmatter_missing", "invalid_skill_name_slug"]
    assert all(e.code == "SKILL_SCAN_METADATA_INVALID" for e in errors)


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlink not supported")
def test_filesystem_scan_rejects_skill_md_escaping_root(tmp_path: Path) -> None:
    outside = _write_skill(tmp_path / "outside", name="outside_skill")
    link_dir = tmp_path / "skills" / "linked"
    link_dir.mkdir(parents=True)
    (link_dir / "SKILL.md").symlink_to(outside)

    skills, errors = _scan_fs(tmp_path, "skills")
    assert skills == []
    assert [e.details["reason"] for e in errors] == ["path_escape"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlink not supported")
def test_filesystem_scan_does_not_follow_directory_symlinks(tmp_path: Path) -> None:
    _write_skill(tmp_path / "outside" / "escaped", name="outside_skill")
    real = _write_skill(tmp_path / "skills" / "real", name="real_skill")
    (tmp_path / "skills" / "linked").symlink_to(tmp_path / "outside", target_is_directory=True)
    (tmp_path / "skills" / "alias").symlink_to(real.parent, target_is_directory=True)

    skills, errors = _scan_fs(tmp_path, "skills")
    assert errors == []
    assert [(s.skill_name, s.path) for s in skills] == [("real_skill", real.resolve())]


def test_filesystem_scan_stops_at_max_dirs_per_root(tmp_path: Path) -> None:
    _write_skill(tmp_path / "skills" / "a", name="first_skill")
    _write_skill(tmp_path / "skills" / "b", name="second_skill")

    skills, errors = _scan_fs(tmp_path, "skills", max_dirs_per_root=1)
    assert skills == []
    assert [e.message for e in errors] == ["Skill scan exceeded max directories per root."]
    assert errors[0].details["max_dirs_per_root"] == 1
    assert errors[0].details["root"] == str((tmp_path / "skills").resolve())

    skills, errors = _scan_fs(tmp_path, "skills", max_dirs_per_root=3)
    assert errors == []
    assert sorted(s.skill_name for s in skills) == ["first_skill", "second_skill"]


def test_filesystem_scan_requires_root_option(tmp_path: Path) -> None:
    sink: List[Skill] = []
    errors: List[FrameworkIssue] = []
    scan_filesystem_source(
        workspace_root=tmp_path,
        scan_options={"ignore_dot_entries": True, "max_depth": 99, "max_dirs_per_root": 100, "max_frontmatter_bytes": 1024},
        space=SPACE,
        source=SkillsConfig.Source(id="src", type="filesystem", options={}),
        sink=sink,
        errors=errors,
    )
    assert sink == []
    assert [e.message for e in errors] == ["Filesystem source root is required."]


def _scan_mem(rows: List[Any], *, options: Dict[str, Any] | None = None) -> tuple[List[Skill], List[FrameworkIssue]]:
    sink: List[Skill] = []
    errors: List[FrameworkIssue] = []
    scan_in_memory_source(
        in_memory_registry={"mem": rows},
        space=SPACE,
        source=SkillsConfig.Source(id="src-mem", type="in-memory", options=options if options is not None else {"namespace": "mem"}),
        sink=sink,
        errors=errors,
    )
    return sink, errors


def test_in_memory_rows_become_skills() -> None:
    calls: List[int] = []

    def _loader() -> str:
        calls.append(1)
        return "lazy body"

    skills, errors = _scan_mem(
        [
            {"skill_name": "mem-one", "description": "First  skill.", "body": "b1", "owner": "team-a"},
            {
                "skill_name": "mem-two",
                "description": "Second skill.",
                "body_loader": _loader,
                "requires": {"tools": "docker"},
                "skip_when": "offline",
                "locator": "custom://two",
            },
        ]
    )

    assert errors == []
    assert [s.skill_name for s in skills] == ["mem-one", "mem-two"]
    assert skills[0].description == "First skill."
    assert skills[0].metadata == {"owner": "team-a"}
    assert skills[0].locator == "mem://mem/mem-one"
    assert skills[1].requires.tools == ("docker",)
    assert skills[1].skip_when == ("offline",)
    assert skills[1].locator == "custom://two"
    assert calls == []
    assert skills[1].body_loader() == "lazy body"


@pytest.mark.parametrize(
    "row,field",
    [
        ({"description": "d", "body": "b"}, "skill_name"),
        ({"skill_name": "mem-one", "body": "b"}, "description"),
        ({"skill_name": "mem-one", "description": "d"}, "body/body_loader"),
        ({"skill_name": "mem-one", "description": "d", "body": "b", "body_size": "10"}, "body_size"),
    ],
)
def test_in_memory_invalid_rows_are_reported(row: Dict[str, Any], field: str) -> None:
    skills, errors = _scan_mem([row])
    assert skills == []
    assert [e.details.get("field") for e in errors] == [field]


def test_in_memory_requires_namespace_option() -> None:
    skills, errors = _scan_mem([{"skill_name": "mem-one", "description": "d", "body": "b"}], options={})
    assert skills == []
    assert [e.message for e in errors] == ["In-memory source namespace is required."]
