from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import yaml

from skills_catalog.core.errors import FrameworkError
from skills_catalog.skills.manager import SkillsManager


def _write_skill(root: Path, name: str, description: str, *, body: str = "body\n", **extra: Any) -> Path:
    """写入 `<root>/<name>/SKILL.md` fixture（frontmatter 由 yaml 生成）。"""

    d = root / name
    d.mkdir(parents=True, exist_ok=True)
    fm = {"name": name, "description": description, **extra}
    p = d / "SKILL.md"
    p.write_text("---\n" + yaml.safe_dump(fm, sort_keys=False) + "---\n" + body, encoding="utf-8")
    return p


def _manager(tmp_path: Path, *, extra: Optional[Dict[str, Any]] = None) -> SkillsManager:
    """创建基于 `<tmp>/skills` 的 SkillsManager（env 为空、PATH 查找恒失败）。"""

    cfg: Dict[str, Any] = {
        "spaces": [{"id": "ws", "namespace": "workspace", "sources": ["fs"]}],
        "sources": [{"id": "fs", "type": "filesystem", "options": {"root": "skills"}}],
    }
    cfg.update(extra or {})
    return SkillsManager(workspace_root=tmp_path, skills_config=cfg, environ={}, which=lambda _name: None)


@pytest.fixture
def docker_catalog(tmp_path: Path) -> Path:
    root = tmp_path / "skills"
    _write_skill(root, "docker-basics", "Basic Docker commands and concepts.", body="# Basics\n")
    _write_skill(
        root,
        "docker-optimize",
        "Shrink and speed up a Docker image build.",
        body="# Optimize\n",
        requires={"skills": ["docker-basics"]},
    )
    return tmp_path


def test_dispatch_best_match_with_dependencies_first(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog)
    result = mgr.dispatch("optimize docker image size")

    assert [(it.skill.skill_name, it.reason) for it in result.selected] == [
        ("docker-basics", "dependency"),
        ("docker-optimize", "match"),
    ]
    assert result.selected[1].score == 8.0
    assert result.warnings == []
    assert result.rendered.index("<name>docker-basics</name>") < result.rendered.index("<name>docker-optimize</name>")
    assert "# Optimize" in result.rendered
    assert result.rendered.startswith("<skill>\n<name>docker-basics</name>\n<path>")


def test_dispatch_without_dependencies(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog, extra={"injection": {"include_dependencies": False}})
    result = mgr.dispatch("optimize docker image size")
    assert [it.skill.skill_name for it in result.selected] == ["docker-optimize"]


def test_dispatch_mentions_take_precedence(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog)
    result = mgr.dispatch("optimize docker image, see $[workspace].docker-basics")

    assert [(it.skill.skill_name, it.reason) for it in result.selected] == [("docker-basics", "mention")]
    assert result.selected[0].mention_text == "$[workspace].docker-basics"


def test_dispatch_unknown_mention_is_strict(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog)
    with pytest.raises(FrameworkError) as ei:
        mgr.dispatch("use $[workspace].nope-skill")
    assert ei.value.code == "SKILL_UNKNOWN"


def test_dispatch_no_match_warns(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog)
    result = mgr.dispatch("bake a sourdough loaf")

    assert result.selected == []
    assert result.rendered == ""
    assert [w.code for w in result.warnings] == ["SKILL_NO_MATCH"]
    assert result.to_jsonable()["warnings"][0]["details"]["level"] == "warning"


def test_dispatch_skips_skill_when_condition_matches(docker_catalog: Path) -> None:
    _write_skill(
        docker_catalog / "skills",
        "deploy-tool",
        "Deploy the service to the cluster.",
        skip_when=["no cluster access"],
    )
    mgr = _manager(docker_catalog)
    result = mgr.dispatch("deploy tool now, but we have no cluster access")
    assert result.selected == []
    assert [w.code for w in result.warnings] == ["SKILL_NO_MATCH"]


@pytest.mark.parametrize(
    "policy,selected",
    [
        ("warn", ["deploy-tool"]),
        ("skip_skill", []),
    ],
)
def test_dispatch_requirement_policy(tmp_path: Path, policy: str, selected: list[str]) -> None:
    _write_skill(tmp_path / "skills", "deploy-tool", "Deploy the service.", requires={"tools": ["kubectl"]})
    mgr = _manager(tmp_path, extra={"requirements": {"missing_policy": policy}})

    result = mgr.dispatch("deploy tool now")

    assert [it.skill.skill_name for it in result.selected] == selected
    assert [w.code for w in result.warnings] == ["SKILL_REQUIREMENTS_MISSING"]
    assert result.warnings[0].details["missing_tools"] == ["kubectl"]
    assert result.warnings[0].details["policy"] == policy


def test_dispatch_requirement_policy_fail_fast(tmp_path: Path) -> None:
    _write_skill(tmp_path / "skills", "deploy-tool", "Deploy the service.", requires={"env": ["KUBECONFIG"]})
    mgr = _manager(tmp_path, extra={"requirements": {"missing_policy": "fail_fast"}})

    with pytest.raises(FrameworkError) as ei:
        mgr.dispatch("deploy tool now")
    assert ei.value.code == "SKILL_REQUIREMENTS_MISSING"
    assert ei.value.details["missing_env"] == ["KUBECONFIG"]


def test_dispatch_uses_injected_environment(tmp_path: Path) -> None:
    _write_skill(tmp_path / "skills", "deploy-tool", "Deploy the service.", requires={"env": ["KUBECONFIG"]})
    mgr = SkillsManager(
        workspace_root=tmp_path,
        skills_config={
            "spaces": [{"id": "ws", "namespace": "workspace", "sources": ["fs"]}],
            "sources": [{"id": "fs", "type": "filesystem", "options": {"root": "skills"}}],
            "requirements": {"missing_policy": "fail_fast"},
        },
        environ={"KUBECONFIG": "/tmp/kubeconfig"},
    )
    result = mgr.dispatch("deploy tool now")
    assert [it.skill.skill_name for it in result.selected] == ["deploy-tool"]
    assert result.warnings == []


def test_dispatch_enforces_max_bytes(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog, extra={"injection": {"max_bytes": 10}})
    with pytest.raises(FrameworkError) as ei:
        mgr.dispatch("optimize docker image size")
    assert ei.value.code == "SKILL_BODY_TOO_LARGE"
    assert ei.value.details["limit_bytes"] == 10


def test_dispatch_reports_dependency_cycle(tmp_path: Path) -> None:
    root = tmp_path / "skills"
    _write_skill(root, "deploy-tool", "Deploy the service.", requires={"skills": ["cluster-setup"]})
    _write_skill(root, "cluster-setup", "Prepare the cluster.", requires={"skills": ["deploy-tool"]})
    mgr = _manager(tmp_path)

    with pytest.raises(FrameworkError) as ei:
        mgr.dispatch("deploy tool now")
    assert ei.value.code == "SKILL_DEPENDENCY_CYCLE"
    assert ei.value.details["cycle"] == ["deploy-tool", "cluster-setup", "deploy-tool"]


def test_dispatch_body_read_failure(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog, extra={"injection": {"include_dependencies": False}})
    mgr.scan()
    (docker_catalog / "skills" / "docker-optimize" / "SKILL.md").unlink()

    with pytest.raises(FrameworkError) as ei:
        mgr.render_injected_skill(mgr.get_skill("docker-optimize"))
    assert ei.value.code == "SKILL_BODY_READ_FAILED"


def test_dispatch_mention_of_disabled_skill_selects_nothing(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog)
    mgr.set_enabled(mgr.get_skill("docker-optimize").path, False)

    result = mgr.dispatch("$[workspace].docker-optimize shrink docker images")

    assert result.selected == []
    assert result.rendered == ""
    assert [w.code for w in result.warnings] == ["SKILL_MENTION_DISABLED"]
    assert result.warnings[0].details["mentions"] == ["$[workspace].docker-optimize"]
    assert result.warnings[0].details["level"] == "warning"


def test_dispatch_requirements_ignore_disabled_dependency(docker_catalog: Path) -> None:
    mgr = _manager(docker_catalog, extra={"injection": {"include_dependencies": False}})
    mgr.set_enabled(mgr.get_skill("docker-basics").path, False)

    matched = mgr.match("optimize docker image size")
    assert matched[0].requirements.missing_skills == ("docker-basics",)

    result = mgr.dispatch("optimize docker image size")
    assert [it.skill.skill_name for it in result.selected] == ["docker-optimize"]
    assert [w.code for w in result.warnings] == ["SKILL_REQUIREMENTS_MISSING"]
    assert result.warnings[0].details["missing_skills"] == ["docker-basics"]
