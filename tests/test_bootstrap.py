from __future__ import annotations

from pathlib import Path

import pytest

from skills_catalog.bootstrap import (
    CONFIG_PATHS_VAR,
    ENV_FILE_VAR,
    discover_overlay_paths,
    load_dotenv_if_present,
    resolve_effective_config,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_FILE_VAR, raising=False)
    monkeypatch.delenv(CONFIG_PATHS_VAR, raising=False)
    monkeypatch.delenv("SKILLS_CATALOG_LOG_LEVEL", raising=False)


def test_discover_overlay_paths_order_and_dedupe(tmp_path: Path) -> None:
    (tmp_path / "config").mkdir()
    default_overlay = tmp_path / "config" / "catalog.yaml"
    default_overlay.write_text("{}\n", encoding="utf-8")

    env = {CONFIG_PATHS_VAR: "extra.yaml; config/catalog.yaml, /abs/other.yaml"}
    paths = discover_overlay_paths(workspace_root=tmp_path, env=env)

    assert paths == [
        default_overlay.resolve(),
        (tmp_path / "extra.yaml").resolve(),
        Path("/abs/other.yaml").resolve(),
    ]


def test_discover_overlay_paths_without_overlays(tmp_path: Path) -> None:
    assert discover_overlay_paths(workspace_root=tmp_path, env={}) == []


def test_dotenv_does_not_override_existing_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALREADY_SET", "from-process")
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "# comment",
                "export DOCKER_HOST='tcp://localhost:2375'",
                'ALREADY_SET="from-file"',
                "NOT_A_PAIR",
                "",
            ]
        ),
        encoding="utf-8",
    )

    env_file, injected = load_dotenv_if_present(workspace_root=tmp_path)

    assert env_file == (tmp_path / ".env").resolve()
    assert injected == {"DOCKER_HOST": "tcp://localhost:2375"}


def test_explicit_env_file_must_exist(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ENV_FILE_VAR, "missing.env")
    with pytest.raises(ValueError):
        load_dotenv_if_present(workspace_root=tmp_path)


def test_resolve_effective_config_tracks_sources(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CATALOG_TEST_KUBECONFIG", raising=False)
    (tmp_path / "config").mkdir()
    overlay = tmp_path / "config" / "catalog.yaml"
    overlay.write_text("skills:\n  scan:\n    max_depth: 4\n", encoding="utf-8")
    explicit = tmp_path / "explicit.yaml"
    explicit.write_text("logging:\n  level: info\n", encoding="utf-8")
    (tmp_path / ".env").write_text("CATALOG_TEST_KUBECONFIG=/tmp/kubeconfig\n", encoding="utf-8")

    resolved = resolve_effective_config(workspace_root=tmp_path, config_paths=[Path("explicit.yaml")])

    assert resolved.config.skills.scan.max_depth == 4
    assert resolved.config.logging.level == "INFO"
    assert resolved.overlay_paths == [str(overlay.resolve()), str(explicit.resolve())]
    assert resolved.sources["skills.scan.max_depth"] == f"overlay:{overlay.resolve()}"
    assert resolved.sources["skills.scan.ttl_sec"] == "embedded_default"
    assert resolved.sources["logging.level"] == f"overlay:{explicit.resolve()}"
    assert resolved.env_file == str((tmp_path / ".env").resolve())
    assert resolved.env["CATALOG_TEST_KUBECONFIG"] == "/tmp/kubeconfig"


def test_resolve_effective_config_without_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ONLY_IN_FILE", raising=False)
    (tmp_path / ".env").write_text("ONLY_IN_FILE=1\n", encoding="utf-8")

    resolved = resolve_effective_config(workspace_root=tmp_path, load_dotenv=False)

    assert resolved.env_file is None
    assert "ONLY_IN_FILE" not in resolved.env
    assert resolved.overlay_paths == []


def test_missing_explicit_overlay_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        resolve_effective_config(workspace_root=tmp_path, config_paths=[tmp_path / "nope.yaml"])
