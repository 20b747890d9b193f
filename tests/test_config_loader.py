from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from skills_catalog.config.defaults import load_default_config_dict
from skills_catalog.config.loader import load_config, load_config_dicts


def test_embedded_defaults_validate() -> None:
    cfg = load_config_dicts([load_default_config_dict()])

    assert cfg.config_version == 1
    assert cfg.logging.level == "WARNING"
    assert [s.id for s in cfg.skills.spaces] == ["workspace"]
    assert cfg.skills.sources[0].options == {"root": "skills"}
    assert cfg.skills.scan.refresh_policy == "always"
    assert cfg.skills.matching.max_results == 5
    assert cfg.skills.requirements.missing_policy == "warn"
    assert cfg.skills.injection.max_bytes is None


def test_overlays_deep_merge_and_replace_lists() -> None:
    cfg = load_config_dicts(
        [
            load_default_config_dict(),
            {"skills": {"scan": {"max_depth": 3}, "matching": {"stopwords_extra": ["please"]}}},
            {"skills": {"scan": {"refresh_policy": "manual"}, "sources": [{"id": "other", "type": "in-memory", "options": {"namespace": "x"}}]}},
        ]
    )

    assert cfg.skills.scan.max_depth == 3
    assert cfg.skills.scan.refresh_policy == "manual"
    assert cfg.skills.scan.ttl_sec == 300
    assert cfg.skills.matching.stopwords_extra == ["please"]
    assert [s.id for s in cfg.skills.sources] == ["other"]


def test_logging_level_is_case_insensitive() -> None:
    assert load_config_dicts([{"logging": {"level": " debug "}}]).logging.level == "DEBUG"
    with pytest.raises(ValidationError):
        load_config_dicts([{"logging": {"level": "verbose"}}])


@pytest.mark.parametrize(
    "overlay",
    [
        {"unknown_top_level": 1},
        {"skills": {"scan": {"max_dept": 3}}},
        {"skills": {"scan": {"refresh_policy": "sometimes"}}},
        {"skills": {"scan": {"max_depth": "3"}}},
        {"skills": {"requirements": {"missing_policy": "ignore"}}},
        {"skills": {"spaces": [{"id": "s", "namespace": "Bad:NS"}]}},
        {"skills": {"spaces": [{"id": "s", "namespace": "a:bb"}]}},
        {"skills": {"injection": {"max_bytes": 0}}},
    ],
)
def test_invalid_overlays_are_rejected(overlay: dict) -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([load_default_config_dict(), overlay])


def test_load_config_from_files(tmp_path: Path) -> None:
    base = tmp_path / "base.yaml"
    base.write_text("skills:\n  lint:\n    min_description_chars: 10\n", encoding="utf-8")
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")

    cfg = load_config([base, empty])
    assert cfg.skills.lint.min_description_chars == 10


def test_load_config_rejects_non_mapping_and_missing(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config([bad])
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "missing.yaml"])
