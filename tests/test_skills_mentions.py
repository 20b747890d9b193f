from __future__ import annotations

import pytest

from skills_catalog.skills.mentions import extract_skill_mentions, is_valid_namespace, is_valid_skill_name_slug


def test_extract_mentions_ignores_common_env_vars() -> None:
    mentions = extract_skill_mentions("use $PATH and $[alice:engineering].python_testing")
    assert [(m.namespace, m.skill_name) for m in mentions] == [("alice:engineering", "python_testing")]


@pytest.mark.parametrize(
    "text,expected_namespaces",
    [
        ("use $[web].article_writer", ["web"]),  # 1 segment
        ("use $[a0:b1:c2:d3:e4:f5:g6].article_writer", ["a0:b1:c2:d3:e4:f5:g6"]),  # 7 segments
        ("use $[a0:b1:c2:d3:e4:f5:g6:h7].article_writer", []),  # 8 segments rejected
        ("use $[a:bb].article_writer", []),  # segment min length=2
        ("use $[Web].article_writer", []),  # uppercase rejected
    ],
)
def test_extract_mentions_namespace_segment_bounds(text: str, expected_namespaces: list[str]) -> None:
    """mention 解析必须满足 namespace 段数/segment 最小长度约束。"""

    mentions = extract_skill_mentions(text)
    assert [m.namespace for m in mentions] == expected_namespaces


def test_extract_mentions_namespace_is_order_sensitive() -> None:
    """namespace 必须按顺序区分，不可交换等价。"""

    mentions = extract_skill_mentions("use $[a0:b1].article_writer and $[b1:a0].article_writer")
    assert [m.namespace for m in mentions] == ["a0:b1", "b1:a0"]


def test_extract_mentions_ignores_trailing_bracket_typos() -> None:
    """形如 `$[a:b].x]` 的括号错位应忽略该 token，且不得抛错。"""

    mentions = extract_skill_mentions("use $[a0:b1].python_testing] and $[a0:b1].redis_cache")
    assert [m.mention_text for m in mentions] == ["$[a0:b1].redis_cache"]


def test_extract_mentions_dedupes_and_keeps_order() -> None:
    text = "$[web].zeta-skill then $[web].alpha-skill then $[web].zeta-skill."
    assert [m.skill_name for m in extract_skill_mentions(text)] == ["zeta-skill", "alpha-skill"]


def test_extract_mentions_rejects_overlong_slug() -> None:
    name = "a" * 65
    assert extract_skill_mentions(f"use $[web].{name}") == []
    assert [m.skill_name for m in extract_skill_mentions(f"use $[web].{'a' * 64}")] == ["a" * 64]


@pytest.mark.parametrize(
    "value,expected",
    [("docker-optimize", True), ("python_testing", True), ("a", False), ("-lead", False), ("Upper", False), ("x" * 65, False)],
)
def test_skill_name_slug(value: str, expected: bool) -> None:
    assert is_valid_skill_name_slug(value) is expected


@pytest.mark.parametrize(
    "value,expected",
    [("workspace", True), ("alice:engineering", True), ("a:bb", False), ("ws:", False), ("", False)],
)
def test_namespace_validation(value: str, expected: bool) -> None:
    assert is_valid_namespace(value) is expected
