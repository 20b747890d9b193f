from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from skills_catalog.config.loader import SkillsConfig
from skills_catalog.core.errors import FrameworkIssue
from skills_catalog.skills.loader import SkillLoadError, parse_requires, parse_string_list
from skills_catalog.skills.mentions import is_valid_skill_name_slug
from skills_catalog.skills.models import Skill, unique_ordered
from skills_catalog.skills.sources._utils import metadata_invalid, optional_source_option

# row keys consumed into Skill fields; everything else is carried as metadata
_ROW_FIELDS = frozenset({"skill_name", "description", "body", "body_loader", "requires", "skip_when", "locator", "body_size"})


class _RejectedRow(Exception):
    def __init__(self, message: str = "Skill metadata is invalid.", **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


def _constant(text: str) -> Callable[[], str]:
    return lambda: text


def _row_skill(row: Any, *, registry_ns: str, space: SkillsConfig.Space, source: SkillsConfig.Source) -> Skill:
    if not isinstance(row, dict):
        raise _RejectedRow("In-memory skill metadata must be an object.")

    name = row.get("skill_name")
    if not isinstance(name, str) or not name:
        raise _RejectedRow(field="skill_name")
    if not is_valid_skill_name_slug(name):
        raise _RejectedRow(field="skill_name", actual=name, reason="invalid_skill_name_slug")

    description = row.get("description")
    if not isinstance(description, str) or not description.strip():
        raise _RejectedRow(field="description")

    loader = row.get("body_loader")
    if loader is None and isinstance(row.get("body"), str):
        loader = _constant(row["body"])
    if not callable(loader):
        raise _RejectedRow(field="body/body_loader")

    size = row.get("body_size")
    if size is not None and (isinstance(size, bool) or not isinstance(size, int)):
        raise _RejectedRow(field="body_size")

    locator = row.get("locator")
    if not isinstance(locator, str) or not locator:
        locator = f"mem://{registry_ns}/{name}"

    try:
        requires = parse_requires(row.get("requires"), path=Path(locator))
        skip_when = parse_string_list(row.get("skip_when"), field="skip_when", path=Path(locator))
    except SkillLoadError as exc:
        raise _RejectedRow(reason=exc.message) from exc

    return Skill(
        space_id=space.id,
        source_id=source.id,
        namespace=space.namespace,
        skill_name=name,
        description=" ".join(description.split()),
        locator=locator,
        path=None,
        body_size=size,
        body_loader=loader,
        requires=requires,
        skip_when=unique_ordered(skip_when),
        metadata={k: v for k, v in row.items() if k not in _ROW_FIELDS},
        scope="in-memory",
    )


def scan_in_memory_source(
    *,
    in_memory_registry: Mapping[str, List[Dict[str, Any]]],
    space: SkillsConfig.Space,
    source: SkillsConfig.Source,
    sink: List[Skill],
    errors: List[FrameworkIssue],
) -> None:
    """Turn the rows registered under `options.namespace` into skills; bad rows are reported by index."""

    registry_ns = optional_source_option(source.options, "namespace")
    if registry_ns is None:
        errors.append(metadata_invalid(source_id=source.id, message="In-memory source namespace is required."))
        return

    for idx, row in enumerate(list(in_memory_registry.get(registry_ns, []))):
        try:
            sink.append(_row_skill(row, registry_ns=registry_ns, space=space, source=source))
        except _RejectedRow as exc:
            errors.append(metadata_invalid(source_id=source.id, message=exc.message, index=idx, **exc.details))
