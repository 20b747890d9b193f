from __future__ import annotations

from dataclasses import dataclass
from functools import partial
import logging
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from skills_catalog.config.loader import SkillsConfig
from skills_catalog.core.errors import FrameworkIssue
from skills_catalog.skills.loader import SKILL_FILENAME, SkillLoadError, load_skill_metadata_from_path
from skills_catalog.skills.mentions import is_valid_skill_name_slug
from skills_catalog.skills.models import Skill
from skills_catalog.skills.sources._utils import metadata_invalid, optional_source_option, utc_from_timestamp_rfc3339

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ContainedBody:
    """Reads the document on demand; refuses if it no longer resolves under the scan root."""

    path: Path
    root_real: Path

    def __call__(self) -> str:
        real = self.path.resolve()
        if not real.is_relative_to(self.root_real):
            raise PermissionError(f"skill body path escapes root: {real}")
        return real.read_text(encoding="utf-8")


def _walk_documents(
    root: Path,
    *,
    source_id: str,
    scan_options: Dict[str, int | bool],
    errors: List[FrameworkIssue],
) -> Iterator[Path]:
    """
    Yield every `SKILL.md` under `root`.

    Directory symlinks are not followed. Directories deeper than `max_depth`
    are not listed; the walk stops once `max_dirs_per_root` is exceeded.
    """

    skip_dot = bool(scan_options["ignore_dot_entries"])
    max_depth = int(scan_options["max_depth"])
    max_dirs = int(scan_options["max_dirs_per_root"])

    def _list_failed(exc: OSError) -> None:
        errors.append(metadata_invalid(source_id=source_id, path=str(exc.filename), reason=f"list_failed:{exc}"))

    listed = 0
    for dirpath, dirnames, filenames in os.walk(root, onerror=_list_failed):
        listed += 1
        if max_dirs >= 1 and listed > max_dirs:
            errors.append(
                metadata_invalid(
                    source_id=source_id,
                    message="Skill scan exceeded max directories per root.",
                    root=str(root),
                    max_dirs_per_root=max_dirs,
                )
            )
            return

        here = Path(dirpath)
        if len(here.relative_to(root).parts) >= max_depth:
            dirnames.clear()
        else:
            dirnames[:] = sorted(d for d in dirnames if not (skip_dot and d.startswith(".")))

        if SKILL_FILENAME in filenames:
            yield here / SKILL_FILENAME


def _document_skill(
    doc: Path,
    *,
    root: Path,
    root_real: Path,
    max_frontmatter_bytes: int,
    space: SkillsConfig.Space,
    source: SkillsConfig.Source,
    errors: List[FrameworkIssue],
) -> Optional[Skill]:
    """One document -> Skill, or None after recording why it was rejected."""

    reject = partial(metadata_invalid, source_id=source.id, path=str(doc))

    real = doc.resolve()
    if not real.is_relative_to(root_real):
        errors.append(reject(root=str(root), path_real=str(real), reason="path_escape"))
        return None
    if not real.is_file():
        return None

    try:
        meta = load_skill_metadata_from_path(doc, max_frontmatter_bytes=max_frontmatter_bytes)
        stat = doc.stat()
    except SkillLoadError as exc:
        errors.append(reject(reason=exc.message))
        return None
    except (OSError, UnicodeDecodeError) as exc:
        errors.append(reject(reason=f"read_failed:{exc}"))
        return None

    if not is_valid_skill_name_slug(meta.skill_name):
        errors.append(reject(field="skill_name", actual=meta.skill_name, reason="invalid_skill_name_slug"))
        return None

    return Skill(
        space_id=space.id,
        source_id=source.id,
        namespace=space.namespace,
        skill_name=meta.skill_name,
        description=meta.description,
        locator=str(doc),
        path=real,
        body_size=int(stat.st_size),
        body_loader=_ContainedBody(doc, root_real),
        requires=meta.requires,
        skip_when=meta.skip_when,
        metadata={**meta.metadata, "updated_at": utc_from_timestamp_rfc3339(stat.st_mtime)},
        scope=meta.scope,
    )


def scan_filesystem_source(
    *,
    workspace_root: Path,
    scan_options: Dict[str, int | bool],
    space: SkillsConfig.Space,
    source: SkillsConfig.Source,
    sink: List[Skill],
    errors: List[FrameworkIssue],
) -> None:
    """Scan one filesystem root (front matter only; bodies load lazily)."""

    raw_root = optional_source_option(source.options, "root")
    if raw_root is None:
        errors.append(metadata_invalid(source_id=source.id, message="Filesystem source root is required."))
        return

    root = Path(raw_root).expanduser()
    if not root.is_absolute():
        root = (Path(workspace_root).resolve() / root).resolve()
    if not root.is_dir():
        logger.info("Skills root not found for source %s: %s", source.id, root)
        return

    root_real = root.resolve()
    for doc in _walk_documents(root, source_id=source.id, scan_options=scan_options, errors=errors):
        skill = _document_skill(
            doc,
            root=root,
            root_real=root_real,
            max_frontmatter_bytes=int(scan_options["max_frontmatter_bytes"]),
            space=space,
            source=source,
            errors=errors,
        )
        if skill is not None:
            sink.append(skill)
