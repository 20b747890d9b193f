from __future__ import annotations

from skills_catalog.skills.sources.filesystem import scan_filesystem_source
from skills_catalog.skills.sources.in_memory import scan_in_memory_source

SUPPORTED_SOURCE_TYPES = frozenset({"filesystem", "in-memory"})

__all__ = ["SUPPORTED_SOURCE_TYPES", "scan_filesystem_source", "scan_in_memory_source"]
