from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from skills_catalog.core.errors import FrameworkIssue


def metadata_invalid(*, source_id: str, message: str = "Skill metadata is invalid.", **details: Any) -> FrameworkIssue:
    """Build the SKILL_SCAN_METADATA_INVALID issue shared by all sources."""

    payload: Dict[str, Any] = {"source_id": source_id}
    payload.update({k: v for k, v in details.items() if v is not None})
    return FrameworkIssue(code="SKILL_SCAN_METADATA_INVALID", message=message, details=payload)


def optional_source_option(options: Dict[str, Any], key: str) -> Optional[str]:
    """Return a stripped non-empty string option, or None."""

    value = options.get(key)
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def utc_from_timestamp_rfc3339(ts: float) -> str:
    """Convert UNIX timestamp to UTC RFC3339 string."""

    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat().replace("+00:00", "Z")
