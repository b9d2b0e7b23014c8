"""Normalize raw catalog rows into :class:`CreationEntry` models.

Catalog rows look like::

    "TM_1001": {
        "AchievementSafe": true,
        "Files": ["ccmod.esm", "ccmod - main.ba2"],
        "FilesSize": 1048576,
        "Timestamp": 1700000000,
        "Title": "Some Creation",
        "Version": "1.2"
    }

Resolution never fails: absent or malformed optional fields take defaults.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from Creationport.schemas import CatalogSnapshot, CreationEntry


def split_manifest_key(key: str) -> str:
    """Return the stable id from a ``<prefix>_<id>`` manifest key.

    A key without ``_`` is used whole as the id.
    """
    _prefix, sep, rest = key.partition("_")
    if not sep:
        return key
    return rest


def _as_size(raw: Mapping[str, Any]) -> int:
    value = raw.get("FilesSize", raw.get("FileSize", 0))
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    # json accepts Infinity and NaN
    if not math.isfinite(value):
        return 0
    return max(int(value), 0)


def _as_timestamp(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _as_files(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [f for f in value if isinstance(f, str) and f.strip()]


def resolve_entry(key: str, raw: Mapping[str, Any]) -> CreationEntry:
    title = raw.get("Title")
    version = raw.get("Version")
    return CreationEntry(
        id=split_manifest_key(key),
        manifest_key=key,
        title=title if isinstance(title, str) and title else key,
        version=str(version) if version is not None else "",
        files=_as_files(raw.get("Files")),
        file_size_bytes=_as_size(raw),
        timestamp=_as_timestamp(raw.get("Timestamp")),
        achievement_safe=raw.get("AchievementSafe") is True,
    )


def resolve_catalog(snapshot: CatalogSnapshot) -> list[CreationEntry]:
    """Resolve every row of a snapshot, preserving catalog order."""
    return [resolve_entry(key, row) for key, row in snapshot.items()]
