"""Remove a creation's original files once their staged copies are in place."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import structlog

from Creationport.errors import CleanupFailed
from Creationport.schemas import CreationEntry
from Creationport.staging import resolve_under

log = structlog.get_logger()


def _staged_copy_ok(staged_file: Path) -> bool:
    return staged_file.is_file() and os.access(staged_file, os.R_OK)


def remove_source_files(
    creation: CreationEntry,
    source_data_root: Path | str,
    staging_path: Path | str,
    *,
    progress: Callable[[str], None] | None = None,
) -> list[str]:
    """Delete each source file whose staged copy exists and is readable.

    Returns the catalog-relative paths that were removed or already absent.
    A source whose staged copy is missing is never touched.
    """
    source_root = Path(source_data_root)
    staging_root = Path(staging_path)
    if progress is not None:
        progress("Removing copied files")

    removed: list[str] = []
    errors: dict[str, str] = {}
    for rel_path in creation.files:
        try:
            source = resolve_under(source_root, rel_path)
            staged = resolve_under(staging_root, rel_path)
        except ValueError as exc:
            errors[rel_path] = str(exc)
            continue

        if not _staged_copy_ok(staged):
            errors[rel_path] = (
                f"Imported file does not exist for {creation.title} at {staged}. "
                f"The original file has not been deleted from {source}"
            )
            log.warning("cleanup.staged_copy_missing", file=rel_path, staged=str(staged))
            continue

        try:
            source.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            errors[rel_path] = str(exc)
            log.warning("cleanup.remove_failed", file=rel_path, source=str(source), error=str(exc))
            continue
        removed.append(rel_path)

    if errors:
        raise CleanupFailed("Unexpected error cleaning up imported files", errors)
    log.info("cleanup.completed", creation_id=creation.id, removed=len(removed))
    return removed
