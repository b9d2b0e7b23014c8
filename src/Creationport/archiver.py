"""Package a staged creation into a single zip artifact.

The archive is written inside the staging folder, never straight into the
downloads folder, so download watchers never see a half-written file. Moving
it into place and registering it is left to the caller.
"""

from __future__ import annotations

import hashlib
import secrets
import zipfile
from collections.abc import Callable
from pathlib import Path

import structlog

from Creationport.errors import ArchiveFailed
from Creationport.schemas import ArtifactInfo, StagedCreation

log = structlog.get_logger()

_CHUNK_SIZE = 1024 * 1024


def compute_md5(file_path: Path) -> str:
    h = hashlib.md5(usedforsecurity=False)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def new_archive_id() -> str:
    return secrets.token_hex(8)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log.warning("archive.discard_failed", path=str(path), error=str(exc))


def _write_zip(staging_path: Path, temp_path: Path) -> int:
    members = sorted(
        p for p in staging_path.rglob("*") if p.is_file() and p != temp_path
    )
    if not members:
        raise FileNotFoundError(f"No staged files found in {staging_path}")
    with zipfile.ZipFile(temp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for member in members:
            zf.write(member, member.relative_to(staging_path).as_posix())
    return len(members)


def create_archive(
    staged: StagedCreation,
    downloads_root: Path | str,
    *,
    progress: Callable[[str], None] | None = None,
) -> ArtifactInfo:
    """Zip ``staged`` and hash the result.

    On success the archive fields of ``staged`` are filled in. On failure only the
    temporary archive is removed. The staged files, and any archive an earlier
    import already placed in the downloads folder, are left as they are.
    """
    file_name = f"{staged.staging_id}.zip"
    temp_path = staged.staging_path / file_name
    destination = Path(downloads_root) / file_name

    try:
        if progress is not None:
            progress("Creating archive")
        count = _write_zip(staged.staging_path, temp_path)

        archive_id = new_archive_id()
        if progress is not None:
            progress("Creating archive MD5 hash")
        content_hash = compute_md5(temp_path)
        size = temp_path.stat().st_size
    except Exception as exc:
        _discard(temp_path)
        log.warning(
            "archive.failed",
            creation_id=staged.creation.id,
            path=str(temp_path),
            error=str(exc),
        )
        raise ArchiveFailed(exc) from exc

    staged.archive_id = archive_id
    staged.content_hash = content_hash
    staged.artifact_size_bytes = size
    log.info(
        "archive.created",
        creation_id=staged.creation.id,
        archive_id=archive_id,
        files=count,
        size=size,
        md5=content_hash,
    )
    return ArtifactInfo(
        archive_id=archive_id,
        file_name=file_name,
        temp_path=temp_path,
        destination=destination,
        content_hash=content_hash,
        size_bytes=size,
    )
