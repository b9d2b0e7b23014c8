"""Transfer a creation's files from the source data tree into staging.

Every file is attempted even after a failure so the caller sees the whole
failure set. When anything fails, files already moved are put back where they
came from and the staging directory is removed.
"""

from __future__ import annotations

import errno
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath

import structlog

from Creationport.config import TransferMode
from Creationport.errors import StagingFailed
from Creationport.schemas import CreationEntry, StagedCreation

log = structlog.get_logger()

ProgressCallback = Callable[[str], None]


@dataclass(frozen=True)
class _Transfer:
    rel_path: str
    source: Path
    target: Path
    source_removed: bool


def staging_id_for(creation: CreationEntry, prefix: str = "bethesdanet") -> str:
    return f"{prefix}-{creation.id}-{creation.version}"


def _rename(source: Path, target: Path) -> None:
    os.rename(source, target)


def _copy(source: Path, target: Path) -> None:
    shutil.copy2(source, target)


def resolve_under(root: Path, rel_path: str) -> Path:
    """Join ``rel_path`` onto ``root``, refusing paths that leave ``root``."""
    rel = Path(rel_path.replace("\\", "/"))
    if rel.is_absolute() or PureWindowsPath(rel_path).is_absolute() or ".." in rel.parts:
        raise ValueError(f"Path must be relative to the data folder: {rel_path}")
    candidate = (root / rel).resolve()
    try:
        candidate.relative_to(root.resolve())
    except ValueError as exc:
        raise ValueError(f"Path escapes the data folder: {rel_path}") from exc
    return root / rel


def _move_across_devices(source: Path, target: Path) -> None:
    _copy(source, target)
    if not target.is_file() or target.stat().st_size != source.stat().st_size:
        target.unlink(missing_ok=True)
        raise OSError(f"Copy of {source.name} could not be verified")
    source.unlink()


def _transfer_file(source: Path, target: Path, mode: TransferMode) -> bool:
    """Transfer one file. Returns True when the source no longer exists."""
    if not source.is_file():
        raise FileNotFoundError(errno.ENOENT, "Source file not found", str(source))
    target.parent.mkdir(parents=True, exist_ok=True)
    if mode == "copy":
        _copy(source, target)
        return False
    try:
        _rename(source, target)
        return True
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
    log.debug("staging.cross_device_fallback", source=str(source), target=str(target))
    _move_across_devices(source, target)
    return True


def _restore(transfer: _Transfer) -> None:
    try:
        _rename(transfer.target, transfer.source)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        _move_across_devices(transfer.target, transfer.source)


def _rollback(staging_path: Path, done: list[_Transfer]) -> dict[str, str]:
    """Return moved files to the source tree, then drop the staging folder.

    The staging folder is kept if any file could not be restored, since it
    then holds the only copy.
    """
    restore_errors: dict[str, str] = {}
    for transfer in done:
        if not transfer.source_removed:
            continue
        try:
            _restore(transfer)
        except OSError as exc:
            restore_errors[transfer.rel_path] = f"could not be restored: {exc}"
            log.error(
                "staging.restore_failed",
                file=transfer.rel_path,
                staged=str(transfer.target),
                error=str(exc),
            )
    if restore_errors:
        return restore_errors
    try:
        shutil.rmtree(staging_path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("staging.remove_failed", path=str(staging_path), error=str(exc))
    return restore_errors


def _recover_stale(creation: CreationEntry, source_root: Path, staging_path: Path) -> None:
    """Put back files an interrupted earlier run left only in ``staging_path``.

    Raises :class:`StagingFailed` and leaves the folder alone if any such file
    cannot be restored.
    """
    failed: dict[str, str] = {}
    for rel_path in creation.files:
        try:
            source = resolve_under(source_root, rel_path)
            staged = resolve_under(staging_path, rel_path)
        except ValueError:
            continue
        if source.exists() or not staged.is_file():
            continue
        try:
            source.parent.mkdir(parents=True, exist_ok=True)
            _restore(_Transfer(rel_path, source, staged, source_removed=True))
        except OSError as exc:
            failed[rel_path] = f"only copy is in {staging_path} and could not be restored: {exc}"
            log.error("staging.stale_restore_failed", file=rel_path, staged=str(staged), error=str(exc))
            continue
        log.info("staging.stale_file_restored", file=rel_path, source=str(source))
    if failed:
        raise StagingFailed("Files left by an earlier import could not be recovered", failed)


def stage_creation(
    creation: CreationEntry,
    source_data_root: Path | str,
    staging_root: Path | str,
    *,
    mode: TransferMode = "move",
    id_prefix: str = "bethesdanet",
    progress: ProgressCallback | None = None,
) -> StagedCreation:
    source_root = Path(source_data_root)
    staging_id = staging_id_for(creation, id_prefix)
    staging_path = Path(staging_root) / staging_id

    if not creation.files:
        raise StagingFailed("No files are listed for this creation")

    if staging_path.exists():
        _recover_stale(creation, source_root, staging_path)

    try:
        # Never reuse partial state from an earlier run
        if staging_path.exists():
            log.info("staging.stale_removed", path=str(staging_path))
            shutil.rmtree(staging_path)
        staging_path.mkdir(parents=True)
    except OSError as exc:
        raise StagingFailed(f"Could not prepare staging folder {staging_path}: {exc}") from exc

    done: list[_Transfer] = []
    failed: dict[str, str] = {}
    for rel_path in creation.files:
        if progress is not None:
            progress(f"Importing {Path(rel_path).name}")
        try:
            source = resolve_under(source_root, rel_path)
            target = resolve_under(staging_path, rel_path)
            removed = _transfer_file(source, target, mode)
        except (OSError, ValueError) as exc:
            failed[rel_path] = str(exc)
            log.warning(
                "staging.file_failed",
                creation_id=creation.id,
                file=rel_path,
                error=str(exc),
            )
            continue
        done.append(_Transfer(rel_path, source, target, removed))

    if failed:
        restore_errors = _rollback(staging_path, done)
        failed.update(restore_errors)
        raise StagingFailed("Copying files failed", failed)

    log.info(
        "staging.completed",
        creation_id=creation.id,
        path=str(staging_path),
        files=len(done),
        mode=mode,
    )
    return StagedCreation(
        creation=creation,
        staging_id=staging_id,
        staging_path=staging_path,
        transferred=[t.rel_path for t in done],
    )
