"""Sequence scan and import runs and stream their events.

The orchestrator is the only component that talks to the event sink. The
components it drives (catalog, staging, archiver, cleanup) return values or
raise typed errors, which keeps them testable without a channel.

Batch policy: a creation that fails is recorded as an error string and the
batch moves on. Only catalog-level problems, or exceptions escaping the
per-creation boundary, end a run with a ``fatal`` event.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import structlog
from structlog.contextvars import bound_contextvars

from Creationport.archiver import create_archive
from Creationport.catalog import CatalogStore
from Creationport.cleanup import remove_source_files
from Creationport.config import Settings, TransferMode
from Creationport.entries import resolve_catalog
from Creationport.errors import (
    ArchiveFailed,
    Cancelled,
    CatalogError,
    CleanupFailed,
    ImportCreationError,
    OrchestratorBusy,
    StagingFailed,
)
from Creationport.events.schemas import (
    FatalEvent,
    ImportCompleteEvent,
    ImportedModEvent,
    ImportProgressEvent,
    MessageEvent,
    PipelineEvent,
    RegisterArchiveEvent,
    ScanCompleteEvent,
    ScanParsedEvent,
    ScanProgressEvent,
)
from Creationport.metrics import inc_counter, timed
from Creationport.schemas import CreationEntry, ImportResult
from Creationport.staging import stage_creation

log = structlog.get_logger()


class EventSink(Protocol):
    def send(self, event: PipelineEvent) -> None: ...


class ListSink:
    """Collects events in memory."""

    def __init__(self) -> None:
        self.events: list[PipelineEvent] = []

    def send(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def of_type(self, tag: str) -> list[PipelineEvent]:
        return [e for e in self.events if e.type == tag]


class CancellationToken:
    """Cooperative cancellation flag, polled between creations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("Import cancelled")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    IMPORTING = "importing"
    SCAN_COMPLETE = "scan_complete"
    IMPORT_COMPLETE = "import_complete"
    FATAL = "fatal"


class ItemState(str, Enum):
    PENDING = "pending"
    STAGING = "staging"
    ARCHIVING = "archiving"
    CLEANUP = "cleanup"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_BUSY_STATES = frozenset({RunState.SCANNING, RunState.IMPORTING})


@dataclass
class ItemOutcome:
    creation: CreationEntry
    state: ItemState = ItemState.PENDING
    result: ImportResult | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def imported(self) -> bool:
        return self.result is not None

    @property
    def catalog_removable(self) -> bool:
        """Only fully processed creations leave the catalog."""
        return self.state is ItemState.SUCCEEDED


@dataclass
class ImportSummary:
    requested: int
    outcomes: list[ItemOutcome] = field(default_factory=list)
    removed_keys: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.imported)

    @property
    def errors(self) -> list[str]:
        return [err for o in self.outcomes for err in o.errors]


def format_item_error(creation: CreationEntry, exc: ImportCreationError) -> str:
    return f"Failed to import {creation.title} ({creation.id}): {exc.describe()}"


class PipelineOrchestrator:
    def __init__(
        self,
        sink: EventSink,
        *,
        catalog: CatalogStore | None = None,
        settings: Settings | None = None,
    ):
        self.sink = sink
        self.settings = settings or Settings()
        self.catalog = catalog or CatalogStore(
            catalog_file_name=self.settings.catalog_file_name,
            product_dirs=self.settings.product_dirs,
        )
        self._state = RunState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state in _BUSY_STATES

    def _begin(self, state: RunState) -> None:
        with self._lock:
            if self._state in _BUSY_STATES:
                raise OrchestratorBusy(f"An operation is already running ({self._state.value})")
            self._state = state

    def _fatal(self, message: str) -> None:
        inc_counter("pipeline.fatal")
        self._state = RunState.FATAL
        self.sink.send(FatalEvent(error=message))

    def _load_creations(self, product_key: str, platform_data_root: Path | str) -> list[CreationEntry]:
        snapshot = self.catalog.load(product_key, platform_data_root)
        return resolve_catalog(snapshot)

    # -----------------------------
    # Scan
    # -----------------------------

    def scan(self, product_key: str, platform_data_root: Path | str) -> list[CreationEntry] | None:
        """Stream every catalog entry, then ``scancomplete``.

        Returns the entries, or ``None`` when the run ended in ``fatal``.
        """
        self._begin(RunState.SCANNING)
        with bound_contextvars(operation="scan", product_key=product_key):
            try:
                self.sink.send(
                    ScanProgressEvent(done=0, total=1, message="Reading creation info from the content catalog...")
                )
                creations = self._load_creations(product_key, platform_data_root)
                self.sink.send(
                    ScanProgressEvent(done=0, total=len(creations), message="Parsing catalog for creations...")
                )
                for creation in creations:
                    self.sink.send(ScanParsedEvent(id=creation.id, data=creation))
                self.sink.send(ScanCompleteEvent(total=len(creations), errors=[]))
            except CatalogError as exc:
                log.error("scan.fatal", error=str(exc))
                self._fatal(str(exc))
                return None
            except Exception as exc:
                log.exception("scan.unexpected_error")
                self._fatal(f"Unexpected error during scan: {exc}")
                return None

        inc_counter("scan.completed")
        inc_counter("scan.entries", len(creations))
        log.info("scan.completed", total=len(creations))
        self._state = RunState.SCAN_COMPLETE
        return creations

    # -----------------------------
    # Import
    # -----------------------------

    def import_creations(
        self,
        ids: Iterable[str],
        source_data_root: Path | str,
        product_key: str,
        platform_data_root: Path | str,
        staging_root: Path | str,
        downloads_root: Path | str,
        create_archives: bool,
        *,
        token: CancellationToken | None = None,
        transfer_mode: TransferMode | None = None,
    ) -> ImportSummary | None:
        """Import the requested creations one at a time.

        Returns the summary, or ``None`` when the run ended in ``fatal``.
        """
        self._begin(RunState.IMPORTING)
        token = token or CancellationToken()
        mode = transfer_mode or self.settings.transfer_mode
        wanted = set(ids)

        with bound_contextvars(operation="import", product_key=product_key):
            try:
                # The catalog on disk is authoritative; any caller-side scan may be stale
                creations = [
                    c for c in self._load_creations(product_key, platform_data_root) if c.id in wanted
                ]
                not_listed = wanted - {c.id for c in creations}
                if not_listed:
                    log.warning("importer.ids_not_in_catalog", ids=sorted(not_listed))

                summary = ImportSummary(requested=len(creations))
                log.info("importer.started", total=len(creations), archives=create_archives, mode=mode)
                for idx, creation in enumerate(creations):
                    try:
                        token.raise_if_cancelled()
                    except Cancelled:
                        summary.cancelled = True
                        inc_counter("importer.cancelled")
                        log.info("importer.cancelled", processed=idx, remaining=len(creations) - idx)
                        break
                    outcome = self._import_one(
                        idx,
                        len(creations),
                        creation,
                        source_data_root=Path(source_data_root),
                        product_key=product_key,
                        staging_root=Path(staging_root),
                        downloads_root=Path(downloads_root),
                        create_archives=create_archives,
                        mode=mode,
                    )
                    summary.outcomes.append(outcome)

                removable = [o.creation.manifest_key for o in summary.outcomes if o.catalog_removable]
                if removable:
                    report = self.catalog.remove_entries(product_key, platform_data_root, removable)
                    summary.removed_keys = list(report.removed)
                    if report.written:
                        inc_counter("catalog.rewritten")
                    self.sink.send(
                        MessageEvent(
                            level="info",
                            message=f"Removed {len(report.removed)} imported creation(s) from the content catalog",
                            metadata={
                                "removed": report.removed,
                                "missing": report.missing,
                                "backup": str(report.backup_path) if report.backup_path else None,
                            },
                        )
                    )
            except CatalogError as exc:
                log.error("importer.fatal", error=str(exc))
                self._fatal(str(exc))
                return None
            except Exception as exc:
                log.exception("importer.unexpected_error")
                self._fatal(f"Unexpected error during import: {exc}")
                return None

            self.sink.send(
                ImportCompleteEvent(
                    total=summary.total,
                    succeeded=summary.succeeded,
                    errors=summary.errors,
                    cancelled=summary.cancelled,
                )
            )
            log.info(
                "importer.completed",
                requested=summary.requested,
                total=summary.total,
                succeeded=summary.succeeded,
                errors=len(summary.errors),
                cancelled=summary.cancelled,
            )
        self._state = RunState.IMPORT_COMPLETE
        return summary

    def _import_one(
        self,
        idx: int,
        total: int,
        creation: CreationEntry,
        *,
        source_data_root: Path,
        product_key: str,
        staging_root: Path,
        downloads_root: Path,
        create_archives: bool,
        mode: TransferMode,
    ) -> ItemOutcome:
        outcome = ItemOutcome(creation)
        progress = ImportProgressEvent(done=idx, total=total, message=f'Importing "{creation.title}"...')
        self.sink.send(progress)

        def report(detail: str) -> None:
            self.sink.send(progress.model_copy(update={"detail": detail}))

        with timed("importer.creation.ms"):
            outcome.state = ItemState.STAGING
            try:
                staged = stage_creation(
                    creation,
                    source_data_root,
                    staging_root,
                    mode=mode,
                    id_prefix=self.settings.staging_id_prefix,
                    progress=report,
                )
            except StagingFailed as exc:
                outcome.state = ItemState.FAILED
                outcome.errors.append(format_item_error(creation, exc))
                inc_counter("importer.creation.failed")
                log.warning("importer.creation_failed", creation_id=creation.id, stage=exc.stage, error=exc.describe())
                return outcome

            archive = None
            if create_archives:
                outcome.state = ItemState.ARCHIVING
                try:
                    artifact = create_archive(staged, downloads_root, progress=report)
                except ArchiveFailed as exc:
                    # Staged files stay; only the backup archive is missing
                    outcome.errors.append(format_item_error(creation, exc))
                    inc_counter("importer.archive.failed")
                    log.warning("importer.archive_failed", creation_id=creation.id, error=str(exc))
                else:
                    report("Moving archive to downloads")
                    self.sink.send(
                        RegisterArchiveEvent(
                            id=artifact.archive_id,
                            file_name=artifact.file_name,
                            path=str(artifact.temp_path),
                            size=artifact.size_bytes,
                            display_name=creation.title,
                            display_version=creation.version,
                        )
                    )
                    archive = staged.archive_reference(artifact.file_name)

            outcome.result = ImportResult.from_creation(
                creation,
                staged_id=staged.staging_id,
                product_key=product_key,
                archive=archive,
            )
            self.sink.send(ImportedModEvent(result=outcome.result))
            inc_counter("importer.creation.imported")

            outcome.state = ItemState.CLEANUP
            try:
                remove_source_files(creation, source_data_root, staged.staging_path, progress=report)
            except CleanupFailed as exc:
                outcome.state = ItemState.FAILED
                outcome.errors.append(format_item_error(creation, exc))
                inc_counter("importer.cleanup.failed")
                log.warning("importer.cleanup_failed", creation_id=creation.id, error=exc.describe())
                return outcome

            outcome.state = ItemState.SUCCEEDED
            return outcome
