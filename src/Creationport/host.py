"""Apply a worker event stream to the host's download and mod registries."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import structlog

from Creationport.events.schemas import (
    ExitEvent,
    FatalEvent,
    ImportCompleteEvent,
    ImportedModEvent,
    ImportProgressEvent,
    PipelineEvent,
    RegisterArchiveEvent,
)
from Creationport.schemas import ImportResult

log = structlog.get_logger()


class DownloadRegistry(Protocol):
    def move_artifact(self, temp_path: Path, destination_dir: Path) -> Path: ...

    def register_local_artifact(self, artifact_id: str, product_key: str, file_name: str, size_bytes: int) -> None: ...

    def set_artifact_metadata(self, artifact_id: str, key: str, value: str) -> None: ...


class ModRegistry(Protocol):
    def add_mod_record(self, product_key: str, result: ImportResult) -> None: ...

    def set_mod_enabled(self, profile_id: str, mod_id: str, enabled: bool) -> None: ...

    def mark_deployment_required(self, product_key: str) -> None: ...


class Outcome(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"
    FATAL = "fatal"


@dataclass
class ImportSession:
    """Host-side bookkeeping for one import run.

    Feed every event to :meth:`handle`; :attr:`outcome` leaves ``RUNNING``
    once a terminal event arrives.
    """

    product_key: str
    profile_id: str
    downloads: DownloadRegistry
    mods: ModRegistry
    downloads_dir: Path
    outcome: Outcome = Outcome.RUNNING
    imported: list[ImportResult] = field(default_factory=list)
    archives: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    progress: ImportProgressEvent | None = None

    def handle(self, event: PipelineEvent) -> None:
        if isinstance(event, ImportProgressEvent):
            self.progress = event
        elif isinstance(event, RegisterArchiveEvent):
            self._register_archive(event)
        elif isinstance(event, ImportedModEvent):
            self.mods.add_mod_record(self.product_key, event.result)
            self.mods.set_mod_enabled(self.profile_id, event.result.id, True)
            self.imported.append(event.result)
        elif isinstance(event, ImportCompleteEvent):
            self._complete(event)
        elif isinstance(event, FatalEvent):
            self.errors.append(event.error)
            self.outcome = Outcome.FATAL
        elif isinstance(event, ExitEvent) and self.outcome is Outcome.RUNNING:
            # Worker died before reporting a result
            self.errors.append(f"Import worker exited with code {event.code}")
            self.outcome = Outcome.FATAL

    def _register_archive(self, event: RegisterArchiveEvent) -> None:
        final_path = self.downloads.move_artifact(Path(event.path), self.downloads_dir)
        self.downloads.register_local_artifact(event.id, self.product_key, event.file_name, event.size)
        self.downloads.set_artifact_metadata(event.id, "name", event.display_name)
        self.downloads.set_artifact_metadata(event.id, "version", event.display_version)
        self.downloads.set_artifact_metadata(event.id, "game", self.product_key)
        self.archives.append(final_path)
        log.info("host.archive_registered", archive_id=event.id, path=str(final_path))

    def _complete(self, event: ImportCompleteEvent) -> None:
        self.errors.extend(event.errors)
        if event.succeeded > 0:
            self.mods.mark_deployment_required(self.product_key)
        if event.cancelled:
            self.outcome = Outcome.CANCELLED
        elif event.errors:
            self.outcome = Outcome.COMPLETED_WITH_ERRORS
        else:
            self.outcome = Outcome.SUCCEEDED
        log.info(
            "host.import_finished",
            outcome=self.outcome.value,
            succeeded=event.succeeded,
            total=event.total,
        )

    @property
    def finished(self) -> bool:
        return self.outcome is not Outcome.RUNNING
