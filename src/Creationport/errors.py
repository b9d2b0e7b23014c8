"""Error taxonomy for the creation import pipeline.

Catalog-level errors stop a run and are reported as ``fatal`` events.
Per-creation errors (:class:`ImportCreationError` and subclasses) are caught
at the item boundary, formatted, and collected while the batch continues.
"""

from __future__ import annotations

from typing import Literal

ImportStage = Literal["import-files", "create-archive", "remove-files"]


class CreationportError(Exception):
    """Base class for all pipeline errors."""


# -----------------------------
# Catalog level (fatal for a run)
# -----------------------------


class CatalogError(CreationportError):
    """Base for errors raised while reading or rewriting the catalog."""


class UnsupportedProduct(CatalogError):
    def __init__(self, product_key: str):
        super().__init__(f"No catalog location is known for product '{product_key}'")
        self.product_key = product_key


class CatalogNotFound(CatalogError):
    """The catalog file does not exist. Callers treat this as zero entries."""


class CorruptCatalog(CatalogError):
    pass


class CatalogIOError(CatalogError):
    pass


# -----------------------------
# Per creation (soft, collected per batch)
# -----------------------------


class ImportCreationError(CreationportError):
    """A single creation failed at one stage of the import.

    ``file_errors`` maps the catalog-relative path of each failing file to a
    human-readable reason.
    """

    stage: ImportStage = "import-files"

    def __init__(self, message: str, file_errors: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.file_errors: dict[str, str] = dict(file_errors or {})

    def describe(self) -> str:
        lines = [self.message]
        for name, reason in self.file_errors.items():
            lines.append(f"  {name}: {reason}")
        return "\n".join(lines)


class StagingFailed(ImportCreationError):
    stage: ImportStage = "import-files"


class ArchiveFailed(ImportCreationError):
    stage: ImportStage = "create-archive"

    def __init__(self, cause: BaseException):
        super().__init__(f"Failed to pack archive: {cause}")
        self.cause = cause


class CleanupFailed(ImportCreationError):
    stage: ImportStage = "remove-files"


# -----------------------------
# Control flow and protocol
# -----------------------------


class Cancelled(CreationportError):
    """Raised when a cooperative cancellation is observed. Not an error to users."""


class OrchestratorBusy(CreationportError):
    """A scan or import is already running."""


class ProtocolError(CreationportError):
    """A wire line could not be decoded into a command or event."""


__all__ = [
    "ArchiveFailed",
    "Cancelled",
    "CatalogError",
    "CatalogIOError",
    "CatalogNotFound",
    "CleanupFailed",
    "CorruptCatalog",
    "CreationportError",
    "ImportCreationError",
    "ImportStage",
    "OrchestratorBusy",
    "ProtocolError",
    "StagingFailed",
    "UnsupportedProduct",
]
