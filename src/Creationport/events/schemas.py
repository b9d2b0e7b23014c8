"""Tagged command and event models exchanged with the import worker.

Every model carries a literal ``type`` tag. Field names travel in camelCase
on the wire (``productKey``, ``createArchives``) and are snake_case in Python.
Tags this version does not know decode to :class:`UnknownCommand` /
:class:`UnknownEvent` so newer peers do not break older ones.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from Creationport.config import TransferMode
from Creationport.schemas import CreationEntry, ImportResult


class WireModel(BaseModel):
    model_config = dict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# -----------------------------
# Commands (caller -> worker)
# -----------------------------


class CancelCommand(WireModel):
    type: Literal["cancel"] = "cancel"


class ScanCommand(WireModel):
    type: Literal["scan"] = "scan"
    product_key: str
    platform_data_root: str


class ImportCommand(WireModel):
    type: Literal["import"] = "import"
    ids: list[str]
    source_data_root: str
    product_key: str
    platform_data_root: str
    staging_root: str
    downloads_root: str
    create_archives: bool = True
    # None defers to the worker's own settings
    transfer_mode: TransferMode | None = None


class UnknownCommand(WireModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


KnownCommand = Annotated[
    Union[CancelCommand, ScanCommand, ImportCommand],
    Field(discriminator="type"),
]
PipelineCommand = CancelCommand | ScanCommand | ImportCommand | UnknownCommand

COMMAND_TYPES = frozenset({"cancel", "scan", "import"})


# -----------------------------
# Events (worker -> caller)
# -----------------------------


class FatalEvent(WireModel):
    type: Literal["fatal"] = "fatal"
    error: str


class ExitEvent(WireModel):
    type: Literal["exit"] = "exit"
    code: int | None = None


class MessageEvent(WireModel):
    type: Literal["message"] = "message"
    level: str = "info"
    message: str
    metadata: dict[str, Any] | None = None


class ScanProgressEvent(WireModel):
    type: Literal["scanprogress"] = "scanprogress"
    done: int
    total: int
    message: str


class ScanParsedEvent(WireModel):
    type: Literal["scanparsed"] = "scanparsed"
    id: str
    data: CreationEntry


class ScanCompleteEvent(WireModel):
    type: Literal["scancomplete"] = "scancomplete"
    total: int
    errors: list[str] = Field(default_factory=list)


class ImportedModEvent(WireModel):
    type: Literal["importedmod"] = "importedmod"
    result: ImportResult


class ImportProgressEvent(WireModel):
    type: Literal["importprogress"] = "importprogress"
    done: int
    total: int
    message: str
    detail: str | None = None


class RegisterArchiveEvent(WireModel):
    type: Literal["register-archive"] = "register-archive"
    id: str
    file_name: str
    path: str
    size: int
    display_name: str
    display_version: str


class ImportCompleteEvent(WireModel):
    type: Literal["importcomplete"] = "importcomplete"
    total: int
    succeeded: int
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False


class UnknownEvent(WireModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[
        FatalEvent,
        ExitEvent,
        MessageEvent,
        ScanProgressEvent,
        ScanParsedEvent,
        ScanCompleteEvent,
        ImportedModEvent,
        ImportProgressEvent,
        RegisterArchiveEvent,
        ImportCompleteEvent,
    ],
    Field(discriminator="type"),
]
PipelineEvent = (
    FatalEvent
    | ExitEvent
    | MessageEvent
    | ScanProgressEvent
    | ScanParsedEvent
    | ScanCompleteEvent
    | ImportedModEvent
    | ImportProgressEvent
    | RegisterArchiveEvent
    | ImportCompleteEvent
    | UnknownEvent
)

EVENT_TYPES = frozenset(
    {
        "fatal",
        "exit",
        "message",
        "scanprogress",
        "scanparsed",
        "scancomplete",
        "importedmod",
        "importprogress",
        "register-archive",
        "importcomplete",
    }
)
TERMINAL_EVENT_TYPES = frozenset({"scancomplete", "importcomplete", "fatal", "exit"})


def is_terminal(event: PipelineEvent) -> bool:
    return event.type in TERMINAL_EVENT_TYPES
