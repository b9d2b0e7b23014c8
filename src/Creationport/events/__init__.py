"""Command/event contract between the import worker and its caller."""  # noqa: N999

from .envelope import decode_command, decode_event, encode_line, to_wire
from .schemas import (
    CancelCommand,
    ExitEvent,
    FatalEvent,
    ImportCommand,
    ImportCompleteEvent,
    ImportedModEvent,
    ImportProgressEvent,
    MessageEvent,
    PipelineCommand,
    PipelineEvent,
    RegisterArchiveEvent,
    ScanCommand,
    ScanCompleteEvent,
    ScanParsedEvent,
    ScanProgressEvent,
    UnknownCommand,
    UnknownEvent,
    is_terminal,
)

__all__ = [
    "CancelCommand",
    "ExitEvent",
    "FatalEvent",
    "ImportCommand",
    "ImportCompleteEvent",
    "ImportProgressEvent",
    "ImportedModEvent",
    "MessageEvent",
    "PipelineCommand",
    "PipelineEvent",
    "RegisterArchiveEvent",
    "ScanCommand",
    "ScanCompleteEvent",
    "ScanParsedEvent",
    "ScanProgressEvent",
    "UnknownCommand",
    "UnknownEvent",
    "decode_command",
    "decode_event",
    "encode_line",
    "is_terminal",
    "to_wire",
]
