"""Line framing for the worker control channel.

One JSON object per line, UTF-8, in both directions. Known tags are validated
with pydantic at the boundary; unknown tags are preserved verbatim.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import orjson
from pydantic import BaseModel, TypeAdapter, ValidationError

from Creationport.errors import ProtocolError
from Creationport.events.schemas import (
    COMMAND_TYPES,
    EVENT_TYPES,
    KnownCommand,
    KnownEvent,
    PipelineCommand,
    PipelineEvent,
    UnknownCommand,
    UnknownEvent,
)

_COMMAND_ADAPTER: TypeAdapter[Any] = TypeAdapter(KnownCommand)
_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(KnownEvent)


def to_wire(model: BaseModel) -> dict[str, Any]:
    if isinstance(model, UnknownCommand | UnknownEvent):
        return {**model.payload, "type": model.type}
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_line(model: BaseModel) -> bytes:
    return orjson.dumps(to_wire(model)) + b"\n"


def _load(line: bytes | str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(line, Mapping):
        data: Any = dict(line)
    else:
        try:
            data = orjson.loads(line)
        except orjson.JSONDecodeError as exc:
            raise ProtocolError(f"Malformed message: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    if not isinstance(data.get("type"), str):
        raise ProtocolError("Message has no 'type' tag")
    return data


def decode_command(line: bytes | str | Mapping[str, Any]) -> PipelineCommand:
    data = _load(line)
    tag = data["type"]
    if tag not in COMMAND_TYPES:
        return UnknownCommand(type=tag, payload={k: v for k, v in data.items() if k != "type"})
    try:
        return _COMMAND_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid '{tag}' command: {exc}") from exc


def decode_event(line: bytes | str | Mapping[str, Any]) -> PipelineEvent:
    data = _load(line)
    tag = data["type"]
    if tag not in EVENT_TYPES:
        return UnknownEvent(type=tag, payload={k: v for k, v in data.items() if k != "type"})
    try:
        return _EVENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid '{tag}' event: {exc}") from exc
