"""Typed message parts and the incremental stream events that build them."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

PartState = Literal["streaming", "done"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- message parts ---


class TextPart(_Frozen):
    type: Literal["text"] = "text"
    text: str = ""
    state: PartState = "streaming"


class ReasoningPart(_Frozen):
    type: Literal["reasoning"] = "reasoning"
    text: str = ""
    state: PartState = "streaming"


class FilePart(_Frozen):
    type: Literal["file"] = "file"
    url: str
    media_type: str = "application/octet-stream"
    filename: str | None = None


class SourceUrlPart(_Frozen):
    type: Literal["source-url"] = "source-url"
    source_id: str | None = None
    url: str
    title: str | None = None


class SourceDocumentPart(_Frozen):
    type: Literal["source-document"] = "source-document"
    source_id: str | None = None
    media_type: str = "text/plain"
    title: str
    filename: str | None = None


SourcePart = Annotated[
    Union[SourceUrlPart, SourceDocumentPart], Field(discriminator="type")
]

MessagePart = Annotated[
    Union[TextPart, ReasoningPart, FilePart, SourceUrlPart, SourceDocumentPart],
    Field(discriminator="type"),
]


# --- stream events ---


class TextDelta(_Frozen):
    type: Literal["text-delta"] = "text-delta"
    delta: str


class ReasoningDelta(_Frozen):
    type: Literal["reasoning-delta"] = "reasoning-delta"
    delta: str


class FileEvent(_Frozen):
    type: Literal["file"] = "file"
    url: str
    media_type: str = "application/octet-stream"
    filename: str | None = None


class SourceEvent(_Frozen):
    type: Literal["source"] = "source"
    source: SourcePart


class DoneEvent(_Frozen):
    """Terminal event; ``text`` is the provider's full-text result, if any."""

    type: Literal["done"] = "done"
    text: str | None = None
    finish_reason: str | None = "stop"


class ErrorEvent(_Frozen):
    type: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[
    Union[TextDelta, ReasoningDelta, FileEvent, SourceEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)
