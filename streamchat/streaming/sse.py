"""Server-sent-event framing for stream events."""

from typing import AsyncIterable, AsyncIterator

from pydantic import ValidationError

from streamchat.chat.events import StreamEvent, stream_event_adapter
from streamchat.errors import TransportError


def encode_event(event: StreamEvent) -> str:
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


def decode_line(line: str) -> StreamEvent | None:
    """
    Decode one SSE line. Blank lines, comments, non-data fields and the
    ``[DONE]`` sentinel decode to None.
    """
    line = line.rstrip("\r\n")
    if not line or line.startswith(":"):
        return None
    name, _, value = line.partition(":")
    if name != "data":
        return None
    if value.startswith(" "):
        value = value[1:]
    if value == "[DONE]":
        return None
    try:
        return stream_event_adapter.validate_json(value)
    except ValidationError as e:
        raise TransportError(f"Malformed stream event: {value[:200]}") from e


async def decode_stream(lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    async for line in lines:
        event = decode_line(line)
        if event is not None:
            yield event
