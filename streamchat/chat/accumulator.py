"""Message Accumulator: folds stream events into one in-progress message."""

import logging

from streamchat.chat.events import (
    DoneEvent,
    ErrorEvent,
    FileEvent,
    FilePart,
    MessagePart,
    ReasoningDelta,
    ReasoningPart,
    SourceEvent,
    StreamEvent,
    TextDelta,
    TextPart,
)

logger = logging.getLogger(__name__)


class MessageAccumulator:
    """
    Builds the ordered part list of one assistant message from stream events.

    Parts are immutable. Appending a delta replaces the open tail part with a
    new instance and everything before the tail is never touched again, so a
    snapshot taken between two ``apply`` calls never sees a torn part.

    Only text and reasoning parts are ever open. A change of part type closes
    the open part for good; file and source events append parts that are
    closed from the start.
    """

    def __init__(self) -> None:
        self._parts: list[MessagePart] = []
        self._frozen = False
        self.finished = False
        self.result_text: str | None = None
        self.finish_reason: str | None = None
        self.error: str | None = None

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def failed(self) -> bool:
        return self.error is not None

    def _open_part(self) -> TextPart | ReasoningPart | None:
        if not self._parts:
            return None
        last = self._parts[-1]
        if isinstance(last, (TextPart, ReasoningPart)) and last.state == "streaming":
            return last
        return None

    def _close_open_part(self) -> None:
        part = self._open_part()
        if part is not None:
            self._parts[-1] = part.model_copy(update={"state": "done"})

    def _append_delta(self, part_type: type[TextPart] | type[ReasoningPart], delta: str) -> None:
        part = self._open_part()
        if isinstance(part, part_type):
            self._parts[-1] = part.model_copy(update={"text": part.text + delta})
            return
        self._close_open_part()
        self._parts.append(part_type(text=delta))

    def apply(self, event: StreamEvent) -> bool:
        """Apply one event. Returns False when the accumulator is frozen."""
        if self._frozen:
            logger.debug(f"Ignoring {event.type} event on a frozen message")
            return False

        if isinstance(event, TextDelta):
            self._append_delta(TextPart, event.delta)
        elif isinstance(event, ReasoningDelta):
            self._append_delta(ReasoningPart, event.delta)
        elif isinstance(event, FileEvent):
            self._close_open_part()
            self._parts.append(
                FilePart(url=event.url, media_type=event.media_type, filename=event.filename)
            )
        elif isinstance(event, SourceEvent):
            self._close_open_part()
            self._parts.append(event.source)
        elif isinstance(event, DoneEvent):
            self._close_open_part()
            self.result_text = event.text
            self.finish_reason = event.finish_reason
            self.finished = True
            self._frozen = True
        elif isinstance(event, ErrorEvent):
            # parts stay as they were; the turn is never finalized
            self.error = event.message
            self._frozen = True
        else:
            raise TypeError(f"Unsupported stream event: {event!r}")
        return True

    def close(self) -> None:
        """Stop accepting events without failing the message (used on stop)."""
        self._close_open_part()
        self._frozen = True

    def snapshot(self) -> list[MessagePart]:
        # parts are frozen models, so a fresh list is an independent copy
        return list(self._parts)

    def text(self) -> str:
        return "".join(p.text for p in self._parts if isinstance(p, TextPart))
