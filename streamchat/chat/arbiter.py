"""
Completion Arbiter.

Three independent signals can report that an assistant turn is over: the
stream's finish callback, the controller's status watcher seeing ``ready``
with an assistant message on top, and an explicit poll. Whatever order they
fire in, and however often, the turn is persisted at most once.

The claim is a plain check-and-set with no ``await`` in it. Every signal
handler runs on the same event loop, so nothing can interleave between the
check and the set.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, NamedTuple, Sequence

from streamchat.chat.accumulator import MessageAccumulator
from streamchat.chat.events import MessagePart, TextPart
from streamchat.db.store import ConversationStore
from streamchat.errors import (
    ChatError,
    EmptyContentError,
    StoreError,
    TransportError,
    TurnCancelledError,
)

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    STREAMING = "streaming"
    FINISHING = "finishing"
    PERSISTED = "persisted"
    FAILED = "failed"


class CompletionSignal(str, Enum):
    FINISH = "finish"
    READY = "ready"
    POLL = "poll"


@dataclass
class Turn:
    conversation_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    accumulator: MessageAccumulator = field(default_factory=MessageAccumulator)
    state: TurnState = TurnState.STREAMING
    cancel_requested: bool = False
    message_id: str | None = None
    failure: ChatError | None = None

    @property
    def terminal(self) -> bool:
        return self.state in (TurnState.PERSISTED, TurnState.FAILED)


class ExtractedContent(NamedTuple):
    content: str
    rule: str


ExtractionRule = Callable[[str | None, Sequence[MessagePart]], str | None]


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def from_result_text(result_text: str | None, parts: Sequence[MessagePart]) -> str | None:
    return result_text if _has_text(result_text) else None


def from_done_text_part(result_text: str | None, parts: Sequence[MessagePart]) -> str | None:
    for part in parts:
        if isinstance(part, TextPart) and part.state == "done" and _has_text(part.text):
            return part.text
    return None


def from_first_text_part(result_text: str | None, parts: Sequence[MessagePart]) -> str | None:
    for part in parts:
        if isinstance(part, TextPart) and _has_text(part.text):
            return part.text
    return None


EXTRACTION_RULES: tuple[tuple[str, ExtractionRule], ...] = (
    ("result-text", from_result_text),
    ("done-text-part", from_done_text_part),
    ("first-text-part", from_first_text_part),
)


def extract_final_content(
    result_text: str | None,
    parts: Sequence[MessagePart],
    rules: Sequence[tuple[str, ExtractionRule]] = EXTRACTION_RULES,
) -> ExtractedContent | None:
    """Return the content of the first rule that matches, or None."""
    for name, rule in rules:
        content = rule(result_text, parts)
        if content is not None:
            return ExtractedContent(content=content, rule=name)
    return None


class CompletionArbiter:
    def __init__(self, store: ConversationStore) -> None:
        self.store = store
        # ids of turns claimed but not yet terminal
        self._finishing: set[str] = set()

    @property
    def in_flight(self) -> int:
        return len(self._finishing)

    def claim(self, turn: Turn) -> bool:
        # must stay free of suspension points
        if turn.id in self._finishing or turn.state is not TurnState.STREAMING:
            return False
        self._finishing.add(turn.id)
        turn.state = TurnState.FINISHING
        return True

    def fail(self, turn: Turn, error: ChatError) -> bool:
        if turn.terminal:
            return False
        turn.state = TurnState.FAILED
        turn.failure = error
        if isinstance(error, TurnCancelledError):
            logger.info(f"Turn {turn.id} cancelled, partial content discarded")
        else:
            logger.warning(f"Turn {turn.id} failed: {error}")
        return True

    async def complete(self, turn: Turn, signal: CompletionSignal) -> bool:
        """
        Finalize ``turn`` in response to ``signal``.

        Returns True only for the one call that persisted the message.
        Raises StoreError when the datastore rejects the write; the turn is
        then failed and later signals will not retry it.
        """
        if turn.state is TurnState.STREAMING:
            if turn.cancel_requested:
                self.fail(turn, TurnCancelledError("Turn was stopped before it finished"))
            elif turn.accumulator.failed:
                self.fail(turn, TransportError(turn.accumulator.error or "stream error"))

        if not self.claim(turn):
            logger.debug(f"Ignoring {signal.value} signal for turn {turn.id} ({turn.state.value})")
            return False
        try:
            return await self._persist(turn, signal)
        finally:
            self._finishing.discard(turn.id)

    async def _persist(self, turn: Turn, signal: CompletionSignal) -> bool:
        extracted = extract_final_content(
            turn.accumulator.result_text, turn.accumulator.snapshot()
        )
        if extracted is None:
            error = EmptyContentError(f"Turn {turn.id} finished without any text content")
            turn.state = TurnState.FAILED
            turn.failure = error
            logger.error(f"Not saving assistant message: {error}")
            return False

        logger.info(
            f"Saving turn {turn.id} on {signal.value} signal using the {extracted.rule} rule"
        )
        try:
            turn.message_id = await self.store.append_message(
                turn.conversation_id, "assistant", extracted.content
            )
            await self.store.touch_conversation(turn.conversation_id)
        except Exception as e:
            error = e if isinstance(e, StoreError) else StoreError(f"{type(e).__name__}: {e}")
            turn.state = TurnState.FAILED
            turn.failure = error
            logger.error(
                f"Assistant message for turn {turn.id} is shown but not saved: {e!r}",
                exc_info=error is not e,
            )
            if error is e:
                raise
            raise error from e

        turn.state = TurnState.PERSISTED
        return True
