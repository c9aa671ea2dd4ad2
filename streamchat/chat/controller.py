"""
Turn controller: the single owner of one chat view's state.

The UI calls ``send``, ``select_conversation``, ``new_conversation``,
``stop`` and ``regenerate_last`` synchronously. Each call schedules its work
on the running event loop and returns right away; listeners registered with
``subscribe`` are notified whenever the observable state changes.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from streamchat.chat.arbiter import CompletionArbiter, CompletionSignal, Turn, TurnState
from streamchat.chat.events import DoneEvent, ErrorEvent, MessagePart, TextPart
from streamchat.db.store import ConversationStore, MessageRecord, Role
from streamchat.errors import ChatError, StoreError, TransportError, TurnCancelledError
from streamchat.settings import Config, config
from streamchat.streaming.providers import ChatTurn, ProviderRequest, StreamProvider
from streamchat.utils.formatting import generate_conversation_title

logger = logging.getLogger(__name__)


class ChatStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    READY = "ready"
    ERROR = "error"


@dataclass
class ChatMessage:
    id: str
    role: Role
    parts: list[MessagePart] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    turn_id: str | None = None
    persisted: bool = False

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @classmethod
    def from_record(cls, record: MessageRecord) -> "ChatMessage":
        return cls(
            id=record.id,
            role=record.role,
            parts=[TextPart(text=record.content, state="done")],
            created_at=record.created_at or datetime.now(timezone.utc),
            persisted=True,
        )


Listener = Callable[["ChatController"], None]


def as_store_error(error: Exception) -> StoreError:
    """Failures an adapter did not classify are reported as store failures."""
    if isinstance(error, StoreError):
        return error
    logger.error(f"Unexpected store failure: {error!r}", exc_info=error)
    return StoreError(f"{type(error).__name__}: {error}")


class ChatController:
    def __init__(
        self,
        store: ConversationStore,
        provider: StreamProvider,
        settings: Config = config,
        arbiter: CompletionArbiter | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.settings = settings
        self.arbiter = arbiter or CompletionArbiter(store)

        self.conversation_id: str | None = None
        self.messages: list[ChatMessage] = []
        self.status = ChatStatus.IDLE
        self.loading = False
        self.last_error: ChatError | None = None
        self.current_turn: Turn | None = None

        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task] = set()
        self._signal_tasks: set[asyncio.Task] = set()
        self._stream_task: asyncio.Task | None = None
        self._stop_pending = False
        # bumped whenever the view switches conversation
        self._generation = 0

    # --- observation ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Chat listener failed: {e}", exc_info=True)

    def _set_status(self, status: ChatStatus) -> None:
        self.status = status
        self._notify()
        if status is ChatStatus.READY:
            self._watch_ready()

    @property
    def is_busy(self) -> bool:
        return self.status in (ChatStatus.SUBMITTED, ChatStatus.STREAMING)

    # --- task bookkeeping ---

    def _spawn(self, coro: Awaitable, signal: bool = False) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if signal:
            self._signal_tasks.add(task)
            task.add_done_callback(self._signal_tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every scheduled task, including spawned ones, is done."""
        while True:
            # tasks left over from an event loop that was torn down are done
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    async def _drain_signals(self) -> None:
        # finish the previous turn's write before the next message is stored
        pending = [t for t in self._signal_tasks if t is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending)

    def _record_failure(self, error: ChatError, context: str) -> None:
        logger.error(f"{context}: {error}")
        self.last_error = error
        self._set_status(ChatStatus.ERROR)

    # --- UI surface ---

    def send(self, text: str) -> asyncio.Task | None:
        content = text.strip()
        if not content:
            return None
        if len(content) > self.settings.max_message_length:
            raise ValueError(
                f"Message is longer than {self.settings.max_message_length} characters"
            )
        if self.is_busy:
            logger.warning("Ignoring send while a turn is in progress")
            return None
        self.last_error = None
        self._stop_pending = False
        self._set_status(ChatStatus.SUBMITTED)
        return self._spawn(self._submit(content, self._generation))

    def select_conversation(self, conversation_id: str) -> asyncio.Task:
        self.stop()
        self._generation += 1
        self.conversation_id = conversation_id
        self.current_turn = None
        self.messages = []
        self.last_error = None
        self.loading = True
        self._set_status(ChatStatus.IDLE)
        return self._spawn(self._load(conversation_id))

    def new_conversation(self) -> None:
        self.stop()
        self._generation += 1
        self.conversation_id = None
        self.current_turn = None
        self.messages = []
        self.last_error = None
        self._set_status(ChatStatus.IDLE)

    def stop(self) -> bool:
        """
        Abort the streaming turn. Its partial content is discarded: nothing
        from a stopped turn is ever persisted.
        """
        if self.status is ChatStatus.SUBMITTED and self._stream_task is None:
            self._stop_pending = True
            return True
        turn = self.current_turn
        if turn is None or turn.state is not TurnState.STREAMING or self._stream_task is None:
            return False
        turn.cancel_requested = True
        self._stream_task.cancel()
        return True

    def regenerate_last(self) -> asyncio.Task | None:
        if self.is_busy or self.conversation_id is None:
            return None
        if not any(m.role == "user" for m in self.messages):
            return None
        self.last_error = None
        self._stop_pending = False
        self._set_status(ChatStatus.SUBMITTED)
        return self._spawn(self._regenerate(self._generation))

    def poll(self) -> asyncio.Task | None:
        """Explicit status poll; finalizes a finished turn if nobody has yet."""
        turn = self.current_turn
        if turn is None or turn.terminal or self._stream_task is not None:
            return None
        if not (turn.accumulator.frozen or turn.cancel_requested):
            return None
        return self._spawn(self._signal(turn, CompletionSignal.POLL), signal=True)

    # --- internals ---

    async def _load(self, conversation_id: str) -> None:
        generation = self._generation
        try:
            records = await self.store.load_messages(conversation_id)
        except Exception as e:
            if generation == self._generation:
                self.loading = False
                self._record_failure(
                    as_store_error(e), f"Failed to load conversation {conversation_id}"
                )
            return
        if generation != self._generation:
            return
        self.messages = [ChatMessage.from_record(r) for r in records]
        self.loading = False
        self._notify()

    async def _submit(self, content: str, generation: int) -> None:
        await self._drain_signals()
        if generation != self._generation:
            return
        conversation_id = self.conversation_id
        user_message = ChatMessage(
            id="", role="user", parts=[TextPart(text=content, state="done")]
        )
        self.messages.append(user_message)
        self._notify()
        try:
            if conversation_id is None:
                title = generate_conversation_title(
                    content, self.settings.conversation_title_length
                )
                # id and title are assigned by a single insert
                conversation_id = await self.store.create_conversation(title)
                if generation == self._generation:
                    self.conversation_id = conversation_id
            user_message.id = await self.store.append_message(conversation_id, "user", content)
            user_message.persisted = True
            await self.store.touch_conversation(conversation_id)
        except Exception as e:
            if generation == self._generation:
                self._record_failure(as_store_error(e), "User message is shown but not saved")
            return
        if generation != self._generation:
            return
        await self._run_turn(conversation_id)

    async def _regenerate(self, generation: int) -> None:
        await self._drain_signals()
        if generation != self._generation or self.conversation_id is None:
            return
        last = self.messages[-1] if self.messages else None
        if last is not None and last.role == "assistant":
            if last.persisted:
                try:
                    await self.store.delete_message(last.id)
                except Exception as e:
                    self._record_failure(as_store_error(e), "Failed to remove the previous answer")
                    return
            if self.messages and self.messages[-1] is last:
                self.messages.pop()
            self._notify()
        await self._run_turn(self.conversation_id)

    def _build_request(self) -> ProviderRequest:
        return ProviderRequest(
            messages=[
                ChatTurn(role=m.role, content=m.text) for m in self.messages if m.text
            ],
            system=self.settings.system_prompt,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

    async def _run_turn(self, conversation_id: str) -> None:
        turn = Turn(conversation_id=conversation_id)
        self.current_turn = turn
        if self._stop_pending:
            self._stop_pending = False
            turn.cancel_requested = True
            self._discard_turn(turn, "Stopped before streaming started")
            return

        assistant = ChatMessage(id=turn.id, role="assistant", turn_id=turn.id)
        consume = asyncio.ensure_future(self._consume(turn, assistant, self._build_request()))
        self._stream_task = consume
        try:
            await asyncio.wait_for(consume, timeout=self.settings.stream_timeout_seconds)
        except asyncio.TimeoutError:
            self._fail_turn(
                turn,
                TransportError(
                    f"Model stream timed out after {self.settings.stream_timeout_seconds}s"
                ),
            )
            return
        except asyncio.CancelledError:
            if not turn.cancel_requested:
                self._discard_turn(turn, "Interrupted")
                raise
            self._discard_turn(turn, "Stopped by user")
            return
        except TransportError as e:
            self._fail_turn(turn, e)
            return
        except Exception as e:
            logger.error(f"Turn {turn.id} stream failed: {e!r}", exc_info=True)
            self._fail_turn(turn, TransportError(f"{type(e).__name__}: {e}"))
            return
        except BaseException:
            # UI runtimes abort a running script by raising out of a listener
            turn.cancel_requested = True
            self._discard_turn(turn, "Interrupted")
            raise
        finally:
            self._stream_task = None

        if turn.cancel_requested:
            self._discard_turn(turn, "Stopped by user")
            return
        # finish callback from the stream; the status watcher below races it
        self._spawn(self._signal(turn, CompletionSignal.FINISH), signal=True)
        if self.current_turn is turn:
            self._set_status(ChatStatus.READY)

    async def _consume(self, turn: Turn, assistant: ChatMessage, request: ProviderRequest) -> None:
        async with aclosing(self.provider.stream(request)) as events:
            async for event in events:
                if turn.cancel_requested:
                    return
                turn.accumulator.apply(event)
                assistant.parts = turn.accumulator.snapshot()
                if self.current_turn is turn:
                    if assistant not in self.messages and assistant.parts:
                        self.messages.append(assistant)
                    self.status = ChatStatus.STREAMING
                    self._notify()
                if isinstance(event, ErrorEvent):
                    raise TransportError(event.message)
                if isinstance(event, DoneEvent):
                    return
        raise TransportError("Model stream ended without a finish event")

    def _discard_turn(self, turn: Turn, reason: str) -> None:
        turn.accumulator.close()
        self.arbiter.fail(turn, TurnCancelledError(reason))
        if self.current_turn is turn:
            self._set_status(ChatStatus.READY)

    def _fail_turn(self, turn: Turn, error: ChatError) -> None:
        turn.accumulator.close()
        self.arbiter.fail(turn, error)
        if self.current_turn is turn:
            self._record_failure(error, f"Turn {turn.id} failed")

    def _watch_ready(self) -> None:
        turn = self.current_turn
        if turn is None or turn.terminal:
            return
        if not self.messages or self.messages[-1].role != "assistant":
            return
        self._spawn(self._signal(turn, CompletionSignal.READY), signal=True)

    async def _signal(self, turn: Turn, signal: CompletionSignal) -> None:
        try:
            persisted = await self.arbiter.complete(turn, signal)
        except StoreError as e:
            if self.current_turn is turn:
                self._record_failure(e, "Assistant message is shown but not saved")
            return
        if persisted:
            for message in self.messages:
                if message.turn_id == turn.id:
                    message.id = turn.message_id  # type: ignore[assignment]
                    message.persisted = True
            self._notify()
        elif (
            turn.failure is not None
            and not isinstance(turn.failure, TurnCancelledError)
            and self.current_turn is turn
            and self.last_error is not turn.failure
        ):
            self.last_error = turn.failure
            self._notify()
