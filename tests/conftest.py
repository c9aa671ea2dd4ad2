import asyncio
from collections import Counter
from typing import AsyncIterator

import pytest

from streamchat.chat.events import DoneEvent, StreamEvent, TextDelta
from streamchat.db import create_db_engine, create_factory
from streamchat.db.crud_helper import ChatMessageCRUD, ConversationCRUD
from streamchat.db.store import SqlConversationStore
from streamchat.errors import StoreError
from streamchat.models.base import Base
from streamchat.models.chat import Conversation, Message
from streamchat.streaming.providers import ProviderRequest


class ScriptedProvider:
    """
    Plays back one scripted event list per ``stream`` call. A script ending
    in ``BLOCK`` hangs after its last event until the stream is cancelled.
    """

    BLOCK = object()

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests: list[ProviderRequest] = []
        self.blocked = asyncio.Event()
        self.closed = 0

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        script = self.scripts.pop(0) if len(self.scripts) > 1 else self.scripts[0]
        try:
            for event in script:
                if event is self.BLOCK:
                    self.blocked.set()
                    await asyncio.Event().wait()
                    continue
                yield event
        finally:
            self.closed += 1


class CountingStore:
    """Wraps a store, counting writes and optionally failing or delaying them."""

    def __init__(self, inner, fail_roles=(), delay: float = 0.0, fail_with=StoreError):
        self.inner = inner
        self.fail_roles = set(fail_roles)
        self.fail_with = fail_with
        self.delay = delay
        self.appends: Counter = Counter()

    async def create_conversation(self, title):
        return await self.inner.create_conversation(title)

    async def append_message(self, conversation_id, role, content):
        self.appends[role] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if role in self.fail_roles:
            raise self.fail_with(f"refusing to save {role} message")
        return await self.inner.append_message(conversation_id, role, content)

    async def touch_conversation(self, conversation_id):
        return await self.inner.touch_conversation(conversation_id)

    async def list_conversations(self):
        return await self.inner.list_conversations()

    async def load_messages(self, conversation_id):
        return await self.inner.load_messages(conversation_id)

    async def delete_conversation(self, conversation_id):
        return await self.inner.delete_conversation(conversation_id)

    async def delete_message(self, message_id):
        return await self.inner.delete_message(message_id)


def reply(*chunks: str, result: str | None = None) -> list:
    """Script for a plain text answer streamed in ``chunks``."""
    events: list = [TextDelta(delta=c) for c in chunks]
    events.append(DoneEvent(text="".join(chunks) if result is None else result))
    return events


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield create_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlConversationStore(
        conversations=ConversationCRUD(Conversation, session_factory=session_factory),
        messages=ChatMessageCRUD(Message, session_factory=session_factory),
    )
