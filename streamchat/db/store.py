"""Conversation Store Adapter backed by the SQLAlchemy CRUD helpers."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal, Protocol

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError

from streamchat.db.crud_helper import (
    ChatMessageCRUD,
    ConversationCRUD,
    chat_message_crud,
    conversation_crud,
)
from streamchat.errors import StoreError
from streamchat.models.chat import Message

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


class ConversationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MessageRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    role: Role
    content: str
    sequence_order: int | None = None
    created_at: datetime | None = None


class ConversationStore(Protocol):
    """Keyed record store for conversations and their messages.

    Every operation may raise ``StoreError``. Implementations never retry.
    """

    async def create_conversation(self, title: str) -> str: ...

    async def append_message(
        self, conversation_id: str, role: Role, content: str
    ) -> str: ...

    async def touch_conversation(self, conversation_id: str) -> None: ...

    async def list_conversations(self) -> list[ConversationRecord]: ...

    async def load_messages(self, conversation_id: str) -> list[MessageRecord]: ...

    async def delete_conversation(self, conversation_id: str) -> bool: ...

    async def delete_message(self, message_id: str) -> bool: ...


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlConversationStore:
    def __init__(
        self,
        conversations: ConversationCRUD = conversation_crud,
        messages: ChatMessageCRUD = chat_message_crud,
    ) -> None:
        self.conversations = conversations
        self.messages = messages
        # sqlite engines share a single connection between threadpool workers
        self._lock = threading.Lock()

    def _locked(self, func: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return func(*args)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await run_in_threadpool(self._locked, func, *args)
        except SQLAlchemyError as e:
            raise StoreError(f"{func.__name__} failed: {e}") from e

    # --- blocking helpers, run in the threadpool ---

    def _create_conversation(self, title: str) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        return self.conversations.create_resource(
            {"title": title, "created_at": now, "updated_at": now}
        )

    def _append_message(
        self, conversation_id: str, role: Role, content: str
    ) -> dict[str, Any]:
        if self.conversations.get_resource(resource_id=conversation_id) is None:
            raise StoreError(f"Conversation {conversation_id} does not exist")
        last = self.messages.max_value(
            "sequence_order", where=[Message.conversation_id == conversation_id]
        )
        return self.messages.create_resource(
            {
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "sequence_order": (last or 0) + 1,
                "created_at": datetime.now(timezone.utc),
            }
        )

    def _touch_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        conv = self.conversations.get_resource(resource_id=conversation_id)
        if conv is None:
            return None
        now = datetime.now(timezone.utc)
        previous = conv.get("updated_at")
        if previous is not None and _as_utc(previous) >= now:
            now = _as_utc(previous) + timedelta(microseconds=1)
        return self.conversations.update_resource(
            {"updated_at": now}, resource_id=conversation_id
        )

    def _list_conversations(self) -> list[dict[str, Any]]:
        return self.conversations.list_resource(order_by=["-updated_at", "-created_at"])

    def _load_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        return self.messages.list_resource(
            where=[Message.conversation_id == conversation_id],
            order_by=["created_at", "sequence_order"],
        )

    # --- async surface ---

    async def create_conversation(self, title: str) -> str:
        conv = await self._run(self._create_conversation, title)
        logger.info(f"Created conversation {conv['id']}")
        return conv["id"]

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        conv = await self._run(self.conversations.get_resource, conversation_id)
        return ConversationRecord(**conv) if conv else None

    async def append_message(self, conversation_id: str, role: Role, content: str) -> str:
        msg = await self._run(self._append_message, conversation_id, role, content)
        return msg["id"]

    async def get_message(self, message_id: str) -> MessageRecord | None:
        msg = await self._run(self.messages.get_resource, message_id)
        return MessageRecord(**msg) if msg else None

    async def touch_conversation(self, conversation_id: str) -> None:
        conv = await self._run(self._touch_conversation, conversation_id)
        if conv is None:
            raise StoreError(f"Conversation {conversation_id} does not exist")

    async def list_conversations(self) -> list[ConversationRecord]:
        rows = await self._run(self._list_conversations)
        return [ConversationRecord(**row) for row in rows]

    async def load_messages(self, conversation_id: str) -> list[MessageRecord]:
        rows = await self._run(self._load_messages, conversation_id)
        return [MessageRecord(**row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        deleted = await self._run(self.conversations.delete_resource, conversation_id)
        return deleted is not None

    async def delete_message(self, message_id: str) -> bool:
        deleted = await self._run(self.messages.delete_resource, message_id)
        return deleted is not None

