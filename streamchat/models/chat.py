import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
)
from .base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(Base):
    __tablename__ = "conversation"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, index=True)


class Message(Base):
    __tablename__ = "message"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    # rows of a deleted conversation are removed by the database, not the store
    conversation_id = Column(
        String, ForeignKey("conversation.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(String(16), nullable=False)  # user or assistant
    content = Column(Text, nullable=False)
    sequence_order = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_message_conversation_order", "conversation_id", "sequence_order"),
    )
