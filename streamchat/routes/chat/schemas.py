from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from streamchat.streaming.providers import ChatTurn


class ConversationCreate(BaseModel):
    """Request model for creating a conversation"""
    title: str = Field(..., min_length=1, max_length=255, description="Title shown in the sidebar")

    model_config = ConfigDict(
        json_schema_extra={"example": {"title": "How do I reverse a list in Python?"}}
    )


class ConversationRead(BaseModel):
    """Response model for a stored conversation"""
    id: str = Field(..., description="Unique identifier for the conversation")
    title: str = Field(..., description="Title derived from the first user message")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Timestamp of the latest message")

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "a542db3f-0e80-4d34-8574-982966e038c6",
                "title": "How do I reverse a list in Python?",
                "created_at": "2025-07-06T17:47:24.660597+00:00",
                "updated_at": "2025-07-06T17:48:02.102811+00:00",
            }
        },
    )


class MessageCreate(BaseModel):
    """Request model for appending a message"""
    role: Literal["user", "assistant"] = Field(..., description="Role of the message sender")
    content: str = Field(..., min_length=1, description="Content of the message")


class MessageRead(BaseModel):
    """Response model for a stored message"""
    id: str
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    sequence_order: Optional[int] = Field(None, description="Order of message in conversation")
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StreamRequest(BaseModel):
    """Request model for a streamed assistant reply"""
    messages: List[ChatTurn] = Field(..., min_length=1, description="Prior turns, oldest first")
    system: Optional[str] = Field(None, description="System directive; the server default when omitted")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: Optional[int] = Field(None, gt=0, description="Output token ceiling")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"messages": [{"role": "user", "content": "Hello!"}]}
        }
    )


class ErrorResponse(BaseModel):
    """Error response model"""
    detail: str = Field(..., description="Error message")
