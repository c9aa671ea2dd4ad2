"""Language-model stream providers."""

import logging
from typing import Any, AsyncIterator, Iterator, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel, Field

from streamchat.chat.events import (
    DoneEvent,
    ErrorEvent,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
)
from streamchat.db.store import Role
from streamchat.settings import Config, config

logger = logging.getLogger(__name__)


class ChatTurn(BaseModel):
    role: Role
    content: str


class ProviderRequest(BaseModel):
    """Request model for one streamed completion"""

    messages: list[ChatTurn] = Field(..., min_length=1, description="Prior turns, oldest first")
    system: str | None = Field(None, description="System directive")
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, gt=0)


class StreamProvider(Protocol):
    """
    Streams one completion as typed events. The sequence ends with exactly
    one ``done`` or ``error`` event.
    """

    def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]: ...


class GeminiStreamProvider:
    def __init__(self, llm: BaseChatModel | None = None, settings: Config = config) -> None:
        self.settings = settings
        self._llm = llm

    def _build_llm(self, request: ProviderRequest) -> BaseChatModel:
        if self._llm is not None:
            return self._llm
        return ChatGoogleGenerativeAI(
            model=self.settings.gemini_model,
            google_api_key=self.settings.gemini_api_key,
            temperature=(
                request.temperature
                if request.temperature is not None
                else self.settings.temperature
            ),
            max_output_tokens=request.max_tokens or self.settings.max_tokens,
        )

    @staticmethod
    def to_langchain_messages(request: ProviderRequest) -> list[BaseMessage]:
        history: list[BaseMessage] = []
        if request.system:
            history.append(SystemMessage(content=request.system))
        for turn in request.messages:
            if turn.role == "user":
                history.append(HumanMessage(content=turn.content))
            else:
                history.append(AIMessage(content=turn.content))
        return history

    @staticmethod
    def chunk_events(content: Any) -> Iterator[StreamEvent]:
        """Translate the content of one model chunk into delta events."""
        if isinstance(content, str):
            if content:
                yield TextDelta(delta=content)
            return
        for block in content or []:
            if isinstance(block, str):
                if block:
                    yield TextDelta(delta=block)
            elif isinstance(block, dict):
                if block.get("type") == "text" and block.get("text"):
                    yield TextDelta(delta=block["text"])
                elif block.get("type") in ("thinking", "reasoning"):
                    thought = block.get("thinking") or block.get("reasoning")
                    if thought:
                        yield ReasoningDelta(delta=thought)

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        text_parts: list[str] = []
        finish_reason = None
        try:
            llm = self._build_llm(request)
            async for chunk in llm.astream(self.to_langchain_messages(request)):
                finish_reason = chunk.response_metadata.get("finish_reason", finish_reason)
                for event in self.chunk_events(chunk.content):
                    if isinstance(event, TextDelta):
                        text_parts.append(event.delta)
                    yield event
        except Exception as e:
            logger.error(f"Gemini stream failed: {e}", exc_info=True)
            yield ErrorEvent(message=f"Model provider error: {e}")
            return

        yield DoneEvent(
            text="".join(text_parts),
            finish_reason=str(finish_reason).lower() if finish_reason else "stop",
        )
