import asyncio

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from streamchat.chat.events import DoneEvent, ErrorEvent, ReasoningDelta, TextDelta
from streamchat.streaming.providers import ChatTurn, GeminiStreamProvider, ProviderRequest


def make_request(*contents: str, **kwargs) -> ProviderRequest:
    roles = ["user", "assistant"]
    turns = [ChatTurn(role=roles[i % 2], content=c) for i, c in enumerate(contents)]
    return ProviderRequest(messages=turns, **kwargs)


async def collect(provider, request):
    return [event async for event in provider.stream(request)]


def test_streams_fake_model_output():
    llm = GenericFakeChatModel(messages=iter([AIMessage(content="Hello brave world")]))
    provider = GeminiStreamProvider(llm=llm)

    events = asyncio.run(collect(provider, make_request("Hi")))

    deltas = [e.delta for e in events if isinstance(e, TextDelta)]
    assert "".join(deltas) == "Hello brave world"
    assert len(deltas) > 1
    assert events[-1] == DoneEvent(text="Hello brave world", finish_reason="stop")


def test_model_failure_ends_with_error_event():
    class Broken:
        async def astream(self, messages):
            yield AIMessage(content="par")
            raise ConnectionError("reset by peer")

    events = asyncio.run(collect(GeminiStreamProvider(llm=Broken()), make_request("Hi")))

    assert isinstance(events[-1], ErrorEvent)
    assert "reset by peer" in events[-1].message
    assert not any(isinstance(e, DoneEvent) for e in events)


def test_history_is_translated_for_langchain():
    request = make_request("Hi", "Hello!", "Tell me more", system="Be brief.")
    history = GeminiStreamProvider.to_langchain_messages(request)

    assert [type(m) for m in history] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert [m.content for m in history] == ["Be brief.", "Hi", "Hello!", "Tell me more"]


def test_chunk_events_handles_content_blocks():
    content = [
        {"type": "thinking", "thinking": "Let me see."},
        {"type": "text", "text": "Answer"},
        {"type": "image_url", "image_url": "ignored"},
        " tail",
    ]
    assert list(GeminiStreamProvider.chunk_events(content)) == [
        ReasoningDelta(delta="Let me see."),
        TextDelta(delta="Answer"),
        TextDelta(delta=" tail"),
    ]
    assert list(GeminiStreamProvider.chunk_events("")) == []


def test_request_validation():
    with pytest.raises(ValidationError):
        ProviderRequest(messages=[])
    with pytest.raises(ValidationError):
        make_request("Hi", temperature=3.5)
