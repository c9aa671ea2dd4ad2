import logging
from functools import lru_cache
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import StreamingResponse

from streamchat.chat.events import ErrorEvent
from streamchat.db.store import SqlConversationStore
from streamchat.errors import StoreError
from streamchat.settings import config
from streamchat.streaming.providers import (
    GeminiStreamProvider,
    ProviderRequest,
    StreamProvider,
)
from streamchat.streaming.sse import encode_event
from streamchat.routes.chat.schemas import (
    ConversationCreate,
    ConversationRead,
    ErrorResponse,
    MessageCreate,
    MessageRead,
    StreamRequest,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

router = APIRouter()


@lru_cache
def get_store() -> SqlConversationStore:
    return SqlConversationStore()


@lru_cache
def _gemini_provider() -> GeminiStreamProvider:
    return GeminiStreamProvider()


def get_provider() -> StreamProvider:
    if not config.gemini_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="STREAMCHAT_GEMINI_API_KEY is not configured",
        )
    return _gemini_provider()


def _store_failure(action: str, e: StoreError) -> HTTPException:
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed {action}",
    )


async def _require_conversation(store: SqlConversationStore, conversation_id: str) -> ConversationRead:
    try:
        conv = await store.get_conversation(conversation_id)
    except StoreError as e:
        raise _store_failure("loading conversation", e)
    if conv is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found"
        )
    return ConversationRead.model_validate(conv, from_attributes=True)


# --- ROUTES ---


@router.post(
    "/conversations",
    response_model=ConversationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new conversation",
)
async def create_conversation(
    request: ConversationCreate, store: SqlConversationStore = Depends(get_store)
):
    try:
        conversation_id = await store.create_conversation(request.title)
    except StoreError as e:
        raise _store_failure("creating conversation", e)
    return await _require_conversation(store, conversation_id)


@router.get(
    "/conversations",
    response_model=List[ConversationRead],
    summary="List conversations, most recently updated first",
)
async def list_conversations(store: SqlConversationStore = Depends(get_store)):
    try:
        return await store.list_conversations()
    except StoreError as e:
        raise _store_failure("listing conversations", e)


@router.delete(
    "/conversations/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a conversation",
)
async def delete_conversation(
    conversation_id: str, store: SqlConversationStore = Depends(get_store)
):
    try:
        deleted = await store.delete_conversation(conversation_id)
    except StoreError as e:
        raise _store_failure("deleting conversation", e)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/conversations/{conversation_id}/touch",
    response_model=ConversationRead,
    responses={404: {"model": ErrorResponse}},
    summary="Advance the conversation's updated_at timestamp",
)
async def touch_conversation(
    conversation_id: str, store: SqlConversationStore = Depends(get_store)
):
    await _require_conversation(store, conversation_id)
    try:
        await store.touch_conversation(conversation_id)
    except StoreError as e:
        raise _store_failure("updating conversation", e)
    return await _require_conversation(store, conversation_id)


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=List[MessageRead],
    responses={404: {"model": ErrorResponse}},
    summary="Get conversation messages, oldest first",
)
async def list_messages(
    conversation_id: str, store: SqlConversationStore = Depends(get_store)
):
    await _require_conversation(store, conversation_id)
    try:
        return await store.load_messages(conversation_id)
    except StoreError as e:
        raise _store_failure("loading messages", e)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
    summary="Append a message to a conversation",
)
async def create_message(
    conversation_id: str,
    request: MessageCreate,
    store: SqlConversationStore = Depends(get_store),
):
    await _require_conversation(store, conversation_id)
    try:
        message_id = await store.append_message(
            conversation_id, request.role, request.content
        )
        return await store.get_message(message_id)
    except StoreError as e:
        raise _store_failure("saving message", e)


@router.delete(
    "/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a single message",
)
async def delete_message(message_id: str, store: SqlConversationStore = Depends(get_store)):
    try:
        deleted = await store.delete_message(message_id)
    except StoreError as e:
        raise _store_failure("deleting message", e)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/chat/stream",
    summary="Stream an assistant reply",
    description="Relays the model's output as server-sent events. Nothing is persisted here.",
)
async def stream_chat(request: StreamRequest, provider: StreamProvider = Depends(get_provider)):
    provider_request = ProviderRequest(
        messages=request.messages,
        system=request.system or config.system_prompt,
        temperature=(
            request.temperature if request.temperature is not None else config.temperature
        ),
        max_tokens=request.max_tokens or config.max_tokens,
    )

    async def streamer():
        try:
            async for event in provider.stream(provider_request):
                yield encode_event(event)
        except Exception as e:
            logger.error(f"Streaming error: {e}", exc_info=True)
            yield encode_event(ErrorEvent(message=f"Error processing request: {e}"))

    return StreamingResponse(
        streamer(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
