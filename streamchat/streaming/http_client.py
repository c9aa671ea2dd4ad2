"""HTTP clients used by the chat front end to reach the API server."""

from typing import Any, AsyncIterator, Callable, TypeVar

import httpx

from streamchat.chat.events import DoneEvent, ErrorEvent, StreamEvent
from streamchat.db.store import ConversationRecord, MessageRecord, Role
from streamchat.errors import StoreError, TransportError
from streamchat.settings import Config, config
from streamchat.streaming.providers import ProviderRequest
from streamchat.streaming.sse import decode_stream

T = TypeVar("T")


class HttpStreamProvider:
    """Reads the server's ``/chat/stream`` event stream."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Config = config,
    ) -> None:
        self.base_url = base_url or settings.api_base_url
        self.transport = transport
        self.timeout = httpx.Timeout(settings.stream_timeout_seconds)

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        terminated = False
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, transport=self.transport, timeout=self.timeout
            ) as client:
                async with client.stream(
                    "POST", "/chat/stream", json=request.model_dump(exclude_none=True)
                ) as response:
                    if response.status_code != 200:
                        body = await response.aread()
                        raise TransportError(
                            f"Stream request failed: HTTP {response.status_code} "
                            f"{body[:200].decode(errors='replace')}"
                        )
                    async for event in decode_stream(response.aiter_lines()):
                        yield event
                        if isinstance(event, (DoneEvent, ErrorEvent)):
                            terminated = True
                            break
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise TransportError(f"Stream connection failed: {e}") from e

        if not terminated:
            raise TransportError("Stream closed before a finish event")


class HttpConversationStore:
    """Conversation store that talks to the server's REST endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        settings: Config = config,
    ) -> None:
        self.base_url = base_url or settings.api_base_url
        self.transport = transport
        self.timeout = timeout

    async def _request(
        self, method: str, path: str, expected: tuple[int, ...], **kwargs: Any
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, transport=self.transport, timeout=self.timeout
            ) as client:
                response = await client.request(method, path, **kwargs)
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise StoreError(f"{method} {path} failed: {e}") from e
        if response.status_code not in expected:
            raise StoreError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response, build: Callable[[Any], T]) -> T:
        # ValidationError is a ValueError, as is a JSON decode failure
        try:
            return build(response.json())
        except (ValueError, KeyError, TypeError) as e:
            request = response.request
            raise StoreError(
                f"{request.method} {request.url.path} returned an unexpected body: {e}"
            ) from e

    async def create_conversation(self, title: str) -> str:
        response = await self._request("POST", "/conversations", (201,), json={"title": title})
        return self._decode(response, lambda body: str(body["id"]))

    async def append_message(self, conversation_id: str, role: Role, content: str) -> str:
        response = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            (201,),
            json={"role": role, "content": content},
        )
        return self._decode(response, lambda body: str(body["id"]))

    async def touch_conversation(self, conversation_id: str) -> None:
        await self._request("PATCH", f"/conversations/{conversation_id}/touch", (200,))

    async def list_conversations(self) -> list[ConversationRecord]:
        response = await self._request("GET", "/conversations", (200,))
        return self._decode(response, lambda rows: [ConversationRecord(**row) for row in rows])

    async def load_messages(self, conversation_id: str) -> list[MessageRecord]:
        response = await self._request(
            "GET", f"/conversations/{conversation_id}/messages", (200,)
        )
        return self._decode(response, lambda rows: [MessageRecord(**row) for row in rows])

    async def delete_conversation(self, conversation_id: str) -> bool:
        response = await self._request(
            "DELETE", f"/conversations/{conversation_id}", (204, 404)
        )
        return response.status_code == 204

    async def delete_message(self, message_id: str) -> bool:
        response = await self._request("DELETE", f"/messages/{message_id}", (204, 404))
        return response.status_code == 204
