"""HTTP client for the chat service."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ratechat.app.exceptions import error_from_payload


@dataclass(frozen=True)
class ChatMessage:
    id: int
    author: str
    body: str
    inserted_at: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            author=data["author"],
            body=data["body"],
            inserted_at=data["inserted_at"],
        )


@dataclass(frozen=True)
class RateLimitStatus:
    operation: str
    key: str
    admitted: bool
    retry_after: Optional[float]
    remaining: float
    capacity: float


class ChatClient:
    """Async client for the chat HTTP API.

    Error responses carrying a service payload are raised as the matching
    typed exception, so a rate-limited send raises ``RateLimitedError`` with
    the server's ``retry_after``. Anything else raises ``httpx.HTTPStatusError``.

    Usage:
        async with ChatClient("http://localhost:8000") as client:
            await client.send_message("alice", "hello")
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            data = response.json()
        except ValueError:
            data = None
        error = error_from_payload(data)
        if error is not None:
            raise error
        response.raise_for_status()

    async def send_message(self, author: str, body: str) -> ChatMessage:
        """Post a message.

        Raises:
            RateLimitedError: If the author is currently rate limited
        """
        response = await self._http.post(
            "/v1/chat/messages", json={"author": author, "body": body}
        )
        self._raise_for_error(response)
        return ChatMessage.from_dict(response.json())

    async def recent_messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        """Fetch the most recent messages, oldest first."""
        params = {"limit": limit} if limit is not None else None
        response = await self._http.get("/v1/chat/messages", params=params)
        self._raise_for_error(response)
        return [ChatMessage.from_dict(item) for item in response.json()]

    async def rate_limit_status(self, operation: str, key: str) -> RateLimitStatus:
        """Ask whether ``key`` could perform ``operation`` now, without consuming."""
        response = await self._http.get(
            f"/v1/rate-limits/{operation}", params={"key": key}
        )
        self._raise_for_error(response)
        data = response.json()
        return RateLimitStatus(
            operation=data["operation"],
            key=data["key"],
            admitted=data["admitted"],
            retry_after=data.get("retryAfter"),
            remaining=data["remaining"],
            capacity=data["capacity"],
        )
