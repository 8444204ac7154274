"""Chat session binding a client to a retry countdown."""

import logging
from typing import List, Optional

from ratechat.app.exceptions import RateLimitedError
from ratechat.client.api import ChatClient, ChatMessage
from ratechat.client.countdown import ClientCountdown

logger = logging.getLogger(__name__)


class ChatSession:
    """One author's view of the chat.

    ``send`` always asks the server: the countdown only tells a UI when a
    retry should succeed. A rejection restarts the countdown from the
    server's fresh ``retry_after``; an admitted send clears it. Nothing is
    ever resent automatically.
    """

    def __init__(
        self,
        client: ChatClient,
        author: str,
        countdown: Optional[ClientCountdown] = None,
    ):
        self.client = client
        self.author = author
        self.countdown = countdown or ClientCountdown()

    @property
    def can_send(self) -> bool:
        return not self.countdown.is_limited

    async def send(self, body: str) -> Optional[ChatMessage]:
        """Send ``body`` as this session's author.

        Returns:
            The stored message, or None if the server rate limited the send
        """
        try:
            message = await self.client.send_message(self.author, body)
        except RateLimitedError as exc:
            seconds = self.countdown.start(exc.retry_after)
            logger.info(f"Send rejected, retry in {seconds}s")
            return None
        self.countdown.clear()
        return message

    async def messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        return await self.client.recent_messages(limit)

    async def aclose(self) -> None:
        self.countdown.close()

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
