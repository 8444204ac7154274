"""Python client for the chat service."""

from ratechat.client.api import ChatClient, ChatMessage, RateLimitStatus
from ratechat.client.countdown import ClientCountdown, CountdownState, format_retry_time
from ratechat.client.session import ChatSession

__all__ = [
    "ChatClient",
    "ChatMessage",
    "RateLimitStatus",
    "ClientCountdown",
    "CountdownState",
    "format_retry_time",
    "ChatSession",
]
