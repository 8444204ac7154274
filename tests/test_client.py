"""Tests for the HTTP client and the countdown-driven chat session."""

from contextlib import asynccontextmanager

import httpx
import pytest

from ratechat.app.exceptions import RateLimitedError, UnknownLimitError
from ratechat.app.main import create_app
from ratechat.app.services.message_store import MessageStore
from ratechat.client import ChatClient, ChatSession, ClientCountdown

NEVER = 3600.0


@asynccontextmanager
async def chat_client(settings, clock):
    """ChatClient wired to an in-process app through httpx's ASGI transport."""
    message_store = MessageStore(settings.database_url)
    await message_store.create_schema()
    app = create_app(settings, message_store=message_store, clock=clock)
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    try:
        yield ChatClient(http_client=http)
    finally:
        await http.aclose()
        await message_store.close()


class TestChatClient:

    @pytest.mark.asyncio
    async def test_send_and_list(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            sent = await client.send_message("alice", "hello")
            await client.send_message("bob", "hi alice")

            messages = await client.recent_messages()

        assert sent.author == "alice"
        assert sent.body == "hello"
        assert [m.body for m in messages] == ["hello", "hi alice"]
        assert messages[0].id == sent.id

    @pytest.mark.asyncio
    async def test_recent_messages_limit(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            for author in ["a", "b", "c"]:
                await client.send_message(author, f"from {author}")

            messages = await client.recent_messages(limit=2)

        assert [m.author for m in messages] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_rate_limited_send_raises_typed_error(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            for _ in range(3):
                await client.send_message("alice", "hello")

            with pytest.raises(RateLimitedError) as exc_info:
                await client.send_message("alice", "too soon")

        assert exc_info.value.operation == "sendMessage"
        assert exc_info.value.retry_after == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_rate_limit_status(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            fresh = await client.rate_limit_status("sendMessage", "alice")
            for _ in range(3):
                await client.send_message("alice", "hello")
            limited = await client.rate_limit_status("sendMessage", "alice")

        assert fresh.admitted is True
        assert fresh.retry_after is None
        assert fresh.capacity == 3
        assert limited.admitted is False
        assert limited.retry_after == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_unknown_operation_raises_unknown_limit(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            with pytest.raises(UnknownLimitError) as exc_info:
                await client.rate_limit_status("deleteMessage", "alice")

        assert exc_info.value.operation == "deleteMessage"

    @pytest.mark.asyncio
    async def test_validation_error_raises_http_status_error(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await client.send_message("alice", "   ")

        assert exc_info.value.response.status_code == 422

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        client = ChatClient("http://localhost:9")
        await client.aclose()
        assert client._http.is_closed


class TestChatSession:

    @pytest.mark.asyncio
    async def test_countdown_follows_server(self, test_settings, clock):
        """The countdown restarts from every fresh rejection and clears on success."""
        async with chat_client(test_settings, clock) as client:
            session = ChatSession(client, "alice", ClientCountdown(tick_seconds=NEVER))

            for i in range(3):
                assert await session.send(f"message {i}") is not None
            assert session.can_send

            # 0.1 tokens accrued, 0.9 missing
            clock.advance(0.6)
            assert await session.send("too soon") is None
            assert not session.can_send
            assert session.countdown.seconds_remaining == 6

            # Retrying halfway through is rejected again with a fresh retry_after
            for _ in range(3):
                session.countdown.tick()
            clock.advance(3.0)
            assert await session.send("still too soon") is None
            assert session.countdown.seconds_remaining == 3

            for _ in range(3):
                session.countdown.tick()
            clock.advance(3.0)
            assert session.can_send

            message = await session.send("finally")
            assert message is not None
            assert message.body == "finally"
            assert session.can_send

            bodies = [m.body for m in await session.messages()]
            await session.aclose()

        assert bodies == ["message 0", "message 1", "message 2", "finally"]

    @pytest.mark.asyncio
    async def test_admitted_send_clears_countdown(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            async with ChatSession(client, "alice", ClientCountdown(tick_seconds=NEVER)) as session:
                for _ in range(3):
                    await session.send("hello")
                await session.send("rejected")
                assert session.countdown.is_limited

                # The countdown is advisory; the server decides
                clock.advance(6.0)
                assert await session.send("accepted") is not None
                assert not session.countdown.is_limited
                assert not session.countdown.has_live_timer

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, test_settings, clock):
        async with chat_client(test_settings, clock) as client:
            alice = ChatSession(client, "alice", ClientCountdown(tick_seconds=NEVER))
            bob = ChatSession(client, "bob", ClientCountdown(tick_seconds=NEVER))

            for _ in range(4):
                await alice.send("hello")

            assert not alice.can_send
            assert bob.can_send
            assert await bob.send("hi") is not None

            await alice.aclose()
            await bob.aclose()
