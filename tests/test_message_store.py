"""Tests for the append-only message store."""

from datetime import datetime, timedelta, timezone

import pytest

from ratechat.app.db.models import Message
from ratechat.app.services.message_store import MessageStore, StoredMessage


def make_store(tmp_path) -> MessageStore:
    return MessageStore(f"sqlite+aiosqlite:///{tmp_path / 'messages.db'}")


class TestMessageStore:

    def test_requires_url_or_engine(self):
        with pytest.raises(ValueError):
            MessageStore()

    @pytest.mark.asyncio
    async def test_append_assigns_ids(self, tmp_path):
        store = make_store(tmp_path)
        await store.create_schema()
        try:
            first = await store.append("alice", "hello")
            second = await store.append("bob", "hi")
        finally:
            await store.close()

        assert second.id > first.id
        assert first.author == "alice"
        assert first.inserted_at is not None
        assert first.to_dict()["inserted_at"] == first.inserted_at.isoformat()

    @pytest.mark.asyncio
    async def test_recent_messages_newest_first(self, tmp_path):
        store = make_store(tmp_path)
        await store.create_schema()
        try:
            for i in range(5):
                await store.append("alice", f"message {i}")
            recent = await store.recent_messages(limit=3)
        finally:
            await store.close()

        assert [m.body for m in recent] == ["message 4", "message 3", "message 2"]

    @pytest.mark.asyncio
    async def test_inserted_at_is_utc_aware(self, tmp_path):
        store = make_store(tmp_path)
        await store.create_schema()
        try:
            appended = await store.append("alice", "hello")
            (loaded,) = await store.recent_messages()
        finally:
            await store.close()

        for message in (appended, loaded):
            assert message.inserted_at.utcoffset() == timedelta(0)
            assert message.to_dict()["inserted_at"].endswith("+00:00")

    def test_from_row_keeps_existing_offset(self):
        aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        row = Message(id=1, author="alice", body="hi", inserted_at=aware)

        assert StoredMessage.from_row(row).inserted_at == aware

    def test_from_row_marks_naive_values_as_utc(self):
        row = Message(id=1, author="alice", body="hi", inserted_at=datetime(2024, 5, 1, 12, 0))

        inserted_at = StoredMessage.from_row(row).inserted_at
        assert inserted_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_create_schema_is_idempotent(self, tmp_path):
        store = make_store(tmp_path)
        try:
            await store.create_schema()
            await store.create_schema()
            assert await store.ping() is True
            assert await store.recent_messages() == []
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_shared_engine_not_disposed(self, tmp_path):
        owner = make_store(tmp_path)
        await owner.create_schema()
        borrower = MessageStore(engine=owner.engine)

        await borrower.append("alice", "hello")
        await borrower.close()

        assert [m.body for m in await owner.recent_messages()] == ["hello"]
        await owner.close()
