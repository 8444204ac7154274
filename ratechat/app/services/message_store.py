"""Append-only chat message log.

``MessageStore`` is the collaborator the send endpoint calls after the rate
limiter has admitted a request. It knows nothing about rate limiting.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from ratechat.app.core.logging import get_logger
from ratechat.app.db.base import Base
from ratechat.app.db.crud import append_message, get_recent_messages
from ratechat.app.db.models import Message
from ratechat.app.db.session import create_engine, create_session_maker, session_scope

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredMessage:
    """Read model for one message in the log."""
    id: int
    author: str
    body: str
    inserted_at: datetime

    @classmethod
    def from_row(cls, row: Message) -> "StoredMessage":
        inserted_at = row.inserted_at
        # SQLite drops the offset; stored values are always UTC
        if inserted_at.tzinfo is None:
            inserted_at = inserted_at.replace(tzinfo=timezone.utc)
        return cls(
            id=row.id,
            author=row.author,
            body=row.body,
            inserted_at=inserted_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "body": self.body,
            "inserted_at": self.inserted_at.isoformat(),
        }


class MessageStore:
    """Message log backed by a SQLAlchemy async engine.

    The store owns its engine unless one is passed in.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        engine: Optional[AsyncEngine] = None,
        echo: bool = False,
    ):
        if engine is None and database_url is None:
            raise ValueError("MessageStore needs database_url or engine")
        self._owns_engine = engine is None
        self._engine = engine or create_engine(database_url, echo=echo)
        self._session_maker = create_session_maker(self._engine)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_schema(self) -> None:
        """Create tables that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def append(self, author: str, body: str) -> StoredMessage:
        """Append a message and return it with its id and insertion time."""
        async with session_scope(self._session_maker) as session:
            row = await append_message(session, author, body)
            message = StoredMessage.from_row(row)
        logger.debug(f"Appended message {message.id} from {author}")
        return message

    async def recent_messages(self, limit: int = 50) -> List[StoredMessage]:
        """Return up to ``limit`` most recent messages, newest first."""
        async with session_scope(self._session_maker) as session:
            rows = await get_recent_messages(session, limit)
            return [StoredMessage.from_row(row) for row in rows]

    async def ping(self) -> bool:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()
