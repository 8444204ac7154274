"""Message CRUD operations."""

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ratechat.app.db.models import Message


async def append_message(
    session: AsyncSession,
    author: str,
    body: str,
    auto_commit: bool = True,
) -> Message:
    """Append a message to the log.

    Args:
        session: Database session
        author: Display name of the sender
        body: Message text
        auto_commit: Whether to commit the transaction. Set to False
                     if you want to control transaction boundaries manually.

    Returns:
        The saved Message object
    """
    message = Message(author=author, body=body)
    session.add(message)
    if auto_commit:
        await session.commit()
        await session.refresh(message)
    else:
        await session.flush()
    return message


async def get_recent_messages(session: AsyncSession, limit: int = 50) -> List[Message]:
    """Get the most recent messages, newest first.

    Ordered by id, which follows insertion order even when timestamps tie.
    """
    result = await session.execute(
        select(Message).order_by(Message.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
