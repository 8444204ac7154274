"""Database package for the chat service.

This package provides:
- Database models (Message)
- Async engine and session management
- CRUD operations for the message log
"""

from ratechat.app.db.base import Base
from ratechat.app.db.crud import append_message, get_recent_messages
from ratechat.app.db.models import Message
from ratechat.app.db.session import create_engine, create_session_maker, session_scope

__all__ = [
    "Base",
    "Message",
    "append_message",
    "get_recent_messages",
    "create_engine",
    "create_session_maker",
    "session_scope",
]
