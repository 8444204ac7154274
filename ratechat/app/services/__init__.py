"""Services for the chat application."""

from ratechat.app.services.message_store import MessageStore, StoredMessage

__all__ = ["MessageStore", "StoredMessage"]
