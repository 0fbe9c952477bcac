# backend/socialchat/models/__init__.py
"""SQLAlchemy models; importing this package registers every table on Base."""

from .conversation import Conversation, ConversationDeletion
from .message import Message, MessageSeen
from .notification import Notification
from .user import User

__all__ = [
    "Conversation",
    "ConversationDeletion",
    "Message",
    "MessageSeen",
    "Notification",
    "User",
]
