# backend/socialchat/services/messaging/__init__.py
"""
Real-time messaging package.

Architecture:
- PresenceRegistry / RoomRegistry hold process-local connection state
- MessagingCoordinator handles inbound WebSocket events
- publisher holds the emit primitives shared with the HTTP fallback routes
"""

from .connection import Connection
from .coordinator import MessagingCoordinator
from .events import ClientEvent, EventType, build_event
from .presence import PresenceRegistry
from .publisher import (
    notify_user,
    publish_chat_updated,
    publish_message_deleted,
    publish_message_updated,
    publish_messages_seen,
    publish_new_message,
)
from .rooms import RoomRegistry

__all__ = [
    "Connection",
    "MessagingCoordinator",
    "PresenceRegistry",
    "RoomRegistry",
    # Publishers
    "publish_new_message",
    "publish_message_updated",
    "publish_message_deleted",
    "publish_messages_seen",
    "publish_chat_updated",
    "notify_user",
    # Events
    "ClientEvent",
    "EventType",
    "build_event",
]
