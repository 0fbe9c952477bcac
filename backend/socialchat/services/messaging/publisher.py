# backend/socialchat/services/messaging/publisher.py
"""
Emit primitives shared by the WebSocket handlers and the HTTP fallback routes.

Both send paths converge here, so a message sent over HTTP fans out over the
real-time channel exactly like one sent over the socket.

Fan-out to a room sends to every member concurrently; each connection
serializes its own frames, so per-connection order follows call order.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from ...schemas.conversation import ChatUpdatedPayload, ConversationListItem
from ...schemas.message import MessagePayload
from ...schemas.notifications import NotificationResponse
from ..message_service import MessageChange, SeenResult, SentMessage
from .connection import Connection
from .events import (
    EventType,
    build_chat_updated_event,
    build_event,
    build_messages_seen_event,
)
from .presence import PresenceRegistry
from .rooms import RoomRegistry

logger = logging.getLogger(__name__)


def message_frame_data(payload: MessagePayload, temp_id: Optional[str] = None) -> Dict[str, Any]:
    """Wire form of a message; ``temp_id`` is echoed back untouched."""
    if temp_id is not None:
        payload = payload.model_copy(update={"temp_id": temp_id})
    return payload.to_wire()


async def _send_all(connections: Iterable[Connection], frame: Dict[str, Any]) -> int:
    targets = list(connections)
    if not targets:
        return 0
    results = await asyncio.gather(*(conn.send(frame) for conn in targets))
    return sum(1 for ok in results if ok)


async def emit_to_room(rooms: RoomRegistry, room_id: str, frame: Dict[str, Any]) -> int:
    """
    Send ``frame`` to every connection in the room.

    Returns:
        Number of connections the frame was delivered to
    """
    delivered = await _send_all(rooms.members(room_id), frame)
    logger.debug(f"[PUBLISHER] {frame.get('event')} -> room {room_id} ({delivered} delivered)")
    return delivered


async def emit_to_user(presence: PresenceRegistry, user_id: str, frame: Dict[str, Any]) -> bool:
    handle = presence.lookup(user_id)
    if handle is None:
        return False
    return await handle.send(frame)


async def publish_new_message(
    rooms: RoomRegistry, sent: SentMessage, temp_id: Optional[str] = None
) -> int:
    """Emit ``receive_message`` to the conversation room."""
    frame = build_event(EventType.RECEIVE_MESSAGE, message_frame_data(sent.payload, temp_id))
    return await emit_to_room(rooms, sent.conversation_id, frame)


async def publish_message_updated(rooms: RoomRegistry, change: MessageChange) -> int:
    frame = build_event(EventType.MESSAGE_UPDATED, message_frame_data(change.payload))
    return await emit_to_room(rooms, change.conversation_id, frame)


async def publish_message_deleted(rooms: RoomRegistry, change: MessageChange) -> int:
    frame = build_event(EventType.MESSAGE_DELETED, message_frame_data(change.payload))
    return await emit_to_room(rooms, change.conversation_id, frame)


async def publish_messages_seen(rooms: RoomRegistry, seen: SeenResult) -> int:
    frame = build_messages_seen_event(seen.conversation_id, seen.message_ids, seen.user_id)
    return await emit_to_room(rooms, seen.conversation_id, frame)


async def publish_chat_updated(rooms: RoomRegistry, chat: Optional[ChatUpdatedPayload]) -> int:
    """
    Emit ``chat_updated`` to the room, with ``unreadCount`` personalized for
    the user behind each connection.
    """
    if chat is None:
        return 0
    targets = rooms.members(chat.conversation_id)
    if not targets:
        return 0
    results = await asyncio.gather(
        *(conn.send(build_chat_updated_event(chat, conn.user_id)) for conn in targets)
    )
    return sum(1 for ok in results if ok)


async def notify_user(
    presence: PresenceRegistry, user_id: str, notification: NotificationResponse
) -> bool:
    """Push ``receive_notification`` to the user if they are online."""
    delivered = await emit_to_user(
        presence, user_id, build_event(EventType.RECEIVE_NOTIFICATION, notification.to_wire())
    )
    if delivered:
        logger.debug(f"[PUBLISHER] Notification {notification.id} delivered to {user_id}")
    return delivered


async def publish_chat_created(
    presence: PresenceRegistry, items: Dict[str, ConversationListItem]
) -> List[str]:
    """Emit ``chat_created`` to each online participant; returns who got it."""
    delivered: List[str] = []
    for user_id, item in items.items():
        if await emit_to_user(presence, user_id, build_event(EventType.CHAT_CREATED, item.to_wire())):
            delivered.append(user_id)
    return delivered


async def publish_chat_deleted(
    presence: PresenceRegistry, user_id: str, conversation_id: str
) -> bool:
    return await emit_to_user(
        presence, user_id, build_event(EventType.CHAT_DELETED, {"conversationId": conversation_id})
    )
