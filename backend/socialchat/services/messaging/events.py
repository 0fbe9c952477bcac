# backend/socialchat/services/messaging/events.py
"""
Real-time event names and frame builders.

Every frame on the wire, in both directions, has this structure:
{
    "event": str,   # Event name
    "data": dict    # Event-specific payload
}
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from ...schemas.conversation import ChatUpdatedPayload


class ClientEvent(str, Enum):
    """Events a client may send."""

    REGISTER = "register"
    JOIN_CHAT = "join_chat"
    TYPING = "typing"
    SEND_MESSAGE = "send_message"
    EDIT_MESSAGE = "edit_message"
    DELETE_MESSAGE = "delete_message"
    MARK_MESSAGES_SEEN = "mark_messages_seen"


class EventType(str, Enum):
    """Events the server emits."""

    REGISTERED = "registered"
    RECEIVE_MESSAGE = "receive_message"
    MESSAGE_ERROR = "message_error"
    CHAT_UPDATED = "chat_updated"
    CHAT_CREATED = "chat_created"
    CHAT_DELETED = "chat_deleted"
    MESSAGES_SEEN = "messages_seen"
    MESSAGE_UPDATED = "message_updated"
    MESSAGE_DELETED = "message_deleted"
    RECEIVE_NOTIFICATION = "receive_notification"
    UNSEEN_MESSAGES = "unseen_messages"
    TYPING = "typing"
    ERROR = "error"


def build_event(event: EventType, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a frame ready to be sent as JSON.

    Args:
        event: Event name
        data: Event-specific payload data
    """
    return {"event": event.value, "data": data}


def build_message_error_event(temp_id: Optional[str], error: str) -> Dict[str, Any]:
    return build_event(EventType.MESSAGE_ERROR, {"tempId": temp_id, "error": error})


def build_error_event(message: str) -> Dict[str, Any]:
    return build_event(EventType.ERROR, {"message": message})


def build_chat_updated_event(chat: ChatUpdatedPayload, user_id: Optional[str]) -> Dict[str, Any]:
    """``chat_updated`` with ``unreadCount`` personalized for ``user_id``."""
    personalized = chat.model_copy(
        update={"unread_count": chat.unread_counts.get(user_id, 0) if user_id else 0}
    )
    return build_event(EventType.CHAT_UPDATED, personalized.to_wire())


def build_messages_seen_event(
    conversation_id: str, message_ids: List[str], user_id: str
) -> Dict[str, Any]:
    return build_event(
        EventType.MESSAGES_SEEN,
        {"conversationId": conversation_id, "messageIds": message_ids, "userId": user_id},
    )


def build_unseen_messages_event(conversation_id: str, message_ids: List[str]) -> Dict[str, Any]:
    return build_event(
        EventType.UNSEEN_MESSAGES,
        {"conversationId": conversation_id, "messageIds": message_ids},
    )


def build_typing_event(conversation_id: str, user_id: str) -> Dict[str, Any]:
    return build_event(EventType.TYPING, {"conversationId": conversation_id, "userId": user_id})
