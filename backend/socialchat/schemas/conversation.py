# backend/socialchat/schemas/conversation.py
"""Schemas for conversation list/summary payloads."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field

from ._strict_base import CamelModel, CamelRequestModel
from .message import SenderSummary


class ChatUpdatedPayload(CamelModel):
    """Body of ``chat_updated``; ``unread_count`` is the receiving user's count."""

    conversation_id: str
    last_message: str
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    unread_counts: Dict[str, int] = Field(default_factory=dict)


class ConversationListItem(CamelModel):
    id: str
    other_user: SenderSummary
    last_message: str
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    created_at: datetime


class ConversationListResponse(CamelModel):
    conversations: List[ConversationListItem]


class CreateConversationRequest(CamelRequestModel):
    user_id: str = Field(
        ...,
        validation_alias=AliasChoices("userId", "user_id", "targetUserId"),
        description="The other participant",
    )


class CreateConversationResponse(CamelModel):
    conversation: ConversationListItem
    created: bool


class ConversationStatusResponse(CamelModel):
    success: bool
    message: Optional[str] = None


class FollowEventRequest(CamelRequestModel):
    """Reported by the follow subsystem when the caller follows ``followee_id``."""

    followee_id: str
    mutual: bool = False


class FollowEventResponse(CamelModel):
    conversation_id: Optional[str] = None
    conversation_created: bool = False
