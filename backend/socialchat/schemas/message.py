# backend/socialchat/schemas/message.py
"""
Message wire schemas.

``MessagePayload`` is the single shape used by ``receive_message``,
``message_updated``, ``message_deleted`` and the fallback HTTP send, so both
send paths produce structurally identical payloads.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator

from ..models.message import DELETED_REPLY_PREVIEW, Message
from ..models.user import User
from ._strict_base import CamelModel, CamelRequestModel, StrictModel

DELETED_USER_NAME = "User deleted"


class SenderSummary(CamelModel):
    id: Optional[str]
    name: str
    profile_image: Optional[str] = None
    is_deleted: bool = False

    @classmethod
    def from_user(cls, user: Optional[User], fallback_id: Optional[str] = None) -> "SenderSummary":
        if user is None:
            return cls(id=fallback_id, name=DELETED_USER_NAME, profile_image=None, is_deleted=True)
        return cls(
            id=str(user.id),
            name=user.name or DELETED_USER_NAME,
            profile_image=user.profile_image,
            is_deleted=False,
        )


class AttachmentPayload(CamelModel):
    url: str
    kind: str
    thumbnail_url: Optional[str] = None


class ReplyPreview(CamelModel):
    id: str
    content: str
    sender: SenderSummary
    attachment: Optional[AttachmentPayload] = None
    is_deleted: bool = False


class MessagePayload(CamelModel):
    id: str
    conversation_id: str
    sender: SenderSummary
    content: str
    attachment: Optional[AttachmentPayload] = None
    seen_by: List[str]
    is_edited: bool
    is_deleted: bool
    reply_to: Optional[ReplyPreview] = None
    created_at: datetime
    updated_at: datetime
    temp_id: Optional[str] = None
    status: str = "sent"

    @classmethod
    def from_message(cls, message: Message, temp_id: Optional[str] = None) -> "MessagePayload":
        return cls(
            id=str(message.id),
            conversation_id=str(message.conversation_id),
            sender=SenderSummary.from_user(message.sender, message.sender_id),
            content=message.content or "",
            attachment=_attachment_of(message),
            seen_by=message.seen_by,
            is_edited=bool(message.is_edited),
            is_deleted=bool(message.is_deleted),
            reply_to=_reply_preview(message.reply_to),
            created_at=message.created_at,
            updated_at=message.updated_at,
            temp_id=temp_id,
        )


def _attachment_of(message: Message) -> Optional[AttachmentPayload]:
    if not message.file_url or message.is_deleted:
        return None
    return AttachmentPayload(
        url=message.file_url, kind=message.file_type or "document", thumbnail_url=message.thumbnail_url
    )


def _reply_preview(target: Optional[Message]) -> Optional[ReplyPreview]:
    if target is None:
        return None
    return ReplyPreview(
        id=str(target.id),
        content=DELETED_REPLY_PREVIEW if target.is_deleted else (target.content or ""),
        sender=SenderSummary.from_user(target.sender, target.sender_id),
        attachment=_attachment_of(target),
        is_deleted=bool(target.is_deleted),
    )


class SendMessageResponse(StrictModel):
    """Fallback send response: ``{"status": "success", "data": <message>}``."""

    status: str = "success"
    data: dict


class MessageListResponse(StrictModel):
    messages: List[dict]


class EditMessageRequest(CamelRequestModel):
    content: str = Field(..., description="New text content")


class MarkSeenRequest(CamelRequestModel):
    message_ids: List[str] = Field(default_factory=list)

    @field_validator("message_ids")
    @classmethod
    def _dedupe(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(v for v in value if v))


class MarkSeenResponse(CamelModel):
    success: bool = True
    messages_marked: int


# Real-time inbound payloads


class SendMessageEvent(CamelRequestModel):
    conversation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("conversationId", "conversation_id", "chatId"),
    )
    sender_id: Optional[str] = None
    content: Optional[str] = ""
    temp_id: Optional[str] = None
    reply_to: Optional[str] = None
    attachment: Optional[dict] = None


class EditMessageEvent(CamelRequestModel):
    message_id: str
    content: str


class DeleteMessageEvent(CamelRequestModel):
    message_id: str


class MarkSeenEvent(CamelRequestModel):
    conversation_id: str
    message_ids: List[str] = Field(default_factory=list)


class TypingEvent(CamelRequestModel):
    conversation_id: str
    user_id: Optional[str] = None
