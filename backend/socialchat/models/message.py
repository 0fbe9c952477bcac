# backend/socialchat/models/message.py
"""
Message model for the chat system.

Messages belong to a conversation and may carry one attachment. A deleted
message keeps its identity and reply linkage but loses its content and
attachment (tombstone).
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
import ulid

from ..database import Base

TOMBSTONE_TEXT = "This message was deleted"
DELETED_REPLY_PREVIEW = "Deleted message"

ATTACHMENT_KINDS = ("image", "video", "audio", "document")


class Message(Base):
    """
    Message in a two-party conversation.

    ``file_handle`` is the media collaborator's opaque deletion handle; it is
    never exposed to clients.
    """

    __tablename__ = "messages"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    conversation_id = Column(
        String(26), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id = Column(String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False, default="")
    file_url = Column(String(1000), nullable=True)
    file_type = Column(String(20), nullable=True)
    thumbnail_url = Column(String(1000), nullable=True)
    file_handle = Column(String(500), nullable=True)
    is_edited = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    reply_to_id = Column(String(26), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    conversation = relationship("Conversation")
    sender = relationship("User", foreign_keys=[sender_id])
    reply_to = relationship("Message", remote_side=[id], foreign_keys=[reply_to_id])
    seen_entries = relationship(
        "MessageSeen",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageSeen.seen_at",
    )

    __table_args__ = (
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation={self.conversation_id}, sender={self.sender_id})>"

    @property
    def has_attachment(self) -> bool:
        return bool(self.file_url)

    @property
    def seen_by(self) -> list[str]:
        return [str(entry.user_id) for entry in self.seen_entries]


class MessageSeen(Base):
    """
    Seen-by set entry.

    Rows are only ever inserted (never removed), so a message's seen-by set
    grows monotonically.
    """

    __tablename__ = "message_seen"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    message_id = Column(String(26), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(26), nullable=False)
    seen_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    message = relationship("Message", back_populates="seen_entries")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_seen_user"),
        Index("idx_message_seen_user", "user_id"),
    )
