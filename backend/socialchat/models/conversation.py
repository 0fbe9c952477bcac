# backend/socialchat/models/conversation.py
"""
Conversation model for two-party direct messaging.

Each unordered pair of users has at most one conversation. The participants
sit in two fixed slots (user1/user2); which slot a user occupies only matters
for the per-participant unread counters.

Design decisions:
- ``last_message`` is a denormalized summary of the latest non-deleted message
- Unread counters are kept per slot so a send only bumps the recipient's count
- Hiding a conversation is per participant (``ConversationDeletion`` rows)
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
import ulid

from ..database import Base

NO_MESSAGES_SUMMARY = "No messages yet"


class Conversation(Base):
    """
    Conversation between two users.

    Attributes:
        id: ULID primary key
        user1_id: First participant slot
        user2_id: Second participant slot
        last_message: Summary of the latest non-deleted message
        last_message_at: When the summarized message was created
        user1_unread_count: Messages user1 has not caught up with
        user2_unread_count: Messages user2 has not caught up with
    """

    __tablename__ = "conversations"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user1_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user2_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    last_message = Column(String(255), nullable=False, default=NO_MESSAGES_SUMMARY)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    user1_unread_count = Column(Integer, nullable=False, default=0)
    user2_unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user1 = relationship("User", foreign_keys=[user1_id])
    user2 = relationship("User", foreign_keys=[user2_id])
    deletions = relationship(
        "ConversationDeletion",
        back_populates="conversation",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_conversations_user1", "user1_id"),
        Index("idx_conversations_user2", "user2_id"),
        Index("idx_conversations_last_message", "last_message_at"),
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, user1={self.user1_id}, user2={self.user2_id})>"

    @property
    def participant_ids(self) -> list[str]:
        return [str(self.user1_id), str(self.user2_id)]

    def get_other_user_id(self, current_user_id: str) -> str:
        """
        Get the ID of the other participant in the conversation.

        Args:
            current_user_id: The ID of the current user

        Returns:
            The ID of the other participant
        """
        if current_user_id == self.user1_id:
            return str(self.user2_id)
        return str(self.user1_id)

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def unread_count_for(self, user_id: str) -> int:
        if user_id == self.user1_id:
            return int(self.user1_unread_count or 0)
        if user_id == self.user2_id:
            return int(self.user2_unread_count or 0)
        return 0

    def unread_counts(self) -> dict[str, int]:
        return {
            str(self.user1_id): int(self.user1_unread_count or 0),
            str(self.user2_id): int(self.user2_unread_count or 0),
        }


class ConversationDeletion(Base):
    """A participant hiding a conversation from their own list."""

    __tablename__ = "conversation_deletions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    conversation_id = Column(
        String(26), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    deleted_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    conversation = relationship("Conversation", back_populates="deletions")

    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_deletions_user"),
    )
