"""
Notification model.

In-app inbox entries for cross-cutting events (new messages, follows).
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base

NOTIFICATION_TYPES = ("new_message", "follow")


class Notification(Base):
    """In-app notification inbox entries."""

    __tablename__ = "notifications"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(String(26), nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        CheckConstraint("type IN ('new_message', 'follow')", name="ck_notifications_type"),
        Index("ix_notifications_user_read", "user_id", "read"),
        Index("ix_notifications_user_created_at", "user_id", created_at.desc()),
    )


__all__ = ["Notification", "NOTIFICATION_TYPES"]
