# backend/socialchat/models/user.py
"""
User reference model.

Accounts are owned by the account subsystem; the messaging stores only need
the identity and the display fields shown next to messages.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
import ulid

from ..database import Base


class User(Base):
    """Display-level view of a user account."""

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name = Column(String(100), nullable=False)
    profile_image = Column(String(500), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name})>"
