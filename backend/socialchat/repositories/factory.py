# backend/socialchat/repositories/factory.py
"""
Repository Factory.

Centralizes repository creation so services share one construction path.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .conversation_repository import ConversationRepository
    from .message_repository import MessageRepository
    from .notification_repository import NotificationRepository
    from .user_repository import UserRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_message_repository(db: Session) -> "MessageRepository":
        from .message_repository import MessageRepository

        return MessageRepository(db)

    @staticmethod
    def create_conversation_repository(db: Session) -> "ConversationRepository":
        from .conversation_repository import ConversationRepository

        return ConversationRepository(db)

    @staticmethod
    def create_notification_repository(db: Session) -> "NotificationRepository":
        from .notification_repository import NotificationRepository

        return NotificationRepository(db)

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        from .user_repository import UserRepository

        return UserRepository(db)
