# backend/socialchat/services/notification_service.py
"""
Notification inbox service.

Creates new-message and follow notifications and serves the owner's inbox
operations (list, mark read, delete). Only the owner can touch their
notifications; anyone else gets not-found.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException
from ..repositories.factory import RepositoryFactory
from ..repositories.notification_repository import NotificationRepository
from ..schemas.message import DELETED_USER_NAME
from ..schemas.notifications import NotificationListResponse, NotificationResponse
from .base import BaseService

logger = logging.getLogger(__name__)


def new_message_text(sender_name: Optional[str], kind: Optional[str] = None) -> str:
    return f"New {kind or 'message'} from {sender_name or DELETED_USER_NAME}"


def follow_text(follower_name: Optional[str], mutual: bool = False) -> str:
    name = follower_name or DELETED_USER_NAME
    return f"{name} followed you back" if mutual else f"{name} followed you"


class NotificationService(BaseService):
    """Service for the in-app notification inbox."""

    def __init__(self, db: Session, repository: Optional[NotificationRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_notification_repository(db)

    @BaseService.measure_operation("create_message_notification")
    def create_message_notification(
        self,
        recipient_id: str,
        sender_name: Optional[str],
        conversation_id: str,
        kind: Optional[str] = None,
    ) -> NotificationResponse:
        with self.transaction():
            notification = self.repository.create_notification(
                user_id=recipient_id,
                type="new_message",
                message=new_message_text(sender_name, kind),
                related_id=conversation_id,
            )
            return NotificationResponse.model_validate(notification)

    @BaseService.measure_operation("create_follow_notification")
    def create_follow_notification(
        self,
        recipient_id: str,
        follower_id: str,
        follower_name: Optional[str],
        mutual: bool = False,
    ) -> NotificationResponse:
        with self.transaction():
            notification = self.repository.create_notification(
                user_id=recipient_id,
                type="follow",
                message=follow_text(follower_name, mutual),
                related_id=follower_id,
            )
            return NotificationResponse.model_validate(notification)

    @BaseService.measure_operation("list_notifications")
    def list_notifications(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
    ) -> NotificationListResponse:
        with self.transaction():
            rows = self.repository.get_user_notifications(
                user_id, limit=limit, offset=offset, unread_only=unread_only
            )
            unread = self.repository.get_unread_count(user_id)
            return NotificationListResponse(
                notifications=[NotificationResponse.model_validate(row) for row in rows],
                unread_count=unread,
            )

    @BaseService.measure_operation("mark_notification_read")
    def mark_as_read(self, user_id: str, notification_id: str) -> None:
        with self.transaction():
            if not self.repository.mark_as_read_for_user(user_id, notification_id):
                raise NotFoundException("Notification not found", code="NOTIFICATION_NOT_FOUND")

    @BaseService.measure_operation("mark_notifications_read")
    def mark_many_as_read(self, user_id: str, notification_ids: Optional[List[str]] = None) -> int:
        """Mark the given notifications (or the whole inbox) read; returns rows changed."""
        with self.transaction():
            count = self.repository.mark_many_as_read(user_id, notification_ids)
        self.logger.info(f"Marked {count} notifications read for user {user_id}")
        return count

    @BaseService.measure_operation("delete_notification")
    def delete_notification(self, user_id: str, notification_id: str) -> None:
        with self.transaction():
            if not self.repository.delete_for_user(user_id, notification_id):
                raise NotFoundException("Notification not found", code="NOTIFICATION_NOT_FOUND")

    @BaseService.measure_operation("delete_all_notifications")
    def delete_all(self, user_id: str) -> int:
        with self.transaction():
            return self.repository.delete_all_for_user(user_id)
