"""Repository for notification inbox entries."""

from __future__ import annotations

from typing import List, Optional, Sequence, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.notification import NOTIFICATION_TYPES, Notification
from .base_repository import BaseRepository


class NotificationRepository(BaseRepository[Notification]):
    """Data access for a user's notification inbox."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, Notification)

    def create_notification(
        self,
        user_id: str,
        type: str,
        message: str,
        related_id: str | None = None,
    ) -> Notification:
        if type not in NOTIFICATION_TYPES:
            raise RepositoryException(f"Invalid notification type: {type}")
        try:
            notification = Notification(
                user_id=user_id,
                type=type,
                message=message,
                related_id=related_id,
                read=False,
            )
            self.db.add(notification)
            self.db.flush()
            return notification
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating notification: {str(e)}")
            raise RepositoryException(f"Failed to create notification: {str(e)}")

    def get_user_notifications(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
    ) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.read == False)  # noqa: E712
        query = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return cast(List[Notification], self._execute_query(query))

    def get_unread_count(self, user_id: str) -> int:
        count = (
            self.db.query(func.count(Notification.id))
            .filter(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
            .scalar()
        )
        return int(count or 0)

    def get_for_user(self, user_id: str, notification_id: str) -> Optional[Notification]:
        return cast(
            Optional[Notification],
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .first(),
        )

    def mark_as_read_for_user(self, user_id: str, notification_id: str) -> bool:
        updated = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .update({"read": True}, synchronize_session="fetch")
        )
        return bool(updated)

    def mark_many_as_read(self, user_id: str, notification_ids: Sequence[str] | None = None) -> int:
        query = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.read == False,  # noqa: E712
        )
        if notification_ids:
            query = query.filter(Notification.id.in_(list(notification_ids)))
        updated = query.update({"read": True}, synchronize_session="fetch")
        return int(updated or 0)

    def delete_for_user(self, user_id: str, notification_id: str) -> bool:
        deleted = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .delete(synchronize_session="fetch")
        )
        return bool(deleted)

    def delete_all_for_user(self, user_id: str) -> int:
        deleted = (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .delete(synchronize_session="fetch")
        )
        return int(deleted or 0)
