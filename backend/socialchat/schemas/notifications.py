# backend/socialchat/schemas/notifications.py
"""Schemas for notification inbox endpoints and ``receive_notification`` events."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from ._strict_base import CamelModel, CamelRequestModel


class NotificationResponse(CamelModel):
    """Notification inbox entry."""

    id: str
    user_id: str
    type: str
    message: str
    related_id: Optional[str] = None
    read: bool
    created_at: datetime


class NotificationListResponse(CamelModel):
    notifications: List[NotificationResponse]
    unread_count: int = Field(..., ge=0)


class MarkNotificationsReadRequest(CamelRequestModel):
    """Omit ``notification_ids`` to mark the whole inbox read."""

    notification_ids: Optional[List[str]] = None


class NotificationStatusResponse(CamelModel):
    """Simple status response for notification actions."""

    success: bool
    message: Optional[str] = None
