# backend/socialchat/routes/v1/notifications.py
"""Notification inbox routes - API v1."""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from ...auth import get_current_user_id
from ...core.exceptions import DomainException
from ...schemas.notifications import (
    MarkNotificationsReadRequest,
    NotificationListResponse,
    NotificationStatusResponse,
)
from ...services.dependencies import get_notification_service
from ...services.notification_service import NotificationService

router = APIRouter(tags=["notifications-v1"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    unread_only: bool = Query(False),
    current_user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationListResponse:
    """List notifications for the current user, newest first."""
    return await asyncio.to_thread(
        service.list_notifications, current_user_id, limit, offset, unread_only
    )


@router.post("/mark-read", response_model=NotificationStatusResponse)
async def mark_notifications_read(
    request: Optional[MarkNotificationsReadRequest] = Body(None),
    current_user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationStatusResponse:
    """Mark the given notifications, or all of them when no ids are sent, as read."""
    ids = request.notification_ids if request else None
    count = await asyncio.to_thread(service.mark_many_as_read, current_user_id, ids)
    return NotificationStatusResponse(
        success=True,
        message=f"Marked {count} notifications as read",
    )


@router.delete("/delete-all", response_model=NotificationStatusResponse)
async def delete_all_notifications(
    current_user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationStatusResponse:
    """Delete all notifications for the current user."""
    deleted = await asyncio.to_thread(service.delete_all, current_user_id)
    return NotificationStatusResponse(
        success=True,
        message=f"Deleted {deleted} notifications",
    )


@router.put("/{notification_id}/read", response_model=NotificationStatusResponse)
async def mark_notification_read(
    notification_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationStatusResponse:
    """Mark a notification as read."""
    try:
        await asyncio.to_thread(service.mark_as_read, current_user_id, notification_id)
    except DomainException as e:
        raise e.to_http_exception()
    return NotificationStatusResponse(success=True, message="Notification marked as read")


@router.delete("/{notification_id}", response_model=NotificationStatusResponse)
async def delete_notification(
    notification_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationStatusResponse:
    """Delete a notification."""
    try:
        await asyncio.to_thread(service.delete_notification, current_user_id, notification_id)
    except DomainException as e:
        raise e.to_http_exception()
    return NotificationStatusResponse(success=True, message="Notification deleted")
