# backend/socialchat/services/dependencies.py
"""
Dependency injection functions for services.

Usage in routes:
    service: MessageService = Depends(get_message_service)
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from .attachment_service import AttachmentService
from .conversation_service import ConversationService
from .message_service import MessageService
from .messaging.coordinator import MessagingCoordinator
from .notification_service import NotificationService


def get_coordinator(request: Request) -> MessagingCoordinator:
    """The process-wide coordinator built in the application lifespan."""
    return request.app.state.coordinator


def get_attachment_service(request: Request) -> AttachmentService:
    return request.app.state.attachments


def get_message_service(
    db: Session = Depends(get_db),
    attachments: AttachmentService = Depends(get_attachment_service),
) -> MessageService:
    return MessageService(db, attachments=attachments)


def get_conversation_service(db: Session = Depends(get_db)) -> ConversationService:
    return ConversationService(db)


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)
