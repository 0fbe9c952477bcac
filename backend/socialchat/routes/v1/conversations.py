# backend/socialchat/routes/v1/conversations.py
"""
Conversation routes - API v1

Versioned conversation and message endpoints under /api/v1/conversations.
Business logic lives in ConversationService / MessageService; every write
fans out over the real-time channel through the coordinator, exactly like the
corresponding WebSocket event.

Endpoints:
    GET    /                                  - List the caller's conversations
    POST   /                                  - Start (or reopen) a conversation
    GET    /{conversation_id}                 - Conversation summary for the caller
    DELETE /{conversation_id}                 - Hide the conversation for the caller
    GET    /{conversation_id}/messages        - Message history (oldest first)
    POST   /{conversation_id}/messages        - Send a message (multipart, optional file)
    PUT    /{conversation_id}/messages/{id}   - Edit a message
    DELETE /{conversation_id}/messages/{id}   - Delete a message
    PUT    /{conversation_id}/seen            - Mark messages seen
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status

from ...auth import get_current_user_id
from ...core.exceptions import DomainException
from ...schemas.conversation import (
    ConversationListItem,
    ConversationListResponse,
    ConversationStatusResponse,
    CreateConversationRequest,
    CreateConversationResponse,
)
from ...schemas.message import (
    EditMessageRequest,
    MarkSeenRequest,
    MarkSeenResponse,
    MessageListResponse,
    SendMessageResponse,
)
from ...services.attachment_service import AttachmentRef, AttachmentService
from ...services.conversation_service import ConversationService
from ...services.dependencies import (
    get_attachment_service,
    get_conversation_service,
    get_coordinator,
    get_message_service,
)
from ...services.message_service import MessageService
from ...services.messaging.coordinator import MessagingCoordinator
from ...services.messaging.publisher import message_frame_data

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversations-v1"])


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationListResponse:
    """List conversations the caller has not hidden, most recent activity first."""
    try:
        items = await asyncio.to_thread(service.list_for_user, current_user_id)
    except DomainException as e:
        raise e.to_http_exception()
    return ConversationListResponse(conversations=items)


@router.post("", response_model=CreateConversationResponse)
async def create_conversation(
    request: CreateConversationRequest,
    response: Response,
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
    coordinator: MessagingCoordinator = Depends(get_coordinator),
) -> CreateConversationResponse:
    """
    Start a chat with another user.

    Returns the existing conversation when the pair already has one (200);
    a new conversation is announced to both users with ``chat_created`` (201).
    """
    try:
        items, created = await asyncio.to_thread(
            service.start_conversation, current_user_id, request.user_id
        )
    except DomainException as e:
        raise e.to_http_exception()

    conversation = items[current_user_id]
    if created:
        response.status_code = status.HTTP_201_CREATED
        try:
            await coordinator.deliver_chat_created(conversation.id, items)
        except Exception as e:
            logger.error(
                "[REALTIME] chat_created publish failed",
                extra={"error": str(e), "conversation_id": conversation.id},
            )
    return CreateConversationResponse(conversation=conversation, created=created)


@router.get("/{conversation_id}", response_model=ConversationListItem)
async def get_conversation(
    conversation_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationListItem:
    try:
        return await asyncio.to_thread(service.get_for_user, conversation_id, current_user_id)
    except DomainException as e:
        raise e.to_http_exception()


@router.delete("/{conversation_id}", response_model=ConversationStatusResponse)
async def delete_conversation(
    conversation_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
    coordinator: MessagingCoordinator = Depends(get_coordinator),
) -> ConversationStatusResponse:
    """Hide the conversation from the caller's list; the other participant keeps it."""
    try:
        await asyncio.to_thread(service.hide_for_user, conversation_id, current_user_id)
    except DomainException as e:
        raise e.to_http_exception()

    try:
        await coordinator.deliver_chat_deleted(current_user_id, conversation_id)
    except Exception as e:
        logger.error(
            "[REALTIME] chat_deleted publish failed",
            extra={"error": str(e), "conversation_id": conversation_id},
        )
    return ConversationStatusResponse(success=True, message="Chat deleted")


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def get_messages(
    conversation_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service),
) -> MessageListResponse:
    """Message history, oldest first; deleted messages appear as tombstones."""
    try:
        payloads = await asyncio.to_thread(
            service.get_conversation_messages, conversation_id, current_user_id
        )
    except DomainException as e:
        raise e.to_http_exception()
    return MessageListResponse(messages=[p.to_wire() for p in payloads])


@router.post(
    "/{conversation_id}/messages",
    response_model=SendMessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Empty message, bad reply reference or rejected file"},
        403: {"description": "Caller is not a participant"},
        404: {"description": "Conversation not found"},
    },
)
async def send_message(
    conversation_id: str,
    content: str = Form(""),
    temp_id: Optional[str] = Form(None, alias="tempId"),
    reply_to: Optional[str] = Form(None, alias="replyTo"),
    file: Optional[UploadFile] = File(None),
    current_user_id: str = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service),
    attachments: AttachmentService = Depends(get_attachment_service),
    coordinator: MessagingCoordinator = Depends(get_coordinator),
) -> SendMessageResponse:
    """
    Send a message, optionally with one file.

    Same contract as the ``send_message`` event; the response ``data`` is the
    ``receive_message`` payload and the message is also fanned out to the
    conversation room.
    """
    attachment: Optional[AttachmentRef] = None
    try:
        await asyncio.to_thread(service.ensure_participant, conversation_id, current_user_id)
        if file is not None and file.filename:
            if file.size is not None:
                attachments.validate(file.content_type, file.size)
            data = await file.read()
            attachment = await asyncio.to_thread(
                attachments.upload, data, file.content_type or "", current_user_id
            )
        sent = await asyncio.to_thread(
            service.create_message,
            conversation_id,
            current_user_id,
            content,
            attachment,
            reply_to,
        )
    except DomainException as e:
        if attachment is not None:
            await asyncio.to_thread(attachments.release, attachment.handle)
        logger.info(
            f"Fallback send rejected for {current_user_id}: {e.message}",
            extra={"conversation_id": conversation_id, "code": e.code},
        )
        raise e.to_http_exception()

    try:
        await coordinator.deliver_new_message(sent, temp_id)
    except Exception as e:
        logger.error(
            "[REALTIME] receive_message publish failed",
            extra={"error": str(e), "message_id": sent.payload.id},
        )
    return SendMessageResponse(status="success", data=message_frame_data(sent.payload, temp_id))


@router.put("/{conversation_id}/messages/{message_id}", response_model=SendMessageResponse)
async def edit_message(
    conversation_id: str,
    message_id: str,
    request: EditMessageRequest,
    current_user_id: str = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service),
    coordinator: MessagingCoordinator = Depends(get_coordinator),
) -> SendMessageResponse:
    """Edit a text-only message. Only the sender can edit."""
    try:
        change = await asyncio.to_thread(
            service.edit_message, message_id, current_user_id, request.content, conversation_id
        )
    except DomainException as e:
        raise e.to_http_exception()

    try:
        await coordinator.deliver_message_change(change, deleted=False)
    except Exception as e:
        logger.error(
            "[REALTIME] message_updated publish failed",
            extra={"error": str(e), "message_id": message_id},
        )
    return SendMessageResponse(status="success", data=message_frame_data(change.payload))


@router.delete("/{conversation_id}/messages/{message_id}", response_model=SendMessageResponse)
async def delete_message(
    conversation_id: str,
    message_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service),
    coordinator: MessagingCoordinator = Depends(get_coordinator),
) -> SendMessageResponse:
    """Replace a message with a tombstone. Only the sender can delete."""
    try:
        change = await asyncio.to_thread(
            service.delete_message, message_id, current_user_id, conversation_id
        )
    except DomainException as e:
        raise e.to_http_exception()

    try:
        await coordinator.deliver_message_change(change, deleted=True)
    except Exception as e:
        logger.error(
            "[REALTIME] message_deleted publish failed",
            extra={"error": str(e), "message_id": message_id},
        )
    return SendMessageResponse(status="success", data=message_frame_data(change.payload))


@router.put("/{conversation_id}/seen", response_model=MarkSeenResponse)
async def mark_seen(
    conversation_id: str,
    request: MarkSeenRequest,
    current_user_id: str = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service),
    coordinator: MessagingCoordinator = Depends(get_coordinator),
) -> MarkSeenResponse:
    try:
        seen = await asyncio.to_thread(
            service.mark_seen, conversation_id, current_user_id, request.message_ids
        )
    except DomainException as e:
        raise e.to_http_exception()

    try:
        await coordinator.deliver_seen(seen)
    except Exception as e:
        logger.error(
            "[REALTIME] messages_seen publish failed",
            extra={"error": str(e), "conversation_id": conversation_id},
        )
    return MarkSeenResponse(success=True, messages_marked=seen.newly_seen)
