# backend/socialchat/services/messaging/coordinator.py
"""
Real-time messaging coordinator.

Owns the connection lifecycle and the send/edit/delete/seen protocol:

- Admission: the bearer credential is verified before the socket is accepted
- Each connection runs its own receive loop; its events are handled in order
- Database work runs in worker threads with a fresh session per unit of work
- Domain failures become caller-directed ``message_error`` / ``error`` frames
  and never affect other connections

The HTTP fallback routes call the ``deliver_*`` methods so both send paths
fan out through the same emit primitives.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, sessionmaker

from ...auth import verify_token
from ...core.exceptions import (
    DomainException,
    ForbiddenException,
    RepositoryException,
    ValidationException,
)
from ...database import SessionLocal
from ...monitoring.prometheus_metrics import prometheus_metrics
from ...schemas.message import (
    DeleteMessageEvent,
    EditMessageEvent,
    MarkSeenEvent,
    SendMessageEvent,
    TypingEvent,
)
from ...schemas.notifications import NotificationResponse
from ..attachment_service import AttachmentService
from ..conversation_service import ConversationService, FollowOutcome
from ..message_service import MessageChange, MessageService, SeenResult, SentMessage
from ..notification_service import NotificationService
from . import publisher
from .connection import Connection, FrameSender
from .events import (
    ClientEvent,
    EventType,
    build_error_event,
    build_event,
    build_message_error_event,
    build_typing_event,
    build_unseen_messages_event,
)
from .presence import PresenceRegistry
from .rooms import RoomRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Handlers may return an outcome label when they reported a failure themselves
Handler = Callable[[Connection, Any], Awaitable[Optional[str]]]

INTERNAL_ERROR_TEXT = "Internal server error"


def _field(data: Any, *names: str) -> Optional[str]:
    """Read the first present key; bare string payloads are accepted as the value."""
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        for name in names:
            value = data.get(name)
            if isinstance(value, str) and value:
                return value
    return None


def _validation_text(exc: PydanticValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid payload: {location} {first.get('msg', '')}".strip()


class MessagingCoordinator:
    """Real-time protocol handler shared by every connection of the process."""

    def __init__(
        self,
        presence: PresenceRegistry,
        rooms: RoomRegistry,
        attachments: AttachmentService,
        session_factory: sessionmaker = SessionLocal,
    ):
        self.presence = presence
        self.rooms = rooms
        self.attachments = attachments
        self.session_factory = session_factory
        self._handlers: Dict[str, Handler] = {
            ClientEvent.REGISTER.value: self.on_register,
            ClientEvent.JOIN_CHAT.value: self.on_join_chat,
            ClientEvent.TYPING.value: self.on_typing,
            ClientEvent.SEND_MESSAGE.value: self.on_send_message,
            ClientEvent.EDIT_MESSAGE.value: self.on_edit_message,
            ClientEvent.DELETE_MESSAGE.value: self.on_delete_message,
            ClientEvent.MARK_MESSAGES_SEEN.value: self.on_mark_messages_seen,
        }

    # Units of work

    async def _run(self, work: Callable[[Session], T]) -> T:
        """Run ``work`` in a worker thread with its own session."""

        def _unit() -> T:
            db = self.session_factory()
            try:
                return work(db)
            finally:
                db.close()

        return await asyncio.to_thread(_unit)

    def _messages(self, db: Session) -> MessageService:
        return MessageService(db, attachments=self.attachments)

    # Connection lifecycle

    def authenticate(self, token: Optional[str]) -> str:
        """
        Raises:
            UnauthorizedException: Missing or invalid credential
        """
        return verify_token(token)

    def connect(self, socket: FrameSender, user_id: str) -> Connection:
        handle = Connection(socket, user_id)
        prometheus_metrics.connection_opened()
        logger.info(
            f"[REALTIME] Connection {handle.connection_id} admitted for user {user_id}",
            extra={"connection_id": handle.connection_id, "user_id": user_id},
        )
        return handle

    def disconnect(self, handle: Connection) -> None:
        """Forget the connection: its presence entry (if still owned) and its rooms."""
        handle.closed = True
        self.presence.remove(handle)
        self.rooms.leave_all(handle)
        prometheus_metrics.connection_closed()
        logger.info(
            f"[REALTIME] Connection {handle.connection_id} closed for user {handle.user_id}",
            extra={"connection_id": handle.connection_id, "user_id": handle.user_id},
        )

    # Inbound dispatch

    async def handle_text(self, handle: Connection, text: str) -> None:
        try:
            frame = json.loads(text)
        except json.JSONDecodeError:
            prometheus_metrics.record_realtime_event("unknown", "rejected")
            await handle.send(build_error_event("Malformed frame"))
            return
        await self.handle_frame(handle, frame)

    async def handle_frame(self, handle: Connection, frame: Any) -> None:
        """Dispatch one ``{"event", "data"}`` frame and translate failures."""
        name = frame.get("event") if isinstance(frame, dict) else None
        data = frame.get("data") if isinstance(frame, dict) else None
        handler = self._handlers.get(name) if isinstance(name, str) else None
        if handler is None:
            prometheus_metrics.record_realtime_event("unknown", "rejected")
            await handle.send(build_error_event(f"Unknown event: {name}"))
            return

        outcome = "ok"
        try:
            outcome = await handler(handle, data) or "ok"
        except DomainException as e:
            outcome = "rejected"
            logger.info(
                f"[REALTIME] {name} rejected for {handle.user_id}: {e.message}",
                extra={"event": name, "code": e.code, "user_id": handle.user_id},
            )
            await handle.send(build_error_event(e.message))
        except PydanticValidationError as e:
            outcome = "rejected"
            await handle.send(build_error_event(_validation_text(e)))
        except Exception:
            outcome = "error"
            logger.exception(f"[REALTIME] Unhandled error processing {name} for {handle.user_id}")
            await handle.send(build_error_event(INTERNAL_ERROR_TEXT))
        finally:
            prometheus_metrics.record_realtime_event(name, outcome)

    # Handlers

    async def on_register(self, handle: Connection, data: Any) -> None:
        user_id = _field(data, "userId", "user_id")
        if user_id != handle.user_id:
            raise ForbiddenException("User ID mismatch", code="IDENTITY_MISMATCH")
        self.presence.register(user_id, handle)
        room_ids = await self._run(lambda db: ConversationService(db).list_room_ids(user_id))
        joined = self.rooms.join_many(room_ids, handle)
        logger.info(f"[REALTIME] {user_id} registered; joined {joined} rooms")
        await handle.send(
            build_event(EventType.REGISTERED, {"userId": user_id, "conversationIds": room_ids})
        )

    async def on_join_chat(self, handle: Connection, data: Any) -> None:
        conversation_id = _field(data, "conversationId", "conversation_id", "chatId")
        if not conversation_id:
            raise ValidationException("Chat ID is required", code="MISSING_CONVERSATION")
        batch = await self._run(
            lambda db: self._messages(db).get_unseen_messages(conversation_id, handle.user_id)
        )
        self.rooms.join(conversation_id, handle)
        await handle.send(build_unseen_messages_event(batch.conversation_id, batch.message_ids))

    async def on_typing(self, handle: Connection, data: Any) -> None:
        event = TypingEvent.model_validate(data or {})
        if event.user_id and event.user_id != handle.user_id:
            raise ForbiddenException("User ID mismatch", code="IDENTITY_MISMATCH")
        if not self.rooms.is_member(event.conversation_id, handle):
            raise ForbiddenException("Unauthorized", code="NOT_IN_ROOM")
        frame = build_typing_event(event.conversation_id, handle.user_id)
        await publisher.emit_to_room(self.rooms, event.conversation_id, frame)

    async def on_send_message(self, handle: Connection, data: Any) -> Optional[str]:
        """
        Send failures go back to the sender only, as ``message_error``
        carrying the client's ``tempId``.

        ``senderId`` is optional; when present it must match the connection.
        """
        temp_id = data.get("tempId") if isinstance(data, dict) else None
        try:
            event = SendMessageEvent.model_validate(data or {})
            if event.sender_id and event.sender_id != handle.user_id:
                raise ForbiddenException("Unauthorized", code="IDENTITY_MISMATCH")
            attachment = AttachmentService.parse_reference(event.attachment)
            sent = await self._run(
                lambda db: self._messages(db).create_message(
                    conversation_id=event.conversation_id,
                    sender_id=handle.user_id,
                    content=event.content,
                    attachment=attachment,
                    reply_to_id=event.reply_to,
                )
            )
        except DomainException as e:
            logger.info(
                f"[REALTIME] send_message rejected for {handle.user_id}: {e.message}",
                extra={"code": e.code, "temp_id": temp_id},
            )
            await handle.send(build_message_error_event(temp_id, e.message))
            return "rejected"
        except PydanticValidationError as e:
            await handle.send(build_message_error_event(temp_id, _validation_text(e)))
            return "rejected"
        except RepositoryException:
            logger.exception(f"[REALTIME] send_message failed for {handle.user_id}")
            await handle.send(build_message_error_event(temp_id, "Failed to send message"))
            return "error"
        await self.deliver_new_message(sent, event.temp_id, origin=handle)
        return "error" if sent.summary_error else None

    async def on_edit_message(self, handle: Connection, data: Any) -> None:
        event = EditMessageEvent.model_validate(data or {})
        change = await self._run(
            lambda db: self._messages(db).edit_message(
                event.message_id, handle.user_id, event.content
            )
        )
        await self.deliver_message_change(change, deleted=False, origin=handle)

    async def on_delete_message(self, handle: Connection, data: Any) -> None:
        event = DeleteMessageEvent.model_validate(data or {})
        change = await self._run(
            lambda db: self._messages(db).delete_message(event.message_id, handle.user_id)
        )
        await self.deliver_message_change(change, deleted=True, origin=handle)

    async def on_mark_messages_seen(self, handle: Connection, data: Any) -> None:
        event = MarkSeenEvent.model_validate(data or {})
        seen = await self._run(
            lambda db: self._messages(db).mark_seen(
                event.conversation_id, handle.user_id, event.message_ids
            )
        )
        await self.deliver_seen(seen)

    # Fan-out shared with the HTTP fallback routes

    def enroll(self, conversation_id: str, user_ids: Any) -> None:
        """Put the online participants' connections into the conversation room."""
        for user_id in user_ids:
            handle = self.presence.lookup(user_id)
            if handle is not None:
                self.rooms.join(conversation_id, handle)

    async def _report_summary_error(
        self, error: Optional[str], origin: Optional[Connection], user_id: Optional[str]
    ) -> None:
        if not error:
            return
        target = origin or (self.presence.lookup(user_id) if user_id else None)
        if target is not None:
            await target.send(build_error_event("Failed to update chat summary"))

    async def deliver_new_message(
        self, sent: SentMessage, temp_id: Optional[str], origin: Optional[Connection] = None
    ) -> None:
        """
        Fan out a committed send: ``receive_message`` and ``chat_updated`` to
        the room, then the recipient's notification.
        """
        self.enroll(sent.conversation_id, sent.participant_ids)
        await publisher.publish_new_message(self.rooms, sent, temp_id)
        await publisher.publish_chat_updated(self.rooms, sent.chat)
        await self._report_summary_error(
            sent.summary_error, origin, sent.payload.sender.id
        )
        notification = await self._create_message_notification(sent)
        if notification is not None:
            await publisher.notify_user(self.presence, sent.recipient_id, notification)

    async def _create_message_notification(
        self, sent: SentMessage
    ) -> Optional[NotificationResponse]:
        try:
            return await self._run(
                lambda db: NotificationService(db).create_message_notification(
                    recipient_id=sent.recipient_id,
                    sender_name=sent.payload.sender.name,
                    conversation_id=sent.conversation_id,
                    kind=sent.attachment_kind,
                )
            )
        except (DomainException, RepositoryException) as e:
            logger.error(
                f"[REALTIME] Failed to create notification for message {sent.payload.id}: {e}",
                extra={"conversation_id": sent.conversation_id},
            )
            return None

    async def deliver_message_change(
        self, change: MessageChange, deleted: bool, origin: Optional[Connection] = None
    ) -> None:
        self.enroll(change.conversation_id, change.participant_ids)
        if deleted:
            await publisher.publish_message_deleted(self.rooms, change)
        else:
            await publisher.publish_message_updated(self.rooms, change)
        await publisher.publish_chat_updated(self.rooms, change.chat)
        await self._report_summary_error(change.summary_error, origin, change.payload.sender.id)

    async def deliver_seen(self, seen: SeenResult) -> None:
        self.enroll(seen.conversation_id, seen.participant_ids)
        await publisher.publish_messages_seen(self.rooms, seen)
        await publisher.publish_chat_updated(self.rooms, seen.chat)

    async def deliver_follow(self, outcome: FollowOutcome) -> None:
        if outcome.conversation_id:
            self.enroll(outcome.conversation_id, list(outcome.chat_items))
            await publisher.publish_chat_created(self.presence, outcome.chat_items)
        await publisher.notify_user(self.presence, outcome.recipient_id, outcome.notification)

    async def deliver_chat_created(self, conversation_id: str, items: Dict[str, Any]) -> None:
        self.enroll(conversation_id, list(items))
        await publisher.publish_chat_created(self.presence, items)

    async def deliver_chat_deleted(self, user_id: str, conversation_id: str) -> None:
        await publisher.publish_chat_deleted(self.presence, user_id, conversation_id)
