# backend/socialchat/services/message_service.py
"""
Message Service for chat functionality.

Handles business logic for the messaging system including:
- The single message-creation contract shared by the real-time and HTTP paths
- Edit/delete with sender-only access control
- Seen-by accumulation and unread counter resets
- The conversation summary (materialized view of the latest visible message)

Results are returned as plain dataclasses carrying fully built wire payloads
so callers can fan out without touching the database session.
"""

from dataclasses import dataclass, field
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    ForbiddenException,
    NotFoundException,
    StorageException,
    ValidationException,
)
from ..models.conversation import NO_MESSAGES_SUMMARY, Conversation
from ..models.message import Message
from ..repositories.conversation_repository import ConversationRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.message_repository import MessageRepository
from ..schemas.conversation import ChatUpdatedPayload
from ..schemas.message import MessagePayload
from .attachment_service import AttachmentRef, AttachmentService
from .base import BaseService

logger = logging.getLogger(__name__)


def summarize(message: Optional[Message], max_length: int = 100) -> str:
    """
    Summary text for a conversation whose latest visible message is ``message``.

    Content wins; an attachment-only message renders as ``[Image]``/``[Video]``...
    """
    if message is None:
        return NO_MESSAGES_SUMMARY
    text = (message.content or "").strip()
    if text:
        if len(text) > max_length:
            return text[: max(max_length - 3, 1)] + "..."
        return text
    if message.file_type:
        return f"[{message.file_type.capitalize()}]"
    return NO_MESSAGES_SUMMARY


@dataclass
class SentMessage:
    """Outcome of a send with everything fan-out needs."""

    payload: MessagePayload
    conversation_id: str
    participant_ids: List[str]
    recipient_id: str
    chat: Optional[ChatUpdatedPayload] = None
    summary_error: Optional[str] = None

    @property
    def attachment_kind(self) -> Optional[str]:
        return self.payload.attachment.kind if self.payload.attachment else None


@dataclass
class MessageChange:
    """Outcome of an edit or delete."""

    payload: MessagePayload
    conversation_id: str
    participant_ids: List[str]
    chat: Optional[ChatUpdatedPayload] = None
    summary_error: Optional[str] = None


@dataclass
class SeenResult:
    """Outcome of marking messages seen."""

    conversation_id: str
    user_id: str
    message_ids: List[str]
    participant_ids: List[str]
    chat: Optional[ChatUpdatedPayload] = None
    newly_seen: int = 0


@dataclass
class UnseenBatch:
    conversation_id: str
    message_ids: List[str] = field(default_factory=list)


class MessageService(BaseService):
    """
    Service for managing chat messages in conversations.

    Handles message creation, edits, tombstoning and seen receipts
    with proper access control and validation.
    """

    def __init__(
        self,
        db: Session,
        attachments: Optional[AttachmentService] = None,
        config: Optional[Settings] = None,
    ):
        """
        Initialize message service.

        Args:
            db: Database session
            attachments: Used to release media handles of deleted messages
            config: Settings override (tests)
        """
        super().__init__(db)
        self.repository: MessageRepository = RepositoryFactory.create_message_repository(db)
        self.conversation_repository: ConversationRepository = (
            RepositoryFactory.create_conversation_repository(db)
        )
        self.attachments = attachments
        self.config = config or default_settings
        self.logger = logging.getLogger(__name__)

    # Access helpers

    def _require_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.conversation_repository.get_by_id(
            conversation_id, load_relationships=False
        )
        if conversation is None:
            raise NotFoundException("Chat not found", code="CONVERSATION_NOT_FOUND")
        return conversation

    def _require_participant(self, conversation: Conversation, user_id: str) -> None:
        if not conversation.is_participant(user_id):
            raise ForbiddenException(
                "Unauthorized",
                code="NOT_A_PARTICIPANT",
                details={"conversation_id": conversation.id},
            )

    def _require_message(self, message_id: str, conversation_id: Optional[str] = None) -> Message:
        message = self.repository.get_by_id(message_id, load_relationships=False)
        if message is None or (conversation_id and message.conversation_id != conversation_id):
            raise NotFoundException("Message not found", code="MESSAGE_NOT_FOUND")
        return message

    def _payload(self, message_id: str) -> MessagePayload:
        message = self.repository.get_with_context(message_id)
        if message is None:
            raise NotFoundException("Message not found", code="MESSAGE_NOT_FOUND")
        return MessagePayload.from_message(message)

    def _is_latest(self, message: Message) -> bool:
        latest = self.repository.get_latest_visible(message.conversation_id)
        return latest is not None and latest.id == message.id

    # Summary

    @BaseService.measure_operation("refresh_summary")
    def refresh_summary(self, conversation_id: str) -> ChatUpdatedPayload:
        """
        Recompute the conversation summary from its latest non-deleted message.

        Every write path that can change "the latest visible message" (send,
        edit-of-latest, delete-of-latest) goes through here.
        """
        with self.transaction():
            latest = self.repository.get_latest_visible(conversation_id)
            self.conversation_repository.set_summary(
                conversation_id,
                summarize(latest, self.config.summary_max_length),
                latest.created_at if latest is not None else None,
            )
        return self.chat_snapshot(conversation_id)

    def _try_refresh_summary(
        self, conversation_id: str
    ) -> Tuple[Optional[ChatUpdatedPayload], Optional[str]]:
        try:
            return self.refresh_summary(conversation_id), None
        except StorageException as e:
            self.logger.error(
                f"Summary refresh failed for conversation {conversation_id}: {str(e)}",
                extra={"conversation_id": conversation_id},
            )
            return None, e.message

    def chat_snapshot(self, conversation_id: str) -> ChatUpdatedPayload:
        """Current summary and per-participant unread counts of a conversation."""
        conversation = self.conversation_repository.reload(conversation_id)
        if conversation is None:
            raise NotFoundException("Chat not found", code="CONVERSATION_NOT_FOUND")
        return ChatUpdatedPayload(
            conversation_id=str(conversation.id),
            last_message=conversation.last_message or NO_MESSAGES_SUMMARY,
            last_message_at=conversation.last_message_at,
            unread_counts=conversation.unread_counts(),
        )

    # Writes

    @BaseService.measure_operation("create_message")
    def create_message(
        self,
        conversation_id: Optional[str],
        sender_id: str,
        content: Optional[str] = None,
        attachment: Optional[AttachmentRef] = None,
        reply_to_id: Optional[str] = None,
    ) -> SentMessage:
        """
        Persist a new message and bump the recipient's unread counter.

        Message persistence and the unread increment commit together. The
        summary is refreshed afterwards; if that fails the message stands and
        the failure is reported through ``summary_error``.

        Raises:
            NotFoundException: Conversation does not exist
            ForbiddenException: Sender is not a participant
            ValidationException: No content and no attachment, or bad reply reference
            StorageException: Persistence failed (nothing was written)
        """
        if not conversation_id:
            raise ValidationException("Chat ID is required", code="MISSING_CONVERSATION")
        text = (content or "").strip()

        with self.transaction():
            conversation = self._require_conversation(conversation_id)
            self._require_participant(conversation, sender_id)

            if not text and attachment is None:
                raise ValidationException(
                    "Message content or file is required", code="EMPTY_MESSAGE"
                )
            if reply_to_id:
                target = self.repository.get_by_id(reply_to_id, load_relationships=False)
                if target is None or target.conversation_id != conversation_id:
                    raise ValidationException(
                        "Invalid reply reference",
                        code="INVALID_REPLY",
                        details={"reply_to": reply_to_id},
                    )

            message = self.repository.create_message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=text,
                file_url=attachment.url if attachment else None,
                file_type=attachment.kind if attachment else None,
                thumbnail_url=attachment.thumbnail_url if attachment else None,
                file_handle=attachment.handle if attachment else None,
                reply_to_id=reply_to_id or None,
            )
            recipient_id = conversation.get_other_user_id(sender_id)
            self.conversation_repository.increment_unread(conversation, recipient_id)
            participant_ids = conversation.participant_ids
            message_id = str(message.id)

        chat, summary_error = self._try_refresh_summary(conversation_id)
        return SentMessage(
            payload=self._payload(message_id),
            conversation_id=conversation_id,
            participant_ids=participant_ids,
            recipient_id=recipient_id,
            chat=chat,
            summary_error=summary_error,
        )

    @BaseService.measure_operation("edit_message")
    def edit_message(
        self,
        message_id: str,
        user_id: str,
        content: Optional[str],
        conversation_id: Optional[str] = None,
    ) -> MessageChange:
        """
        Replace the text of a message (sender only, text-only messages only).

        Raises:
            NotFoundException: Message does not exist
            ForbiddenException: Caller is not the sender
            ValidationException: Attachment-bearing, deleted, or empty content
        """
        text = (content or "").strip()
        with self.transaction():
            message = self._require_message(message_id, conversation_id)
            if message.sender_id != user_id:
                raise ForbiddenException(
                    "You can only edit your own messages", code="NOT_MESSAGE_OWNER"
                )
            if message.is_deleted:
                raise ValidationException("Cannot edit a deleted message", code="MESSAGE_DELETED")
            if message.has_attachment:
                raise ValidationException(
                    "Cannot edit messages with files", code="MESSAGE_HAS_ATTACHMENT"
                )
            if not text:
                raise ValidationException(
                    "Message content cannot be empty", code="EMPTY_MESSAGE"
                )
            was_latest = self._is_latest(message)
            self.repository.apply_edit(message, text)
            cid = str(message.conversation_id)
            participant_ids = self._participants_of(cid)

        chat, summary_error = self._try_refresh_summary(cid) if was_latest else (None, None)
        return MessageChange(
            payload=self._payload(message_id),
            conversation_id=cid,
            participant_ids=participant_ids,
            chat=chat,
            summary_error=summary_error,
        )

    @BaseService.measure_operation("delete_message")
    def delete_message(
        self, message_id: str, user_id: str, conversation_id: Optional[str] = None
    ) -> MessageChange:
        """
        Tombstone a message (sender only) and release its media handle.

        Releasing the handle is best-effort: a failure is logged and the
        delete still succeeds.

        Raises:
            NotFoundException: Message does not exist
            ForbiddenException: Caller is not the sender
            ValidationException: Message is already deleted
        """
        with self.transaction():
            message = self._require_message(message_id, conversation_id)
            if message.sender_id != user_id:
                raise ForbiddenException(
                    "You can only delete your own messages", code="NOT_MESSAGE_OWNER"
                )
            if message.is_deleted:
                raise ValidationException("Message already deleted", code="MESSAGE_DELETED")
            was_latest = self._is_latest(message)
            handle = message.file_handle
            self.repository.apply_tombstone(message)
            cid = str(message.conversation_id)
            participant_ids = self._participants_of(cid)

        if handle and self.attachments is not None:
            self.attachments.release(handle)

        chat, summary_error = self._try_refresh_summary(cid) if was_latest else (None, None)
        return MessageChange(
            payload=self._payload(message_id),
            conversation_id=cid,
            participant_ids=participant_ids,
            chat=chat,
            summary_error=summary_error,
        )

    @BaseService.measure_operation("mark_seen")
    def mark_seen(self, conversation_id: str, user_id: str, message_ids: List[str]) -> SeenResult:
        """
        Add ``user_id`` to the seen-by set of the given messages and zero the
        caller's unread counter for the conversation.

        Messages authored by the caller or belonging to another conversation
        are ignored.
        """
        with self.transaction():
            conversation = self._require_conversation(conversation_id)
            self._require_participant(conversation, user_id)
            seeable = self.repository.filter_seeable_ids(
                conversation_id, list(dict.fromkeys(message_ids or [])), user_id
            )
            newly_seen = self.repository.add_seen(seeable, user_id)
            self.conversation_repository.reset_unread(conversation, user_id)
            participant_ids = conversation.participant_ids

        return SeenResult(
            conversation_id=conversation_id,
            user_id=user_id,
            message_ids=seeable,
            participant_ids=participant_ids,
            chat=self.chat_snapshot(conversation_id),
            newly_seen=newly_seen,
        )

    # Reads

    def ensure_participant(self, conversation_id: str, user_id: str) -> None:
        """
        Membership check run before any attachment bytes are uploaded.

        Raises:
            NotFoundException: Conversation does not exist
            ForbiddenException: Caller is not a participant
        """
        with self.transaction():
            conversation = self._require_conversation(conversation_id)
            self._require_participant(conversation, user_id)

    @BaseService.measure_operation("get_unseen_messages")
    def get_unseen_messages(self, conversation_id: str, user_id: str) -> UnseenBatch:
        """Messages of the conversation the caller has neither authored nor seen."""
        with self.transaction():
            conversation = self._require_conversation(conversation_id)
            self._require_participant(conversation, user_id)
            ids = self.repository.get_unseen_ids(conversation_id, user_id)
        return UnseenBatch(conversation_id=conversation_id, message_ids=ids)

    @BaseService.measure_operation("get_conversation_messages")
    def get_conversation_messages(self, conversation_id: str, user_id: str) -> List[MessagePayload]:
        """Conversation history, oldest first, tombstones included."""
        with self.transaction():
            conversation = self._require_conversation(conversation_id)
            self._require_participant(conversation, user_id)
            messages = self.repository.find_by_conversation(
                conversation_id, limit=self.config.message_history_limit
            )
            return [MessagePayload.from_message(m) for m in messages]

    def _participants_of(self, conversation_id: str) -> List[str]:
        conversation = self._require_conversation(conversation_id)
        return conversation.participant_ids
