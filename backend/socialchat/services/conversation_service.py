# backend/socialchat/services/conversation_service.py
"""
Conversation Service for two-party messaging.

Handles business logic for the conversation registry including:
- Listing a user's conversations with summaries and unread counts
- Explicit chat initiation (lookup-before-create)
- Per-user soft deletion
- The mutual-follow hook that opens a conversation between new mutuals
"""

from dataclasses import dataclass, field
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenException, NotFoundException, ValidationException
from ..models.conversation import NO_MESSAGES_SUMMARY, Conversation
from ..repositories.conversation_repository import ConversationRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.user_repository import UserRepository
from ..schemas.conversation import ConversationListItem
from ..schemas.message import SenderSummary
from ..schemas.notifications import NotificationResponse
from .base import BaseService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


@dataclass
class FollowOutcome:
    """What the real-time layer must announce after a follow event."""

    notification: NotificationResponse
    recipient_id: str
    conversation_id: Optional[str] = None
    conversation_created: bool = False
    # user id -> list item from that user's point of view (``chat_created``)
    chat_items: Dict[str, ConversationListItem] = field(default_factory=dict)


class ConversationService(BaseService):
    """
    Service for managing per-user-pair conversations.

    Handles conversation creation, listing and hiding with
    proper access control.
    """

    def __init__(
        self,
        db: Session,
        conversation_repository: Optional[ConversationRepository] = None,
        user_repository: Optional[UserRepository] = None,
    ):
        super().__init__(db)
        self.conversation_repository = (
            conversation_repository or RepositoryFactory.create_conversation_repository(db)
        )
        self.user_repository = user_repository or RepositoryFactory.create_user_repository(db)

    def to_list_item(self, conversation: Conversation, user_id: str) -> ConversationListItem:
        """Render a conversation from ``user_id``'s point of view."""
        other_id = conversation.get_other_user_id(user_id)
        other = conversation.user2 if other_id == conversation.user2_id else conversation.user1
        return ConversationListItem(
            id=str(conversation.id),
            other_user=SenderSummary.from_user(other, other_id),
            last_message=conversation.last_message or NO_MESSAGES_SUMMARY,
            last_message_at=conversation.last_message_at,
            unread_count=conversation.unread_count_for(user_id),
            created_at=conversation.created_at,
        )

    @BaseService.measure_operation("list_conversations")
    def list_for_user(self, user_id: str) -> List[ConversationListItem]:
        """Conversations of ``user_id`` they have not hidden, most recent activity first."""
        with self.transaction():
            conversations = self.conversation_repository.find_for_user(user_id)
            return [self.to_list_item(c, user_id) for c in conversations]

    @BaseService.measure_operation("list_conversation_ids")
    def list_room_ids(self, user_id: str) -> List[str]:
        """Every conversation the user participates in, hidden ones included."""
        with self.transaction():
            return self.conversation_repository.find_ids_for_user(user_id)

    @BaseService.measure_operation("get_conversation")
    def get_for_user(self, conversation_id: str, user_id: str) -> ConversationListItem:
        """
        Raises:
            NotFoundException: Conversation does not exist
            ForbiddenException: Caller is not a participant
        """
        with self.transaction():
            conversation = self.conversation_repository.get_by_id(conversation_id)
            if conversation is None:
                raise NotFoundException("Chat not found", code="CONVERSATION_NOT_FOUND")
            if not conversation.is_participant(user_id):
                raise ForbiddenException("Unauthorized", code="NOT_A_PARTICIPANT")
            return self.to_list_item(conversation, user_id)

    def _open(self, user_id: str, other_user_id: str) -> Tuple[Conversation, bool]:
        if user_id == other_user_id:
            raise ValidationException(
                "Cannot start a chat with yourself", code="SELF_CONVERSATION"
            )
        if self.user_repository.get_by_id(other_user_id) is None:
            raise NotFoundException("User not found", code="USER_NOT_FOUND")
        conversation, created = self.conversation_repository.get_or_create(user_id, other_user_id)
        if created:
            self.logger.info(
                f"Created conversation {conversation.id} between {user_id} and {other_user_id}"
            )
        return conversation, created

    @BaseService.measure_operation("start_conversation")
    def start_conversation(
        self, user_id: str, other_user_id: str
    ) -> Tuple[Dict[str, ConversationListItem], bool]:
        """
        Get or create the conversation between the caller and another user.

        Returns:
            (user id -> list item from that user's point of view, created)

        Raises:
            ValidationException: Caller tried to chat with themselves
            NotFoundException: The other user does not exist
        """
        with self.transaction():
            conversation, created = self._open(user_id, other_user_id)
            conversation_id = str(conversation.id)
        return self._items_for_participants(conversation_id), created

    def _items_for_participants(self, conversation_id: str) -> Dict[str, ConversationListItem]:
        with self.transaction():
            conversation = self.conversation_repository.get_by_id(conversation_id)
            if conversation is None:
                raise NotFoundException("Chat not found", code="CONVERSATION_NOT_FOUND")
            return {uid: self.to_list_item(conversation, uid) for uid in conversation.participant_ids}

    @BaseService.measure_operation("hide_conversation")
    def hide_for_user(self, conversation_id: str, user_id: str) -> bool:
        """
        Soft-delete a conversation for the caller only.

        Returns False when it was already hidden for them.
        """
        with self.transaction():
            conversation = self.conversation_repository.get_by_id(
                conversation_id, load_relationships=False
            )
            if conversation is None:
                raise NotFoundException("Chat not found", code="CONVERSATION_NOT_FOUND")
            if not conversation.is_participant(user_id):
                raise ForbiddenException("Unauthorized", code="NOT_A_PARTICIPANT")
            hidden = self.conversation_repository.hide_for(conversation_id, user_id)
        self.logger.info(f"Conversation {conversation_id} hidden for user {user_id}")
        return hidden

    @BaseService.measure_operation("handle_follow_event")
    def handle_follow_event(self, follower_id: str, followee_id: str, mutual: bool) -> FollowOutcome:
        """
        React to a follow reported by the follow subsystem.

        The followee always gets a ``follow`` notification. A mutual follow
        also opens (or reuses) the conversation between the two users.

        Raises:
            ValidationException: Self-follow
            NotFoundException: Either user does not exist
        """
        if follower_id == followee_id:
            raise ValidationException("You cannot follow yourself", code="SELF_FOLLOW")

        with self.transaction():
            follower = self.user_repository.get_by_id(follower_id)
            if follower is None:
                raise NotFoundException("User not found", code="USER_NOT_FOUND")
            follower_name = follower.name
            conversation_id: Optional[str] = None
            created = False
            if mutual:
                conversation, created = self._open(follower_id, followee_id)
                conversation_id = str(conversation.id)
            elif self.user_repository.get_by_id(followee_id) is None:
                raise NotFoundException("User not found", code="USER_NOT_FOUND")

        notification = NotificationService(self.db).create_follow_notification(
            recipient_id=followee_id,
            follower_id=follower_id,
            follower_name=follower_name,
            mutual=mutual,
        )
        outcome = FollowOutcome(
            notification=notification,
            recipient_id=followee_id,
            conversation_id=conversation_id,
            conversation_created=created,
        )
        if conversation_id:
            outcome.chat_items = self._items_for_participants(conversation_id)
        return outcome
