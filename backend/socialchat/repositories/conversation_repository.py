# backend/socialchat/repositories/conversation_repository.py
"""
Conversation Repository for two-party messaging.

Provides data access methods for conversations: pair lookup, per-user
listing, summary writes, atomic unread counters and per-user soft deletion.
"""

from datetime import datetime, timezone
from typing import List, Optional, Sequence, cast

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.conversation import Conversation, ConversationDeletion
from .base_repository import BaseRepository


class ConversationRepository(BaseRepository[Conversation]):
    """
    Repository for Conversation entity operations.

    Unread counters are only ever changed with single-statement updates
    (``count = count + 1`` / ``count = 0``), never read-modify-write.
    """

    def __init__(self, db: Session):
        super().__init__(db, Conversation)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Conversation.user1), joinedload(Conversation.user2))

    def find_by_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        """
        Find the conversation between two users regardless of slot order.

        Args:
            user_a: One participant's user ID
            user_b: The other participant's user ID

        Returns:
            The conversation if found, None otherwise
        """
        try:
            result = (
                self.db.query(Conversation)
                .filter(
                    or_(
                        and_(Conversation.user1_id == user_a, Conversation.user2_id == user_b),
                        and_(Conversation.user1_id == user_b, Conversation.user2_id == user_a),
                    )
                )
                .first()
            )
            return cast(Optional[Conversation], result)
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding conversation by pair: {str(e)}")
            raise RepositoryException(f"Failed to find conversation: {str(e)}")

    def get_or_create(self, user_a: str, user_b: str) -> tuple[Conversation, bool]:
        """
        Get an existing conversation or create a new one (lookup-before-create).

        Returns:
            Tuple of (conversation, created) where created is True if new
        """
        existing = self.find_by_pair(user_a, user_b)
        if existing:
            return existing, False

        conversation = self.create(user1_id=user_a, user2_id=user_b)
        return conversation, True

    def find_for_user(self, user_id: str, include_hidden: bool = False) -> Sequence[Conversation]:
        """
        Conversations where ``user_id`` is a participant, most recent activity first.

        Conversations the user soft-deleted are excluded unless ``include_hidden``.
        """
        try:
            query: Query = self._apply_eager_loading(self.db.query(Conversation)).filter(
                or_(Conversation.user1_id == user_id, Conversation.user2_id == user_id)
            )
            if not include_hidden:
                hidden = select(ConversationDeletion.conversation_id).where(
                    ConversationDeletion.user_id == user_id
                )
                query = query.filter(~Conversation.id.in_(hidden))
            query = query.order_by(
                func.coalesce(Conversation.last_message_at, Conversation.created_at).desc()
            )
            return cast(Sequence[Conversation], query.all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing conversations for user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list conversations: {str(e)}")

    def find_ids_for_user(self, user_id: str) -> List[str]:
        """Ids of every conversation the user participates in (hidden ones included)."""
        try:
            rows = (
                self.db.query(Conversation.id)
                .filter(or_(Conversation.user1_id == user_id, Conversation.user2_id == user_id))
                .all()
            )
            return [str(row[0]) for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing conversation ids for user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list conversations: {str(e)}")

    def set_summary(
        self, conversation_id: str, summary: str, last_message_at: Optional[datetime]
    ) -> None:
        try:
            self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(
                    last_message=summary,
                    last_message_at=last_message_at,
                    updated_at=datetime.now(timezone.utc),
                )
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating summary for {conversation_id}: {str(e)}")
            raise RepositoryException(f"Failed to update conversation summary: {str(e)}")

    def increment_unread(self, conversation: Conversation, recipient_id: str) -> None:
        """Atomically bump the recipient slot's unread counter."""
        column = self._unread_column(conversation, recipient_id)
        try:
            self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation.id)
                .values({column: column + 1})
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error incrementing unread for {conversation.id}: {str(e)}")
            raise RepositoryException(f"Failed to increment unread count: {str(e)}")

    def reset_unread(self, conversation: Conversation, user_id: str) -> None:
        column = self._unread_column(conversation, user_id)
        try:
            self.db.execute(
                update(Conversation).where(Conversation.id == conversation.id).values({column: 0})
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error resetting unread for {conversation.id}: {str(e)}")
            raise RepositoryException(f"Failed to reset unread count: {str(e)}")

    def reload(self, conversation_id: str) -> Optional[Conversation]:
        """Re-read a conversation, overwriting stale attributes in the identity map."""
        try:
            return cast(
                Optional[Conversation],
                self.db.query(Conversation)
                .filter(Conversation.id == conversation_id)
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error reloading conversation {conversation_id}: {str(e)}")
            raise RepositoryException(f"Failed to reload conversation: {str(e)}")

    def is_hidden_for(self, conversation_id: str, user_id: str) -> bool:
        try:
            return (
                self.db.query(ConversationDeletion.id)
                .filter(
                    ConversationDeletion.conversation_id == conversation_id,
                    ConversationDeletion.user_id == user_id,
                )
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking conversation visibility: {str(e)}")
            raise RepositoryException(f"Failed to check conversation visibility: {str(e)}")

    def hide_for(self, conversation_id: str, user_id: str) -> bool:
        """Add ``user_id`` to the conversation's soft-deleted set. Returns False if already hidden."""
        if self.is_hidden_for(conversation_id, user_id):
            return False
        try:
            self.db.add(ConversationDeletion(conversation_id=conversation_id, user_id=user_id))
            self.db.flush()
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Error hiding conversation {conversation_id}: {str(e)}")
            raise RepositoryException(f"Failed to delete conversation: {str(e)}")

    @staticmethod
    def _unread_column(conversation: Conversation, user_id: str):  # type: ignore[no-untyped-def]
        if user_id == conversation.user1_id:
            return Conversation.user1_unread_count
        if user_id == conversation.user2_id:
            return Conversation.user2_unread_count
        raise RepositoryException(f"User {user_id} is not part of conversation {conversation.id}")
