# backend/socialchat/repositories/message_repository.py
"""
Message Repository for the chat system.

Implements the data access operations of the message store: creation,
history reads, seen-by accumulation, edits and tombstoning.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Sequence, cast

from sqlalchemy import and_, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload, selectinload
import ulid

from ..core.exceptions import RepositoryException
from ..models.message import TOMBSTONE_TEXT, Message, MessageSeen
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class MessageRepository(BaseRepository[Message]):
    """
    Repository for message data access.

    Seen-by writes use atomic set insertion (``ON CONFLICT DO NOTHING``) so
    concurrent seen-marks for the same message never lose an entry.
    """

    def __init__(self, db: Session):
        super().__init__(db, Message)
        self.logger = logging.getLogger(__name__)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(Message.sender),
            joinedload(Message.reply_to).joinedload(Message.sender),
            selectinload(Message.seen_entries),
        )

    def create_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        file_url: Optional[str] = None,
        file_type: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        file_handle: Optional[str] = None,
        reply_to_id: Optional[str] = None,
    ) -> Message:
        """
        Persist a new message with the sender seeded into its seen-by set.

        Raises:
            RepositoryException: If creation fails
        """
        try:
            now = datetime.now(timezone.utc)
            message = Message(
                id=str(ulid.ULID()),
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                file_url=file_url,
                file_type=file_type,
                thumbnail_url=thumbnail_url,
                file_handle=file_handle,
                reply_to_id=reply_to_id,
                created_at=now,
                updated_at=now,
            )
            message.seen_entries.append(MessageSeen(user_id=sender_id, seen_at=now))
            self.db.add(message)
            self.db.flush()
            self.logger.info(f"Created message {message.id} in conversation {conversation_id}")
            return message
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating message: {str(e)}")
            raise RepositoryException(f"Failed to create message: {str(e)}")

    def get_with_context(self, message_id: str) -> Optional[Message]:
        """Load a message with sender, reply target and seen-by freshly populated."""
        try:
            return cast(
                Optional[Message],
                self._apply_eager_loading(self.db.query(Message))
                .filter(Message.id == message_id)
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading message {message_id}: {str(e)}")
            raise RepositoryException(f"Failed to load message: {str(e)}")

    def find_by_conversation(self, conversation_id: str, limit: int = 500) -> List[Message]:
        """
        The newest ``limit`` messages of a conversation, returned in
        insertion order (oldest first).

        Deleted messages are included as tombstones.
        """
        try:
            query = (
                self._apply_eager_loading(self.db.query(Message))
                .filter(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            )
            return list(reversed(cast(List[Message], query.all())))
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching messages for conversation: {str(e)}")
            raise RepositoryException(f"Failed to fetch messages for conversation: {str(e)}")

    def get_latest_visible(self, conversation_id: str) -> Optional[Message]:
        """The most recent non-deleted message of a conversation."""
        try:
            return cast(
                Optional[Message],
                self.db.query(Message)
                .filter(
                    and_(
                        Message.conversation_id == conversation_id,
                        Message.is_deleted == False,  # noqa: E712
                    )
                )
                .order_by(Message.created_at.desc(), Message.id.desc())
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching latest message: {str(e)}")
            raise RepositoryException(f"Failed to fetch latest message: {str(e)}")

    def _not_authored_by(self, user_id: str) -> Any:
        # sender_id is NULL once the author's account is gone
        return or_(Message.sender_id.is_(None), Message.sender_id != user_id)

    def get_unseen_ids(self, conversation_id: str, user_id: str) -> List[str]:
        """Ids of messages not authored by ``user_id`` that ``user_id`` has not seen."""
        try:
            seen_ids = select(MessageSeen.message_id).where(MessageSeen.user_id == user_id)
            rows = (
                self.db.query(Message.id)
                .filter(
                    Message.conversation_id == conversation_id,
                    self._not_authored_by(user_id),
                    ~Message.id.in_(seen_ids),
                )
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all()
            )
            return [str(row[0]) for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching unseen messages: {str(e)}")
            raise RepositoryException(f"Failed to fetch unseen messages: {str(e)}")

    def filter_seeable_ids(
        self, conversation_id: str, message_ids: Sequence[str], user_id: str
    ) -> List[str]:
        """Restrict ``message_ids`` to messages of the conversation not authored by ``user_id``."""
        if not message_ids:
            return []
        try:
            rows = (
                self.db.query(Message.id)
                .filter(
                    Message.id.in_(list(message_ids)),
                    Message.conversation_id == conversation_id,
                    self._not_authored_by(user_id),
                )
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all()
            )
            return [str(row[0]) for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error filtering seeable messages: {str(e)}")
            raise RepositoryException(f"Failed to filter messages: {str(e)}")

    def add_seen(self, message_ids: Sequence[str], user_id: str) -> int:
        """
        Add ``user_id`` to the seen-by set of each message.

        Existing entries are left untouched. Returns the number of newly inserted
        entries where the driver reports it.
        """
        if not message_ids:
            return 0
        now = datetime.now(timezone.utc)
        rows: List[Dict[str, Any]] = [
            {"id": str(ulid.ULID()), "message_id": mid, "user_id": user_id, "seen_at": now}
            for mid in message_ids
        ]
        try:
            dialect = self.dialect_name
            if dialect in ("postgresql", "sqlite"):
                insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
                stmt = (
                    insert(MessageSeen)
                    .values(rows)
                    .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
                )
                result = self.db.execute(stmt)
                inserted = max(int(result.rowcount or 0), 0)
            else:
                existing = {
                    str(row[0])
                    for row in self.db.query(MessageSeen.message_id)
                    .filter(
                        MessageSeen.user_id == user_id,
                        MessageSeen.message_id.in_(list(message_ids)),
                    )
                    .all()
                }
                fresh = [row for row in rows if row["message_id"] not in existing]
                for row in fresh:
                    self.db.add(MessageSeen(**row))
                inserted = len(fresh)
            self.db.flush()
            self.logger.info(f"Marked {inserted} messages as seen for user {user_id}")
            return inserted
        except SQLAlchemyError as e:
            self.logger.error(f"Error marking messages as seen: {str(e)}")
            raise RepositoryException(f"Failed to mark messages as seen: {str(e)}")

    def apply_edit(self, message: Message, new_content: str) -> Message:
        try:
            message.content = new_content
            message.is_edited = True
            message.updated_at = datetime.now(timezone.utc)
            self.db.flush()
            return message
        except SQLAlchemyError as e:
            self.logger.error(f"Error applying message edit: {str(e)}")
            raise RepositoryException(f"Failed to apply message edit: {str(e)}")

    def apply_tombstone(self, message: Message) -> Message:
        """
        Replace content with the tombstone text and clear the attachment.

        Identity, reply linkage and seen-by survive.
        """
        try:
            message.content = TOMBSTONE_TEXT
            message.file_url = None
            message.file_type = None
            message.thumbnail_url = None
            message.file_handle = None
            message.is_deleted = True
            message.updated_at = datetime.now(timezone.utc)
            self.db.flush()
            self.logger.info(f"Tombstoned message {message.id}")
            return message
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting message: {str(e)}")
            raise RepositoryException(f"Failed to delete message: {str(e)}")
