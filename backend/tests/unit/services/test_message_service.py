"""
Unit tests for MessageService.

Exercises the shared message-creation contract, edit/delete rules, seen
receipts and the conversation summary against an in-memory database.
"""

from unittest.mock import patch

import pytest

from socialchat.core.config import Settings
from socialchat.core.exceptions import (
    ForbiddenException,
    NotFoundException,
    StorageException,
    ValidationException,
)
from socialchat.models.conversation import NO_MESSAGES_SUMMARY
from socialchat.models.message import DELETED_REPLY_PREVIEW, TOMBSTONE_TEXT, Message
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.services.attachment_service import AttachmentRef
from socialchat.services.message_service import MessageService, summarize


@pytest.fixture
def service(db, attachments):
    return MessageService(db, attachments=attachments)


def _image(handle="chat/u/pic.png"):
    return AttachmentRef(
        url=f"https://media.test/{handle}", kind="image", thumbnail_url=None, handle=handle
    )


class TestSummarize:
    def test_no_message(self):
        assert summarize(None) == NO_MESSAGES_SUMMARY

    def test_text_is_truncated_with_ellipsis(self):
        message = Message(content="x" * 150)
        text = summarize(message, max_length=100)
        assert len(text) == 100
        assert text.endswith("...")

    def test_short_text_is_kept(self):
        assert summarize(Message(content="  hello  ")) == "hello"

    def test_attachment_only_renders_kind(self):
        assert summarize(Message(content="", file_type="video")) == "[Video]"
        assert summarize(Message(content="", file_type="image")) == "[Image]"


class TestCreateMessage:
    def test_send_populates_payload_and_counters(self, db, service, conversation, alice, bob):
        sent = service.create_message(conversation.id, alice.id, "  Hello Bob  ")

        assert sent.payload.content == "Hello Bob"
        assert sent.payload.seen_by == [alice.id]
        assert sent.payload.sender.name == "Alice"
        assert sent.payload.is_edited is False
        assert sent.recipient_id == bob.id
        assert sorted(sent.participant_ids) == sorted([alice.id, bob.id])
        assert sent.summary_error is None
        assert sent.chat.last_message == "Hello Bob"
        assert sent.chat.unread_counts == {alice.id: 0, bob.id: 1}

    def test_attachment_only_send(self, service, conversation, alice):
        sent = service.create_message(conversation.id, alice.id, "", attachment=_image())

        assert sent.attachment_kind == "image"
        assert sent.payload.attachment.url.endswith("pic.png")
        assert sent.chat.last_message == "[Image]"

    def test_empty_send_is_rejected_and_nothing_persisted(self, db, service, conversation, alice):
        with pytest.raises(ValidationException) as exc:
            service.create_message(conversation.id, alice.id, "   ")

        assert exc.value.message == "Message content or file is required"
        assert db.query(Message).count() == 0

    def test_missing_conversation_id(self, service, alice):
        with pytest.raises(ValidationException) as exc:
            service.create_message(None, alice.id, "hi")
        assert exc.value.message == "Chat ID is required"

    def test_unknown_conversation(self, service, alice):
        with pytest.raises(NotFoundException):
            service.create_message("01HZZZZZZZZZZZZZZZZZZZZZZZ", alice.id, "hi")

    def test_non_participant_is_forbidden(self, db, service, conversation, carol):
        with pytest.raises(ForbiddenException) as exc:
            service.create_message(conversation.id, carol.id, "let me in")

        assert exc.value.message == "Unauthorized"
        assert db.query(Message).count() == 0

    def test_reply_must_target_same_conversation(self, db, service, conversation, alice, carol):
        other, _ = ConversationRepository(db).get_or_create(alice.id, carol.id)
        db.commit()
        foreign = service.create_message(other.id, alice.id, "elsewhere")

        with pytest.raises(ValidationException) as exc:
            service.create_message(
                conversation.id, alice.id, "reply", reply_to_id=foreign.payload.id
            )
        assert exc.value.code == "INVALID_REPLY"

    def test_reply_preview_is_included(self, service, conversation, alice, bob):
        original = service.create_message(conversation.id, alice.id, "question?")
        reply = service.create_message(
            conversation.id, bob.id, "answer", reply_to_id=original.payload.id
        )

        assert reply.payload.reply_to.id == original.payload.id
        assert reply.payload.reply_to.content == "question?"
        assert reply.payload.reply_to.sender.name == "Alice"

    def test_summary_failure_keeps_message(self, db, service, conversation, alice):
        with patch.object(
            ConversationRepository,
            "set_summary",
            side_effect=StorageException("Database operation failed: boom"),
        ):
            sent = service.create_message(conversation.id, alice.id, "still here")

        assert sent.chat is None
        assert sent.summary_error is not None
        db.expire_all()
        assert db.query(Message).count() == 1
        fresh = ConversationRepository(db).reload(conversation.id)
        assert fresh.last_message == NO_MESSAGES_SUMMARY


class TestEditMessage:
    def test_edit_sets_flag_and_refreshes_latest_summary(self, service, conversation, alice):
        sent = service.create_message(conversation.id, alice.id, "typo")

        change = service.edit_message(sent.payload.id, alice.id, "fixed")

        assert change.payload.content == "fixed"
        assert change.payload.is_edited is True
        assert change.chat.last_message == "fixed"

    def test_edit_of_older_message_leaves_summary(self, service, conversation, alice, bob):
        older = service.create_message(conversation.id, alice.id, "first")
        service.create_message(conversation.id, bob.id, "second")

        change = service.edit_message(older.payload.id, alice.id, "first!")

        assert change.chat is None

    def test_only_sender_can_edit(self, service, conversation, alice, bob):
        sent = service.create_message(conversation.id, alice.id, "mine")

        with pytest.raises(ForbiddenException):
            service.edit_message(sent.payload.id, bob.id, "hijack")

    def test_cannot_edit_attachment_message(self, service, conversation, alice):
        sent = service.create_message(conversation.id, alice.id, "caption", attachment=_image())

        with pytest.raises(ValidationException) as exc:
            service.edit_message(sent.payload.id, alice.id, "new caption")
        assert exc.value.message == "Cannot edit messages with files"

    def test_cannot_edit_deleted_message(self, service, conversation, alice):
        sent = service.create_message(conversation.id, alice.id, "oops")
        service.delete_message(sent.payload.id, alice.id)

        with pytest.raises(ValidationException):
            service.edit_message(sent.payload.id, alice.id, "revive")

    def test_empty_edit_is_rejected(self, service, conversation, alice):
        sent = service.create_message(conversation.id, alice.id, "text")

        with pytest.raises(ValidationException):
            service.edit_message(sent.payload.id, alice.id, "   ")

    def test_unknown_message(self, service, alice):
        with pytest.raises(NotFoundException):
            service.edit_message("01HZZZZZZZZZZZZZZZZZZZZZZZ", alice.id, "x")


class TestDeleteMessage:
    def test_delete_tombstones_and_releases_handle(self, service, storage, conversation, alice):
        sent = service.create_message(
            conversation.id, alice.id, "", attachment=_image("chat/a/photo.png")
        )

        change = service.delete_message(sent.payload.id, alice.id)

        assert change.payload.is_deleted is True
        assert change.payload.content == TOMBSTONE_TEXT
        assert change.payload.attachment is None
        assert change.payload.seen_by == [alice.id]
        assert storage.released == ["chat/a/photo.png"]

    def test_delete_of_latest_recomputes_summary(self, service, conversation, alice, bob):
        service.create_message(conversation.id, alice.id, "first")
        latest = service.create_message(conversation.id, bob.id, "second")

        change = service.delete_message(latest.payload.id, bob.id)

        assert change.chat.last_message == "first"

    def test_delete_of_only_message_resets_summary(self, service, conversation, alice):
        sent = service.create_message(conversation.id, alice.id, "solo")

        change = service.delete_message(sent.payload.id, alice.id)

        assert change.chat.last_message == NO_MESSAGES_SUMMARY
        assert change.chat.last_message_at is None

    def test_reply_preview_of_deleted_target(self, service, conversation, alice, bob):
        original = service.create_message(conversation.id, alice.id, "secret")
        reply = service.create_message(
            conversation.id, bob.id, "what?", reply_to_id=original.payload.id
        )
        service.delete_message(original.payload.id, alice.id)

        history = service.get_conversation_messages(conversation.id, bob.id)

        preview = next(m for m in history if m.id == reply.payload.id).reply_to
        assert preview.content == DELETED_REPLY_PREVIEW
        assert preview.is_deleted is True

    def test_only_sender_can_delete(self, service, conversation, alice, bob):
        sent = service.create_message(conversation.id, alice.id, "mine")

        with pytest.raises(ForbiddenException):
            service.delete_message(sent.payload.id, bob.id)

    def test_second_delete_is_rejected(self, service, conversation, alice):
        sent = service.create_message(conversation.id, alice.id, "twice")
        service.delete_message(sent.payload.id, alice.id)

        with pytest.raises(ValidationException) as exc:
            service.delete_message(sent.payload.id, alice.id)
        assert exc.value.message == "Message already deleted"


class TestSeenAndUnseen:
    def test_mark_seen_adds_reader_and_resets_unread(self, service, conversation, alice, bob):
        first = service.create_message(conversation.id, alice.id, "one")
        second = service.create_message(conversation.id, alice.id, "two")

        result = service.mark_seen(
            conversation.id, bob.id, [first.payload.id, second.payload.id, first.payload.id]
        )

        assert result.message_ids == [first.payload.id, second.payload.id]
        assert result.chat.unread_counts[bob.id] == 0
        history = service.get_conversation_messages(conversation.id, alice.id)
        assert all(sorted(m.seen_by) == sorted([alice.id, bob.id]) for m in history)

    def test_mark_seen_ignores_own_messages(self, service, conversation, alice):
        own = service.create_message(conversation.id, alice.id, "mine")

        result = service.mark_seen(conversation.id, alice.id, [own.payload.id])

        assert result.message_ids == []

    def test_mark_seen_twice_keeps_single_entry(self, service, conversation, alice, bob):
        sent = service.create_message(conversation.id, alice.id, "hi")

        service.mark_seen(conversation.id, bob.id, [sent.payload.id])
        service.mark_seen(conversation.id, bob.id, [sent.payload.id])

        history = service.get_conversation_messages(conversation.id, bob.id)
        assert history[0].seen_by.count(bob.id) == 1

    def test_unseen_messages_for_recipient(self, service, conversation, alice, bob):
        first = service.create_message(conversation.id, alice.id, "one")
        service.create_message(conversation.id, bob.id, "reply")

        batch = service.get_unseen_messages(conversation.id, bob.id)

        assert batch.message_ids == [first.payload.id]

    def test_unseen_requires_membership(self, service, conversation, carol):
        with pytest.raises(ForbiddenException):
            service.get_unseen_messages(conversation.id, carol.id)


class TestHistory:
    def test_history_keeps_newest_in_oldest_first_order(
        self, db, attachments, conversation, alice
    ):
        service = MessageService(
            db, attachments=attachments, config=Settings(message_history_limit=2)
        )
        for text in ("a", "b", "c"):
            service.create_message(conversation.id, alice.id, text)

        history = service.get_conversation_messages(conversation.id, alice.id)

        assert [m.content for m in history] == ["b", "c"]

    def test_history_requires_membership(self, service, conversation, carol):
        with pytest.raises(ForbiddenException):
            service.get_conversation_messages(conversation.id, carol.id)


class TestOperationMetrics:
    def test_measured_operations_record_success_and_failure(
        self, service, conversation, alice, carol
    ):
        before = service.get_metrics().get("create_message", {}).get("failure_count", 0)
        service.create_message(conversation.id, alice.id, "counted")
        with pytest.raises(ForbiddenException):
            service.create_message(conversation.id, carol.id, "refused")

        stats = service.get_metrics()["create_message"]
        assert stats["success_count"] >= 1
        assert stats["failure_count"] == before + 1
