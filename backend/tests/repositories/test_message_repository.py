"""
Tests for Message Repository.

Covers creation with the sender seeded into seen-by, history ordering,
unseen lookups, idempotent seen-by insertion and tombstoning.
"""

from socialchat.models.message import TOMBSTONE_TEXT, MessageSeen
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.message_repository import MessageRepository


def _send(db, conversation, sender, content="hi", **kwargs):
    message = MessageRepository(db).create_message(conversation.id, sender.id, content, **kwargs)
    db.commit()
    return message


class TestMessageRepositoryCreate:
    def test_create_seeds_sender_into_seen_by(self, db, conversation, alice):
        message = _send(db, conversation, alice)

        loaded = MessageRepository(db).get_with_context(message.id)

        assert loaded.seen_by == [alice.id]
        assert loaded.is_deleted is False
        assert loaded.is_edited is False
        assert len(loaded.id) == 26

    def test_reply_target_is_loaded_with_its_sender(self, db, conversation, alice, bob):
        original = _send(db, conversation, alice, "question")
        reply = _send(db, conversation, bob, "answer", reply_to_id=original.id)

        loaded = MessageRepository(db).get_with_context(reply.id)

        assert loaded.reply_to.id == original.id
        assert loaded.reply_to.sender.name == "Alice"


class TestMessageRepositoryReads:
    def test_find_by_conversation_is_oldest_first(self, db, conversation, alice, bob):
        first = _send(db, conversation, alice, "one")
        second = _send(db, conversation, bob, "two")
        third = _send(db, conversation, alice, "three")

        ids = [m.id for m in MessageRepository(db).find_by_conversation(conversation.id)]

        assert ids == [first.id, second.id, third.id]

    def test_find_by_conversation_limit_keeps_newest(self, db, conversation, alice, bob):
        _send(db, conversation, alice, "one")
        second = _send(db, conversation, bob, "two")
        third = _send(db, conversation, alice, "three")

        found = MessageRepository(db).find_by_conversation(conversation.id, limit=2)

        assert [m.id for m in found] == [second.id, third.id]

    def test_latest_visible_skips_tombstones(self, db, conversation, alice):
        repo = MessageRepository(db)
        first = _send(db, conversation, alice, "one")
        second = _send(db, conversation, alice, "two")
        repo.apply_tombstone(second)
        db.commit()

        assert repo.get_latest_visible(conversation.id).id == first.id

    def test_unseen_ids_exclude_own_and_seen_messages(self, db, conversation, alice, bob):
        repo = MessageRepository(db)
        from_alice_1 = _send(db, conversation, alice, "a1")
        from_alice_2 = _send(db, conversation, alice, "a2")
        _send(db, conversation, bob, "b1")
        repo.add_seen([from_alice_1.id], bob.id)
        db.commit()

        assert repo.get_unseen_ids(conversation.id, bob.id) == [from_alice_2.id]
        assert repo.get_unseen_ids(conversation.id, alice.id) != []


class TestMessageRepositorySeen:
    def test_add_seen_is_idempotent(self, db, conversation, alice, bob):
        repo = MessageRepository(db)
        message = _send(db, conversation, alice)

        repo.add_seen([message.id], bob.id)
        repo.add_seen([message.id], bob.id)
        db.commit()

        rows = db.query(MessageSeen).filter(MessageSeen.message_id == message.id).all()
        assert sorted(r.user_id for r in rows) == sorted([alice.id, bob.id])

    def test_filter_seeable_drops_own_and_foreign_messages(
        self, db, conversation, alice, bob, carol
    ):
        repo = MessageRepository(db)
        mine = _send(db, conversation, bob, "mine")
        theirs = _send(db, conversation, alice, "theirs")
        other_conv, _ = ConversationRepository(db).get_or_create(alice.id, carol.id)
        db.commit()
        elsewhere = _send(db, other_conv, alice, "elsewhere")

        seeable = repo.filter_seeable_ids(
            conversation.id, [mine.id, theirs.id, elsewhere.id], bob.id
        )

        assert seeable == [theirs.id]


class TestMessageRepositoryTombstone:
    def test_tombstone_clears_content_and_attachment(self, db, conversation, alice):
        repo = MessageRepository(db)
        message = _send(
            db,
            conversation,
            alice,
            "",
            file_url="https://media.test/a.png",
            file_type="image",
            file_handle="chat/a.png",
        )

        repo.apply_tombstone(message)
        db.commit()

        loaded = repo.get_with_context(message.id)
        assert loaded.content == TOMBSTONE_TEXT
        assert loaded.file_url is None
        assert loaded.file_type is None
        assert loaded.file_handle is None
        assert loaded.is_deleted is True
        assert loaded.seen_by == [alice.id]
