"""Tests for NotificationRepository (inbox entries)."""

import pytest

from socialchat.core.exceptions import RepositoryException
from socialchat.models.notification import Notification
from socialchat.repositories.notification_repository import NotificationRepository


def _seed(db, user, count, type="new_message"):
    repo = NotificationRepository(db)
    created = [
        repo.create_notification(user.id, type, f"Notification {i}", related_id=None)
        for i in range(count)
    ]
    db.commit()
    return created


def test_create_notification_defaults_to_unread(db, alice, conversation):
    repo = NotificationRepository(db)
    notification = repo.create_notification(
        alice.id, "new_message", "New message from Bob", related_id=conversation.id
    )
    db.commit()

    assert notification.read is False
    assert notification.related_id == conversation.id
    assert repo.get_unread_count(alice.id) == 1


def test_create_notification_rejects_unknown_type(db, alice):
    repo = NotificationRepository(db)

    with pytest.raises(RepositoryException):
        repo.create_notification(alice.id, "booking", "nope")


def test_get_user_notifications_paginates_and_filters(db, alice):
    created = _seed(db, alice, 3)
    repo = NotificationRepository(db)
    repo.mark_as_read_for_user(alice.id, created[0].id)
    db.commit()

    page = repo.get_user_notifications(alice.id, limit=2)
    unread = repo.get_user_notifications(alice.id, unread_only=True)

    assert len(page) == 2
    assert {n.id for n in unread} == {created[1].id, created[2].id}


def test_mark_as_read_is_scoped_to_owner(db, alice, bob):
    (notification,) = _seed(db, alice, 1)
    repo = NotificationRepository(db)

    assert repo.mark_as_read_for_user(bob.id, notification.id) is False
    assert repo.mark_as_read_for_user(alice.id, notification.id) is True


def test_mark_many_as_read_with_and_without_ids(db, alice):
    created = _seed(db, alice, 3)
    repo = NotificationRepository(db)

    assert repo.mark_many_as_read(alice.id, [created[0].id]) == 1
    assert repo.mark_many_as_read(alice.id) == 2
    assert repo.get_unread_count(alice.id) == 0


def test_delete_for_user_and_delete_all(db, alice, bob):
    alice_items = _seed(db, alice, 2)
    _seed(db, bob, 1, type="follow")
    repo = NotificationRepository(db)

    assert repo.delete_for_user(bob.id, alice_items[0].id) is False
    assert repo.delete_for_user(alice.id, alice_items[0].id) is True
    assert repo.delete_all_for_user(alice.id) == 1
    db.commit()

    remaining = db.query(Notification).all()
    assert [n.user_id for n in remaining] == [bob.id]
