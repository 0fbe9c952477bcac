"""
MessagingCoordinator protocol tests.

Connections are driven directly with fake sockets; database work goes
through the coordinator's own sessions on the shared test database.
"""

import pytest

from socialchat.core.exceptions import UnauthorizedException
from socialchat.models.conversation import Conversation
from socialchat.models.message import Message
from socialchat.models.notification import Notification
from socialchat.services.conversation_service import ConversationService


async def _online(coordinator, socket_factory, user, register=True):
    socket = socket_factory()
    handle = coordinator.connect(socket, user.id)
    if register:
        await coordinator.handle_frame(handle, {"event": "register", "data": {"userId": user.id}})
    return socket, handle


async def _send(coordinator, handle, conversation_id, content="hi", temp_id="t1", **extra):
    data = {"conversationId": conversation_id, "content": content, "tempId": temp_id}
    data.update(extra)
    await coordinator.handle_frame(handle, {"event": "send_message", "data": data})


class TestAdmission:
    def test_missing_token_is_rejected(self, coordinator):
        with pytest.raises(UnauthorizedException) as exc:
            coordinator.authenticate(None)
        assert exc.value.code == "NO_TOKEN"

    def test_invalid_token_is_rejected(self, coordinator):
        with pytest.raises(UnauthorizedException) as exc:
            coordinator.authenticate("not-a-jwt")
        assert exc.value.code == "INVALID_TOKEN"

    def test_valid_token_yields_user(self, coordinator, alice, token_for):
        assert coordinator.authenticate(token_for(alice)) == alice.id


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_joins_rooms_and_acks(
        self, coordinator, socket_factory, conversation, alice
    ):
        socket, handle = await _online(coordinator, socket_factory, alice)

        ack = socket.of("registered")[0]
        assert ack == {"userId": alice.id, "conversationIds": [conversation.id]}
        assert coordinator.presence.lookup(alice.id) is handle
        assert coordinator.rooms.is_member(conversation.id, handle)

    @pytest.mark.asyncio
    async def test_register_with_other_identity_is_refused(
        self, coordinator, socket_factory, alice, bob
    ):
        socket, handle = await _online(coordinator, socket_factory, alice, register=False)

        await coordinator.handle_frame(handle, {"event": "register", "data": {"userId": bob.id}})

        assert socket.of("error") == [{"message": "User ID mismatch"}]
        assert coordinator.presence.lookup(bob.id) is None

    @pytest.mark.asyncio
    async def test_disconnect_of_replaced_connection_keeps_presence(
        self, coordinator, socket_factory, alice
    ):
        _, first = await _online(coordinator, socket_factory, alice)
        _, second = await _online(coordinator, socket_factory, alice)

        coordinator.disconnect(first)

        assert coordinator.presence.lookup(alice.id) is second
        coordinator.disconnect(second)
        assert coordinator.presence.lookup(alice.id) is None


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_send_fans_out_to_both_participants(
        self, db, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, _ = await _online(coordinator, socket_factory, bob)

        await _send(coordinator, alice_conn, conversation.id, "Hello Bob", temp_id="t1")

        for ws in (alice_ws, bob_ws):
            (message,) = ws.of("receive_message")
            assert message["tempId"] == "t1"
            assert message["content"] == "Hello Bob"
            assert message["seenBy"] == [alice.id]
            assert message["sender"]["id"] == alice.id
        assert bob_ws.of("chat_updated")[0]["unreadCount"] == 1
        assert alice_ws.of("chat_updated")[0]["unreadCount"] == 0
        assert alice_ws.of("chat_updated")[0]["lastMessage"] == "Hello Bob"

        (notification,) = bob_ws.of("receive_notification")
        assert notification["message"] == "New message from Alice"
        assert notification["relatedId"] == conversation.id
        assert alice_ws.of("receive_notification") == []

        db.expire_all()
        assert db.query(Notification).filter(Notification.user_id == bob.id).count() == 1
        assert db.get(Conversation, conversation.id).unread_count_for(bob.id) == 1

    @pytest.mark.asyncio
    async def test_offline_recipient_still_gets_stored_notification(
        self, db, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)

        await _send(coordinator, alice_conn, conversation.id)

        assert len(alice_ws.of("receive_message")) == 1
        db.expire_all()
        assert db.query(Notification).filter(Notification.user_id == bob.id).count() == 1

    @pytest.mark.asyncio
    async def test_non_participant_gets_message_error(
        self, db, coordinator, socket_factory, conversation, carol
    ):
        carol_ws, carol_conn = await _online(coordinator, socket_factory, carol)

        await _send(coordinator, carol_conn, conversation.id, temp_id="t9")

        assert carol_ws.of("message_error") == [{"tempId": "t9", "error": "Unauthorized"}]
        assert carol_ws.of("error") == []
        db.expire_all()
        assert db.query(Message).count() == 0

    @pytest.mark.asyncio
    async def test_claimed_sender_must_match_connection(
        self, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)

        await _send(coordinator, alice_conn, conversation.id, temp_id="t2", senderId=bob.id)

        assert alice_ws.of("message_error")[0]["tempId"] == "t2"
        assert alice_ws.of("receive_message") == []

    @pytest.mark.asyncio
    async def test_sender_is_taken_from_connection(
        self, coordinator, socket_factory, conversation, alice
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)

        await _send(coordinator, alice_conn, conversation.id, temp_id="t4")
        await _send(coordinator, alice_conn, conversation.id, temp_id="t5", senderId=alice.id)

        assert [m["sender"]["id"] for m in alice_ws.of("receive_message")] == [alice.id, alice.id]
        assert alice_ws.of("message_error") == []

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(
        self, coordinator, socket_factory, conversation, alice
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)

        await _send(coordinator, alice_conn, conversation.id, content="   ", temp_id="t3")

        assert alice_ws.of("message_error") == [
            {"tempId": "t3", "error": "Message content or file is required"}
        ]

    @pytest.mark.asyncio
    async def test_attachment_reference_send(
        self, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, _ = await _online(coordinator, socket_factory, bob)

        await _send(
            coordinator,
            alice_conn,
            conversation.id,
            content="",
            attachment={"url": "https://media.test/chat/a.png", "kind": "image"},
        )

        assert alice_ws.of("receive_message")[0]["attachment"]["kind"] == "image"
        assert bob_ws.of("receive_notification")[0]["message"] == "New image from Alice"
        assert bob_ws.of("chat_updated")[0]["lastMessage"] == "[Image]"

    @pytest.mark.asyncio
    async def test_deleting_reference_send_releases_no_media(
        self, coordinator, socket_factory, storage, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        victim_key = f"chat/{bob.id}/victim.png"

        await _send(
            coordinator,
            alice_conn,
            conversation.id,
            content="",
            attachment={
                "url": f"https://media.test/{victim_key}",
                "kind": "image",
                "handle": victim_key,
            },
        )
        message_id = alice_ws.of("receive_message")[0]["id"]
        await coordinator.handle_frame(
            alice_conn, {"event": "delete_message", "data": {"messageId": message_id}}
        )

        assert alice_ws.of("message_deleted")[0]["isDeleted"] is True
        assert storage.released == []

    @pytest.mark.asyncio
    async def test_dead_socket_does_not_break_fan_out(
        self, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, _ = await _online(coordinator, socket_factory, bob)
        bob_ws.fail = True

        await _send(coordinator, alice_conn, conversation.id)

        assert len(alice_ws.of("receive_message")) == 1
        assert alice_ws.of("error") == []

    @pytest.mark.asyncio
    async def test_send_enrolls_online_recipient_into_new_room(
        self, db, coordinator, socket_factory, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, _ = await _online(coordinator, socket_factory, bob)
        items, _ = ConversationService(db).start_conversation(alice.id, bob.id)
        conversation_id = items[alice.id].id

        await _send(coordinator, alice_conn, conversation_id)

        assert len(bob_ws.of("receive_message")) == 1


class TestJoinAndTyping:
    @pytest.mark.asyncio
    async def test_join_chat_reports_unseen_and_is_idempotent(
        self, coordinator, socket_factory, conversation, alice, bob
    ):
        _, alice_conn = await _online(coordinator, socket_factory, alice)
        await _send(coordinator, alice_conn, conversation.id, "one")
        await _send(coordinator, alice_conn, conversation.id, "two", temp_id="t2")
        bob_ws, bob_conn = await _online(coordinator, socket_factory, bob, register=False)

        await coordinator.handle_frame(
            bob_conn, {"event": "join_chat", "data": {"conversationId": conversation.id}}
        )
        await coordinator.handle_frame(
            bob_conn, {"event": "join_chat", "data": conversation.id}
        )

        first, second = bob_ws.of("unseen_messages")
        assert len(first["messageIds"]) == 2
        assert first == second
        assert coordinator.rooms.members(conversation.id).count(bob_conn) == 1

    @pytest.mark.asyncio
    async def test_join_chat_requires_participant(
        self, coordinator, socket_factory, conversation, carol
    ):
        carol_ws, carol_conn = await _online(coordinator, socket_factory, carol)

        await coordinator.handle_frame(
            carol_conn, {"event": "join_chat", "data": {"conversationId": conversation.id}}
        )

        assert carol_ws.of("error") == [{"message": "Unauthorized"}]
        assert not coordinator.rooms.is_member(conversation.id, carol_conn)

    @pytest.mark.asyncio
    async def test_typing_is_relayed_to_whole_room(
        self, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, _ = await _online(coordinator, socket_factory, bob)

        await coordinator.handle_frame(
            alice_conn, {"event": "typing", "data": {"conversationId": conversation.id}}
        )

        expected = [{"conversationId": conversation.id, "userId": alice.id}]
        assert bob_ws.of("typing") == expected
        assert alice_ws.of("typing") == expected

    @pytest.mark.asyncio
    async def test_typing_outside_room_is_refused(
        self, coordinator, socket_factory, conversation, carol
    ):
        carol_ws, carol_conn = await _online(coordinator, socket_factory, carol)

        await coordinator.handle_frame(
            carol_conn, {"event": "typing", "data": {"conversationId": conversation.id}}
        )

        assert carol_ws.of("error") == [{"message": "Unauthorized"}]


class TestEditDeleteSeen:
    @pytest.mark.asyncio
    async def test_edit_is_broadcast(self, coordinator, socket_factory, conversation, alice, bob):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, _ = await _online(coordinator, socket_factory, bob)
        await _send(coordinator, alice_conn, conversation.id, "helo")
        message_id = alice_ws.of("receive_message")[0]["id"]

        await coordinator.handle_frame(
            alice_conn,
            {"event": "edit_message", "data": {"messageId": message_id, "content": "hello"}},
        )

        (updated,) = bob_ws.of("message_updated")
        assert updated["content"] == "hello"
        assert updated["isEdited"] is True
        assert bob_ws.of("chat_updated")[-1]["lastMessage"] == "hello"

    @pytest.mark.asyncio
    async def test_edit_by_other_user_is_refused(
        self, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, bob_conn = await _online(coordinator, socket_factory, bob)
        await _send(coordinator, alice_conn, conversation.id)
        message_id = alice_ws.of("receive_message")[0]["id"]

        await coordinator.handle_frame(
            bob_conn, {"event": "edit_message", "data": {"messageId": message_id, "content": "x"}}
        )

        assert bob_ws.of("error") == [{"message": "You can only edit your own messages"}]
        assert alice_ws.of("message_updated") == []

    @pytest.mark.asyncio
    async def test_delete_is_broadcast_as_tombstone(
        self, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, _ = await _online(coordinator, socket_factory, bob)
        await _send(coordinator, alice_conn, conversation.id, "regret")
        message_id = alice_ws.of("receive_message")[0]["id"]

        await coordinator.handle_frame(
            alice_conn, {"event": "delete_message", "data": {"messageId": message_id}}
        )

        (deleted,) = bob_ws.of("message_deleted")
        assert deleted["id"] == message_id
        assert deleted["isDeleted"] is True
        assert deleted["content"] == "This message was deleted"
        assert bob_ws.of("chat_updated")[-1]["lastMessage"] == "No messages yet"

    @pytest.mark.asyncio
    async def test_mark_seen_broadcasts_and_resets_unread(
        self, db, coordinator, socket_factory, conversation, alice, bob
    ):
        alice_ws, alice_conn = await _online(coordinator, socket_factory, alice)
        bob_ws, bob_conn = await _online(coordinator, socket_factory, bob)
        await _send(coordinator, alice_conn, conversation.id)
        message_id = alice_ws.of("receive_message")[0]["id"]

        await coordinator.handle_frame(
            bob_conn,
            {
                "event": "mark_messages_seen",
                "data": {"conversationId": conversation.id, "messageIds": [message_id]},
            },
        )

        expected = {"conversationId": conversation.id, "messageIds": [message_id], "userId": bob.id}
        assert alice_ws.of("messages_seen") == [expected]
        assert bob_ws.of("messages_seen") == [expected]
        assert bob_ws.of("chat_updated")[-1]["unreadCount"] == 0
        db.expire_all()
        assert db.get(Conversation, conversation.id).unread_count_for(bob.id) == 0


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_event(self, coordinator, socket_factory, alice):
        socket, handle = await _online(coordinator, socket_factory, alice, register=False)

        await coordinator.handle_frame(handle, {"event": "launch_rockets", "data": {}})

        assert socket.of("error") == [{"message": "Unknown event: launch_rockets"}]

    @pytest.mark.asyncio
    async def test_malformed_text(self, coordinator, socket_factory, alice):
        socket, handle = await _online(coordinator, socket_factory, alice, register=False)

        await coordinator.handle_text(handle, "{not json")

        assert socket.of("error") == [{"message": "Malformed frame"}]

    @pytest.mark.asyncio
    async def test_invalid_payload_is_reported(self, coordinator, socket_factory, alice):
        socket, handle = await _online(coordinator, socket_factory, alice, register=False)

        await coordinator.handle_frame(handle, {"event": "edit_message", "data": {}})

        (error,) = socket.of("error")
        assert error["message"].startswith("Invalid payload")
