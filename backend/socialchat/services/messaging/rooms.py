# backend/socialchat/services/messaging/rooms.py
"""Conversation rooms: conversation id -> connections subscribed to its fan-out."""

from typing import Dict, Iterable, List, Set

from .connection import Connection


class RoomRegistry:
    """
    Connection-scoped room membership.

    Membership is keyed by connection, not user, and disappears with the
    connection (``leave_all`` on disconnect).
    """

    def __init__(self) -> None:
        self._members: Dict[str, Dict[str, Connection]] = {}
        self._rooms_of: Dict[str, Set[str]] = {}

    def join(self, room_id: str, handle: Connection) -> bool:
        """Add ``handle`` to the room. Returns False when it was already a member."""
        members = self._members.setdefault(room_id, {})
        if handle.connection_id in members:
            return False
        members[handle.connection_id] = handle
        self._rooms_of.setdefault(handle.connection_id, set()).add(room_id)
        return True

    def join_many(self, room_ids: Iterable[str], handle: Connection) -> int:
        return sum(1 for room_id in room_ids if self.join(room_id, handle))

    def leave_all(self, handle: Connection) -> None:
        for room_id in self._rooms_of.pop(handle.connection_id, set()):
            members = self._members.get(room_id)
            if members is None:
                continue
            members.pop(handle.connection_id, None)
            if not members:
                del self._members[room_id]

    def members(self, room_id: str) -> List[Connection]:
        """Snapshot of the room's connections (safe to iterate while others join)."""
        return list(self._members.get(room_id, {}).values())

    def rooms_of(self, handle: Connection) -> Set[str]:
        return set(self._rooms_of.get(handle.connection_id, set()))

    def is_member(self, room_id: str, handle: Connection) -> bool:
        return handle.connection_id in self._members.get(room_id, {})
