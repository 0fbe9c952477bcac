# backend/socialchat/services/messaging/presence.py
"""
Presence registry: user id -> the connection that last registered for it.

Process-local and rebuilt empty at start. A single instance is created in the
application lifespan and handed to the coordinator; running several
coordinator processes needs a shared presence store instead.
"""

import logging
from typing import Dict, Optional

from .connection import Connection

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Last-registration-wins presence map with a reverse index for removal."""

    def __init__(self) -> None:
        self._by_user: Dict[str, Connection] = {}
        self._by_connection: Dict[str, str] = {}

    def register(self, user_id: str, handle: Connection) -> Optional[Connection]:
        """Bind ``user_id`` to ``handle``; returns the handle it replaced, if any."""
        previous = self._by_user.get(user_id)
        if previous is not None and previous is not handle:
            self._by_connection.pop(previous.connection_id, None)
            logger.info(
                f"[PRESENCE] {user_id} re-registered; replacing connection {previous.connection_id}"
            )
        self._by_user[user_id] = handle
        self._by_connection[handle.connection_id] = user_id
        return previous if previous is not handle else None

    def lookup(self, user_id: str) -> Optional[Connection]:
        return self._by_user.get(user_id)

    def remove(self, handle: Connection) -> Optional[str]:
        """
        Drop the entry owned by ``handle``.

        A handle that was already replaced by a newer registration removes
        nothing. Returns the user id that was removed.
        """
        user_id = self._by_connection.pop(handle.connection_id, None)
        if user_id is None:
            return None
        if self._by_user.get(user_id) is handle:
            del self._by_user[user_id]
            logger.info(f"[PRESENCE] {user_id} went offline")
            return user_id
        return None

    def is_online(self, user_id: str) -> bool:
        return user_id in self._by_user

    def __len__(self) -> int:
        return len(self._by_user)
