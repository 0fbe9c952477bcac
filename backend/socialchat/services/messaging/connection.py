# backend/socialchat/services/messaging/connection.py
"""Connection handle for one admitted real-time client."""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import ulid

logger = logging.getLogger(__name__)


class FrameSender(Protocol):
    async def send_json(self, data: Any, mode: str = "text") -> None: ...


class Connection:
    """
    A verified real-time connection.

    ``user_id`` is the identity proven at admission and is the ground truth
    for every operation on this connection. Outbound frames are serialized
    with a lock so concurrent fan-outs never interleave on the socket.
    """

    def __init__(self, socket: FrameSender, user_id: str, connection_id: Optional[str] = None):
        self.socket = socket
        self.user_id = user_id
        self.connection_id = connection_id or str(ulid.ULID())
        self.closed = False
        self._send_lock = asyncio.Lock()

    async def send(self, frame: Dict[str, Any]) -> bool:
        """
        Send one frame. A failed send marks the connection dead and is
        logged; it is never raised into the caller's fan-out loop.
        """
        if self.closed:
            return False
        async with self._send_lock:
            try:
                await self.socket.send_json(frame)
                return True
            except Exception as e:
                self.closed = True
                logger.warning(
                    f"[REALTIME] Dropping frame {frame.get('event')} for {self.user_id}: {e}",
                    extra={"connection_id": self.connection_id, "user_id": self.user_id},
                )
                return False

    def __repr__(self) -> str:
        return f"<Connection(id={self.connection_id}, user={self.user_id})>"
