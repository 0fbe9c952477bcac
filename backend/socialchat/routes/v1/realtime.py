# backend/socialchat/routes/v1/realtime.py
"""
Real-time channel - API v1.

One WebSocket per client at /api/v1/ws. The credential (``?token=`` or an
``Authorization: Bearer`` header) is verified before the socket is accepted;
a rejected client gets close code 1008 with the authentication error as the
reason.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ...auth import extract_websocket_token
from ...core.exceptions import UnauthorizedException
from ...services.messaging.coordinator import MessagingCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime-v1"])


@router.websocket("/ws")
async def realtime_channel(websocket: WebSocket) -> None:
    coordinator: MessagingCoordinator = websocket.app.state.coordinator
    try:
        user_id = coordinator.authenticate(extract_websocket_token(websocket))
    except UnauthorizedException as e:
        logger.info(f"[REALTIME] Connection refused: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    handle = coordinator.connect(websocket, user_id)
    try:
        while True:
            text = await websocket.receive_text()
            await coordinator.handle_text(handle, text)
    except WebSocketDisconnect:
        pass
    finally:
        coordinator.disconnect(handle)
