# backend/socialchat/routes/v1/follows.py
"""
Follow-event hook - API v1.

The follow subsystem reports each new follow here. The followee gets a
``follow`` notification; a mutual follow also opens the conversation between
the two users and announces it with ``chat_created``.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, status

from ...auth import get_current_user_id
from ...core.exceptions import DomainException
from ...schemas.conversation import FollowEventRequest, FollowEventResponse
from ...services.conversation_service import ConversationService
from ...services.dependencies import get_conversation_service, get_coordinator
from ...services.messaging.coordinator import MessagingCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["follows-v1"])


@router.post("", response_model=FollowEventResponse, status_code=status.HTTP_201_CREATED)
async def report_follow(
    request: FollowEventRequest,
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
    coordinator: MessagingCoordinator = Depends(get_coordinator),
) -> FollowEventResponse:
    """The caller just followed ``followeeId``; ``mutual`` when it is a follow-back."""
    try:
        outcome = await asyncio.to_thread(
            service.handle_follow_event, current_user_id, request.followee_id, request.mutual
        )
    except DomainException as e:
        raise e.to_http_exception()

    try:
        await coordinator.deliver_follow(outcome)
    except Exception as e:
        logger.error(
            "[REALTIME] follow fan-out failed",
            extra={"error": str(e), "followee_id": request.followee_id},
        )
    return FollowEventResponse(
        conversation_id=outcome.conversation_id,
        conversation_created=outcome.conversation_created,
    )
