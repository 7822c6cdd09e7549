"""Message endpoints — edit, soft delete, read receipts."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from tutor_hub.api.deps import get_current_user_id, http_error
from tutor_hub.api.models import MarkReadRequest, MessageUpdate
from tutor_hub.core.errors import TutorHubError
from tutor_hub.core.messaging import MessagingService, get_messaging_service

router = APIRouter()


def _get_own_message(message_id: str, user_id: str, messaging: MessagingService) -> dict[str, Any]:
    message = messaging.get_message(message_id)
    if not message or message.get("is_deleted"):
        raise HTTPException(status_code=404, detail=f"Message '{message_id}' not found")
    if message["sender_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the sender can change this message")
    return message


@router.patch("/{message_id}")
async def edit_message(
    message_id: str,
    data: MessageUpdate,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> dict[str, Any]:
    _get_own_message(message_id, user_id, messaging)
    try:
        return messaging.edit_message(message_id, data.content)
    except TutorHubError as e:
        raise http_error(e)


@router.delete("/{message_id}", status_code=204)
async def delete_message(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> None:
    _get_own_message(message_id, user_id, messaging)
    try:
        messaging.delete_message(message_id)
    except TutorHubError as e:
        raise http_error(e)


@router.post("/read", status_code=204)
async def mark_read(
    data: MarkReadRequest,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> None:
    messaging.mark_messages_as_read(data.message_ids, user_id)
