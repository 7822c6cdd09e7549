"""Notification endpoints — the caller's feed, read state and preferences."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from tutor_hub.api.deps import get_current_user_id
from tutor_hub.api.models import NotificationListResponse, PreferencesUpdate
from tutor_hub.core.notifications import NotificationPreferences, NotificationService, get_notification_service

router = APIRouter()


def _get_own_notification(notification_id: str, user_id: str, service: NotificationService) -> dict[str, Any]:
    row = service.db.select_one("notifications", {"id": notification_id})
    if not row or row["user_id"] != user_id:
        raise HTTPException(status_code=404, detail=f"Notification '{notification_id}' not found")
    return row


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    unread_only: bool = False,
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationListResponse:
    notifications, total = service.get_notifications(user_id, limit=limit, offset=offset, unread_only=unread_only)
    return NotificationListResponse(
        notifications=notifications, total=total, unread_count=service.get_unread_count(user_id)
    )


@router.get("/unread-count")
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, int]:
    return {"unread_count": service.get_unread_count(user_id)}


@router.post("/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, bool]:
    return {"success": service.mark_all_as_read(user_id)}


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationPreferences:
    return service.get_preferences(user_id)


@router.put("/preferences", response_model=NotificationPreferences)
async def update_preferences(
    data: PreferencesUpdate,
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationPreferences:
    if not service.update_preferences(user_id, data.model_dump(exclude_none=True)):
        raise HTTPException(status_code=500, detail="Failed to update preferences")
    return service.get_preferences(user_id)


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, bool]:
    _get_own_notification(notification_id, user_id, service)
    return {"success": service.mark_as_read(notification_id)}


@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> None:
    _get_own_notification(notification_id, user_id, service)
    if not service.delete_notification(notification_id):
        raise HTTPException(status_code=500, detail="Failed to delete notification")
