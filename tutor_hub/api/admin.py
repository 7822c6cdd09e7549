"""Admin endpoints — users, statistics, teacher verification, payments, settings.

Every route requires an admin caller.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from tutor_hub.api.deps import http_error, require_admin
from tutor_hub.api.models import BulkNotificationRequest, RejectVerificationRequest, SettingsUpdate, SettingUpdate
from tutor_hub.core.admin import (
    AdminService,
    AdminUser,
    PaymentTransaction,
    RecentActivity,
    SystemHealth,
    TeacherVerification,
    get_admin_service,
)
from tutor_hub.core.errors import TutorHubError
from tutor_hub.core.notifications import NotificationService, get_notification_service
from tutor_hub.core.session_requests import SessionRequestService, get_session_request_service

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/stats")
async def stats(admin: AdminService = Depends(get_admin_service)) -> dict[str, Any]:
    return {
        **admin.get_admin_stats().model_dump(),
        "user_count_change": admin.get_user_count_change(),
        "revenue_growth": admin.get_revenue_growth(),
    }


@router.get("/users", response_model=list[AdminUser])
async def list_users(
    search: str | None = None,
    type: str | None = Query(None, pattern=r"^(all|student|teacher|parent|admin)$"),
    status: str | None = Query(None, pattern=r"^(all|active|inactive|suspended)$"),
    admin: AdminService = Depends(get_admin_service),
) -> list[AdminUser]:
    return admin.get_users(search_term=search, user_type=type, status=status)


@router.get("/users/{user_id}", response_model=AdminUser)
async def user_details(user_id: str, admin: AdminService = Depends(get_admin_service)) -> AdminUser:
    try:
        return admin.get_user_details(user_id)
    except TutorHubError as e:
        raise http_error(e)


@router.post("/users/{user_id}/suspend")
async def suspend_user(
    user_id: str,
    caller: dict[str, Any] = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
) -> dict[str, bool]:
    if user_id == caller["id"]:
        raise HTTPException(status_code=400, detail="Admins cannot suspend themselves")
    try:
        return {"success": admin.toggle_user_suspension(user_id, True)}
    except TutorHubError as e:
        raise http_error(e)


@router.post("/users/{user_id}/reactivate")
async def reactivate_user(user_id: str, admin: AdminService = Depends(get_admin_service)) -> dict[str, bool]:
    try:
        return {"success": admin.toggle_user_suspension(user_id, False)}
    except TutorHubError as e:
        raise http_error(e)


@router.get("/verifications", response_model=list[TeacherVerification])
async def verifications(admin: AdminService = Depends(get_admin_service)) -> list[TeacherVerification]:
    return admin.get_teacher_verifications()


@router.get("/verifications/{teacher_id}/documents")
async def teacher_documents(teacher_id: str, admin: AdminService = Depends(get_admin_service)) -> list[str]:
    try:
        return admin.get_teacher_documents(teacher_id)
    except TutorHubError as e:
        raise http_error(e)


@router.post("/verifications/{teacher_id}/approve")
async def approve_teacher(
    teacher_id: str,
    caller: dict[str, Any] = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
) -> dict[str, bool]:
    try:
        return {"success": admin.approve_teacher_verification(teacher_id, caller["id"])}
    except TutorHubError as e:
        raise http_error(e)


@router.post("/verifications/{teacher_id}/reject")
async def reject_teacher(
    teacher_id: str,
    data: RejectVerificationRequest,
    caller: dict[str, Any] = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
) -> dict[str, bool]:
    try:
        return {"success": admin.reject_teacher_verification(teacher_id, data.reason, caller["id"])}
    except TutorHubError as e:
        raise http_error(e)


@router.get("/payments", response_model=list[PaymentTransaction])
async def payments(
    limit: int = Query(10, ge=1, le=100), admin: AdminService = Depends(get_admin_service)
) -> list[PaymentTransaction]:
    return admin.get_payment_transactions(limit)


@router.get("/activity", response_model=list[RecentActivity])
async def activity(
    limit: int = Query(10, ge=1, le=100), admin: AdminService = Depends(get_admin_service)
) -> list[RecentActivity]:
    return admin.get_recent_activity(limit)


@router.get("/health", response_model=SystemHealth)
async def system_health(admin: AdminService = Depends(get_admin_service)) -> SystemHealth:
    return admin.get_system_health()


@router.get("/settings")
async def system_settings(admin: AdminService = Depends(get_admin_service)) -> dict[str, Any]:
    return admin.get_system_settings()


@router.put("/settings")
async def update_settings(
    data: SettingsUpdate,
    caller: dict[str, Any] = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
) -> dict[str, Any]:
    admin.update_system_settings(data.settings, caller["id"])
    return admin.get_system_settings()


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    data: SettingUpdate,
    caller: dict[str, Any] = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
) -> dict[str, Any]:
    admin.update_system_setting(key, data.value, caller["id"])
    return {"key": key, "value": data.value}


@router.post("/notifications/bulk")
async def bulk_notification(
    data: BulkNotificationRequest,
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, int]:
    sent = notifications.send_bulk_notification(
        data.user_ids, data.type, data.title, data.message, data.data, data.priority
    )
    return {"sent": sent}


@router.post("/session-requests/expire")
async def expire_requests(
    requests: SessionRequestService = Depends(get_session_request_service),
) -> dict[str, int]:
    return {"expired": requests.expire_pending_requests()}
