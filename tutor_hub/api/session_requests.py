"""Session request endpoints — create, list and respond to tutoring requests."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from tutor_hub.api.deps import get_current_profile, get_role_messaging, http_error
from tutor_hub.api.models import AcceptRequest, DeclineRequest, SessionRequestCreate
from tutor_hub.core.errors import TutorHubError
from tutor_hub.core.role_messaging import ParentMessaging, RoleMessaging
from tutor_hub.core.session_requests import SessionRequestService, get_session_request_service

router = APIRouter()


def _can_view(request: dict[str, Any], profile: dict[str, Any], service: SessionRequestService) -> bool:
    if profile["role"] == "admin" or profile["id"] in (request["student_id"], request["teacher_id"]):
        return True
    if profile["role"] == "parent":
        child = service.db.select_one("students", {"id": request["student_id"]}, columns="id, parent_id")
        return bool(child) and child.get("parent_id") == profile["id"]
    return False


def _acting_teacher(profile: dict[str, Any]) -> str | None:
    """Admins may respond on any teacher's behalf."""
    return None if profile["role"] == "admin" else profile["id"]


@router.post("", status_code=201)
async def create_request(
    data: SessionRequestCreate,
    profile: dict[str, Any] = Depends(get_current_profile),
    role_messaging: RoleMessaging = Depends(get_role_messaging),
    service: SessionRequestService = Depends(get_session_request_service),
) -> dict[str, Any]:
    if isinstance(role_messaging, ParentMessaging):
        if not data.student_id:
            raise HTTPException(status_code=400, detail="student_id is required for parent requests")
        result = role_messaging.send_session_request(
            profile["id"],
            data.student_id,
            data.teacher_id,
            data.requested_start.isoformat(),
            data.requested_end.isoformat(),
            duration_hours=data.duration_hours,
            message=data.message,
        )
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        return service.get_request(result.request_id)

    if profile["role"] != "student":
        raise HTTPException(status_code=403, detail="Only students and parents can request sessions")
    try:
        return service.create_session_request(
            profile["id"],
            data.teacher_id,
            data.requested_start,
            data.requested_end,
            duration_hours=data.duration_hours,
            message=data.message,
        )
    except TutorHubError as e:
        raise http_error(e)


@router.get("")
async def list_requests(
    status: str | None = None,
    profile: dict[str, Any] = Depends(get_current_profile),
    role_messaging: RoleMessaging = Depends(get_role_messaging),
    service: SessionRequestService = Depends(get_session_request_service),
) -> list[dict[str, Any]]:
    role = profile["role"]
    if role == "teacher":
        return service.get_teacher_requests(profile["id"], status=status)
    if role == "student":
        return service.get_student_requests(profile["id"], status=status)
    if isinstance(role_messaging, ParentMessaging):
        requests = role_messaging.get_session_requests(profile["id"])
        return [r for r in requests if not status or r["status"] == status]
    raise HTTPException(status_code=403, detail="Use the admin endpoints to inspect all requests")


@router.get("/{request_id}")
async def get_request(
    request_id: str,
    profile: dict[str, Any] = Depends(get_current_profile),
    service: SessionRequestService = Depends(get_session_request_service),
) -> dict[str, Any]:
    try:
        request = service.get_request(request_id)
    except TutorHubError as e:
        raise http_error(e)
    if not _can_view(request, profile, service):
        raise HTTPException(status_code=404, detail=f"Session request '{request_id}' not found")
    return request


@router.post("/{request_id}/accept")
async def accept_request(
    request_id: str,
    data: AcceptRequest,
    profile: dict[str, Any] = Depends(get_current_profile),
    service: SessionRequestService = Depends(get_session_request_service),
) -> dict[str, Any]:
    try:
        return service.accept_request(request_id, data.teacher_response, teacher_id=_acting_teacher(profile))
    except TutorHubError as e:
        raise http_error(e)


@router.post("/{request_id}/decline")
async def decline_request(
    request_id: str,
    data: DeclineRequest,
    profile: dict[str, Any] = Depends(get_current_profile),
    service: SessionRequestService = Depends(get_session_request_service),
) -> dict[str, Any]:
    try:
        return service.decline_request(
            request_id, data.declined_reason, data.teacher_response, teacher_id=_acting_teacher(profile)
        )
    except TutorHubError as e:
        raise http_error(e)


@router.post("/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    profile: dict[str, Any] = Depends(get_current_profile),
    service: SessionRequestService = Depends(get_session_request_service),
) -> dict[str, Any]:
    try:
        return service.cancel_request(request_id, profile["id"])
    except TutorHubError as e:
        raise http_error(e)
