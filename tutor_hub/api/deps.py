"""Shared API dependencies — caller identity, role checks, error mapping."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, Header, HTTPException

from tutor_hub.core.errors import (
    AuthError,
    ConcurrentUpdateError,
    DuplicateRequestError,
    InsufficientTokensError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    TutorHubError,
    ValidationError,
    WorkflowError,
)
from tutor_hub.core.notifications import NotificationService, get_notification_service
from tutor_hub.core.role_messaging import RoleMessaging, messaging_for_role
from tutor_hub.db.client import SupabaseClient, get_supabase_client
from tutor_hub.utils.logging import bind_user

# Most specific first: InsufficientTokensError is also a ValidationError.
ERROR_STATUS: list[tuple[type[TutorHubError], int]] = [
    (InsufficientTokensError, 402),
    (NotFoundError, 404),
    (ValidationError, 400),
    (DuplicateRequestError, 409),
    (InvalidStateError, 409),
    (ConcurrentUpdateError, 409),
    (PermissionDeniedError, 403),
    (AuthError, 401),
    (WorkflowError, 502),
]


def http_error(error: TutorHubError) -> HTTPException:
    """Translate a domain error into the matching HTTP error."""
    for cls, status in ERROR_STATUS:
        if isinstance(error, cls):
            return HTTPException(status_code=status, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-ID")) -> str:
    bind_user(x_user_id)
    return x_user_id


def get_current_profile(
    user_id: str = Depends(get_current_user_id),
    db: SupabaseClient = Depends(get_supabase_client),
) -> dict[str, Any]:
    profile = db.select_one("profiles", {"id": user_id})
    if not profile:
        raise HTTPException(status_code=401, detail="Unknown user")
    if not profile.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is suspended")
    return profile


def require_admin(profile: dict[str, Any] = Depends(get_current_profile)) -> dict[str, Any]:
    if profile.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return profile


def get_role_messaging(
    profile: dict[str, Any] = Depends(get_current_profile),
    db: SupabaseClient = Depends(get_supabase_client),
    notifications: NotificationService = Depends(get_notification_service),
) -> RoleMessaging:
    return messaging_for_role(profile.get("role") or "student", db, notifications)
