"""Account endpoints — sign up, sign in, sign out, own profile."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from tutor_hub.api.deps import get_current_profile, get_current_user_id, http_error
from tutor_hub.api.models import ProfileUpdate, SignInRequest
from tutor_hub.core.auth import (
    EMAIL_EXISTS,
    AuthService,
    SessionRegistry,
    SignUpData,
    get_auth_service,
    get_session_registry,
)
from tutor_hub.core.errors import AuthError, TutorHubError

router = APIRouter()


@router.post("/sign-up", status_code=201)
async def sign_up(data: SignUpData, auth: AuthService = Depends(get_auth_service)) -> dict[str, Any]:
    try:
        return auth.sign_up(data)
    except AuthError as e:
        status = 409 if str(e) == EMAIL_EXISTS else 400
        raise HTTPException(status_code=status, detail=str(e))


@router.post("/sign-in")
async def sign_in(data: SignInRequest, auth: AuthService = Depends(get_auth_service)) -> dict[str, Any]:
    try:
        return auth.sign_in(data.email, data.password)
    except TutorHubError as e:
        raise http_error(e)


@router.post("/sign-out", status_code=204)
async def sign_out(
    user_id: str = Depends(get_current_user_id),
    auth: AuthService = Depends(get_auth_service),
    registry: SessionRegistry = Depends(get_session_registry),
) -> None:
    await registry.close(user_id)
    auth.sign_out()


@router.get("/me")
async def get_me(profile: dict[str, Any] = Depends(get_current_profile)) -> dict[str, Any]:
    return profile


@router.patch("/me")
async def update_me(
    data: ProfileUpdate,
    profile: dict[str, Any] = Depends(get_current_profile),
    auth: AuthService = Depends(get_auth_service),
) -> dict[str, Any]:
    try:
        return auth.update_profile(profile["id"], data.model_dump(exclude_none=True))
    except TutorHubError as e:
        raise http_error(e)
