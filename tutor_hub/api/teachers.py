"""Directory endpoints — browse teachers, view teacher and student profiles."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from tutor_hub.api.deps import get_current_user_id, http_error
from tutor_hub.core.errors import TutorHubError
from tutor_hub.core.teachers import TeacherDirectory, get_teacher_directory

router = APIRouter()


@router.get("/teachers")
async def browse_teachers(
    subject: str | None = None,
    min_rating: float | None = Query(None, ge=0, le=5),
    max_hourly_rate: float | None = Query(None, ge=0),
    search: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(12, ge=1, le=100),
    _user_id: str = Depends(get_current_user_id),
    directory: TeacherDirectory = Depends(get_teacher_directory),
) -> dict[str, Any]:
    return directory.get_available_teachers(
        subject=subject,
        min_rating=min_rating,
        max_hourly_rate=max_hourly_rate,
        search=search,
        page=page,
        per_page=per_page,
    )


@router.get("/teachers/{teacher_id}")
async def teacher_profile(
    teacher_id: str,
    _user_id: str = Depends(get_current_user_id),
    directory: TeacherDirectory = Depends(get_teacher_directory),
) -> dict[str, Any]:
    try:
        return directory.get_teacher_profile(teacher_id)
    except TutorHubError as e:
        raise http_error(e)


@router.get("/students/{student_id}")
async def student_profile(
    student_id: str,
    _user_id: str = Depends(get_current_user_id),
    directory: TeacherDirectory = Depends(get_teacher_directory),
) -> dict[str, Any]:
    try:
        return directory.get_student_profile(student_id)
    except TutorHubError as e:
        raise http_error(e)
