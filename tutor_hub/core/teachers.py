"""Teacher directory — browse available teachers and read public profiles."""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Any

import structlog

from tutor_hub.core.errors import NotFoundError
from tutor_hub.db.client import SupabaseClient, get_supabase_client

logger = structlog.get_logger()

RECENT_REVIEWS = 5


class TeacherDirectory:
    """Read-only queries over teachers, students and their profiles."""

    def __init__(self, db: SupabaseClient) -> None:
        self.db = db

    def get_available_teachers(
        self,
        subject: str | None = None,
        min_rating: float | None = None,
        max_hourly_rate: float | None = None,
        search: str | None = None,
        page: int = 1,
        per_page: int = 12,
    ) -> dict[str, Any]:
        """Available teachers with active profiles, best rated first, paginated."""
        teachers = self.db.select(
            "teachers",
            filters={"is_available": True},
            order_by="rating",
            ascending=False,
            contains={"subjects": [subject]} if subject else None,
            gte={"rating": min_rating} if min_rating else None,
        )
        ids = [t["id"] for t in teachers]
        profiles = {
            p["id"]: p
            for p in (self.db.select("profiles", filters={"is_active": True}, in_={"id": ids}) if ids else [])
        }

        merged = [self._merge(t, profiles[t["id"]]) for t in teachers if t["id"] in profiles]
        if max_hourly_rate is not None:
            merged = [t for t in merged if t["hourly_rate"] <= max_hourly_rate]
        if search:
            needle = search.lower()
            merged = [
                t
                for t in merged
                if needle in t["full_name"].lower()
                or needle in (t.get("bio") or "").lower()
                or any(needle in s.lower() for s in t["subjects"])
            ]

        total = len(merged)
        start = (page - 1) * per_page
        return {
            "teachers": merged[start : start + per_page],
            "total_count": total,
            "page": page,
            "per_page": per_page,
            "total_pages": math.ceil(total / per_page) if per_page else 0,
        }

    def get_teacher_profile(self, teacher_id: str) -> dict[str, Any]:
        teacher = self.db.select_one("teachers", {"id": teacher_id})
        profile = self.db.select_one("profiles", {"id": teacher_id})
        if not teacher or not profile:
            raise NotFoundError(f"Teacher '{teacher_id}' not found")

        reviews = self.db.select(
            "reviews",
            filters={"teacher_id": teacher_id, "is_public": True},
            order_by="created_at",
            ascending=False,
            limit=RECENT_REVIEWS,
        )
        return {**self._merge(teacher, profile), "recent_reviews": reviews}

    def get_student_profile(self, student_id: str) -> dict[str, Any]:
        student = self.db.select_one("students", {"id": student_id})
        profile = self.db.select_one("profiles", {"id": student_id})
        if not student or not profile:
            raise NotFoundError(f"Student '{student_id}' not found")
        return {
            **profile,
            "tokens": student.get("tokens") or 0,
            "parent_id": student.get("parent_id"),
            "grade_level": student.get("grade_level"),
            "school_name": student.get("school_name"),
            "interests": student.get("interests") or [],
        }

    @staticmethod
    def _merge(teacher: dict[str, Any], profile: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": teacher["id"],
            "full_name": profile.get("full_name") or "Unknown Teacher",
            "email": profile.get("email") or "",
            "avatar_url": profile.get("avatar_url"),
            "bio": profile.get("bio"),
            "location": profile.get("location"),
            "timezone": profile.get("timezone") or "UTC",
            "is_verified": bool(profile.get("is_verified")),
            "last_seen": profile.get("last_login_at"),
            "hourly_rate": teacher.get("hourly_rate") or 0,
            "currency": teacher.get("currency") or "USD",
            "subjects": teacher.get("subjects") or [],
            "specialties": teacher.get("specialties") or [],
            "education": teacher.get("education") or [],
            "experience_years": teacher.get("experience_years") or 0,
            "rating": teacher.get("rating") or 0,
            "total_reviews": teacher.get("total_reviews") or 0,
            "is_available": bool(teacher.get("is_available")),
            "verification_status": teacher.get("verification_status") or "pending",
        }


@lru_cache
def get_teacher_directory() -> TeacherDirectory:
    """Get cached teacher directory instance."""
    return TeacherDirectory(get_supabase_client())
