"""Admin service — user management, platform statistics, teacher verification, settings.

Raises on remote errors; the admin API turns them into HTTP errors. The
notifications sent on suspension and verification decisions are best-effort.
"""

from __future__ import annotations

import time
from datetime import timedelta
from functools import lru_cache
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from tutor_hub.core.errors import NotFoundError, ValidationError
from tutor_hub.core.notifications import NotificationService, get_notification_service
from tutor_hub.db.client import SupabaseClient, get_supabase_client, ilike_any
from tutor_hub.utils.timefmt import (
    current_month,
    format_time_ago,
    month_window,
    now_iso,
    parse_ts,
    previous_month,
    utcnow,
)

logger = structlog.get_logger()

DEFAULT_SYSTEM_SETTINGS: dict[str, Any] = {
    "two_factor_auth": False,
    "auto_logout": False,
    "session_timeout": 30,
    "email_notifications": True,
    "sms_alerts": False,
    "push_notifications": True,
    "platform_fee": 5,
    "max_session_duration": 3,
    "maintenance_mode": False,
}

PROFILE_COLUMNS = "id, full_name, email, role, is_active, avatar_url, created_at, last_login_at, is_verified"


class AdminUser(BaseModel):
    id: str
    name: str
    email: str
    type: str
    status: Literal["active", "inactive", "suspended"]
    join_date: str | None = None
    last_activity: str = "Never"
    sessions_count: int = 0
    children: int = 0
    verified: bool = False
    avatar: str | None = None


class AdminStats(BaseModel):
    total_users: int = 0
    students: int = 0
    teachers: int = 0
    parents: int = 0
    suspended: int = 0
    monthly_revenue: float = 0
    platform_fee: float = 0
    pending_payouts: float = 0
    disputes: int = 0
    active_sessions: int = 0
    success_rate: float = 0
    pending_reviews: int = 0
    verified_teachers: int = 0


class TeacherVerification(BaseModel):
    id: str
    name: str
    email: str
    subject: str
    experience: str
    qualifications: list[str] = Field(default_factory=list)
    documents: int = 0
    application_date: str | None = None
    avatar: str | None = None
    verification_status: str = "pending"


class PaymentTransaction(BaseModel):
    id: str
    amount: float
    from_name: str
    to_name: str
    status: str
    date: str | None = None


class RecentActivity(BaseModel):
    type: str
    message: str
    time: str
    priority: Literal["low", "medium", "high"]


class SystemHealth(BaseModel):
    server_status: Literal["healthy", "degraded", "down"] = "healthy"
    database: Literal["normal", "slow", "down"] = "normal"
    api_response: Literal["fast", "normal", "slow", "down"] = "normal"
    payment_gateway: Literal["active", "degraded", "down"] = "active"
    server_status_message: str = "All systems operational"
    database_message: str = "Connected"
    api_response_message: str = "Normal"
    payment_gateway_message: str = "Operational"


def _date(value: str | None) -> str | None:
    return parse_ts(value).date().isoformat() if value else None


def _sum(rows: list[dict[str, Any]], column: str) -> float:
    return sum(float(r.get(column) or 0) for r in rows)


class AdminService:
    """Queries and actions behind the admin dashboard."""

    def __init__(self, db: SupabaseClient, notifications: NotificationService) -> None:
        self.db = db
        self.notifications = notifications

    # --- Users ---

    def get_users(
        self,
        search_term: str | None = None,
        user_type: str | None = None,
        status: str | None = None,
    ) -> list[AdminUser]:
        filters: dict[str, Any] = {}
        if user_type and user_type != "all":
            filters["role"] = user_type
        if status == "active":
            filters["is_active"] = True
        elif status in ("inactive", "suspended"):
            filters["is_active"] = False

        search = ilike_any(("full_name", "email"), search_term) if search_term else None
        profiles = self.db.select("profiles", filters=filters, columns=PROFILE_COLUMNS, or_=search)
        return [self._admin_user(p) for p in profiles]

    def get_user_details(self, user_id: str) -> AdminUser:
        profile = self.db.select_one("profiles", {"id": user_id}, columns=PROFILE_COLUMNS)
        if not profile:
            raise NotFoundError(f"User '{user_id}' not found")
        return self._admin_user(profile)

    def toggle_user_suspension(self, user_id: str, suspend: bool) -> bool:
        rows = self.db.update_where("profiles", {"is_active": not suspend}, filters={"id": user_id})
        if not rows:
            raise NotFoundError("User not found or update failed")
        logger.info("admin.user_suspension", user_id=user_id, suspended=suspend)

        if suspend:
            self.notifications.create_notification(
                user_id,
                "account_suspended",
                "Account Suspended",
                "Your account has been suspended. Please contact support for more information.",
                priority="high",
            )
        else:
            self.notifications.create_notification(
                user_id,
                "account_reactivated",
                "Account Reactivated",
                "Your account has been reactivated. You can now access the platform.",
                priority="high",
            )
        return True

    # --- Statistics ---

    def get_admin_stats(self) -> AdminStats:
        start, end = month_window(current_month())

        sessions = self.db.select("class_sessions", columns="status")
        completed = sum(1 for s in sessions if s.get("status") == "completed")
        earnings = self.db.select(
            "platform_earnings", columns="platform_commission_usd", gte={"created_at": start}, lt={"created_at": end}
        )
        payouts = self.db.select(
            "platform_earnings", filters={"withdrawal_request_id": None}, columns="teacher_earnings_usd"
        )

        return AdminStats(
            total_users=self.db.count("profiles", {"is_active": True}),
            students=self.db.count("profiles", {"role": "student", "is_active": True}),
            teachers=self.db.count("profiles", {"role": "teacher", "is_active": True}),
            parents=self.db.count("profiles", {"role": "parent", "is_active": True}),
            suspended=self.db.count("profiles", {"is_active": False}),
            monthly_revenue=self._revenue(current_month()),
            platform_fee=_sum(earnings, "platform_commission_usd"),
            pending_payouts=_sum(payouts, "teacher_earnings_usd"),
            disputes=self.db.count("withdrawal_requests", {"status": "disputed"}),
            active_sessions=self.db.count("class_sessions", {"status": "in_progress"}),
            success_rate=(completed / len(sessions) * 100) if sessions else 0,
            pending_reviews=self.db.count("teachers", {"verification_status": "pending"}),
            verified_teachers=self.db.count("teachers", {"verification_status": "verified"}),
        )

    def get_user_count_change(self) -> int:
        """Active sign-ups this month minus last month."""
        now = utcnow()

        def signups(month: str) -> int:
            start, end = month_window(month)
            return self.db.count("profiles", {"is_active": True}, gte={"created_at": start}, lt={"created_at": end})

        return signups(current_month(now)) - signups(previous_month(now))

    def get_revenue_growth(self) -> float:
        """Percentage change in completed earnings, this month against last."""
        now = utcnow()
        current = self._revenue(current_month(now))
        last = self._revenue(previous_month(now))
        if last == 0:
            return 100.0 if current > 0 else 0.0
        return (current - last) / last * 100

    def _revenue(self, month: str) -> float:
        start, end = month_window(month)
        rows = self.db.select(
            "token_transactions",
            filters={"type": "earn", "status": "completed"},
            columns="amount_usd",
            gte={"created_at": start},
            lt={"created_at": end},
        )
        return _sum(rows, "amount_usd")

    # --- Teacher verification ---

    def get_teacher_verifications(self) -> list[TeacherVerification]:
        teachers = self.db.select("teachers", filters={"verification_status": "pending"})
        ids = [t["id"] for t in teachers]
        profiles = {p["id"]: p for p in (self.db.select("profiles", in_={"id": ids}) if ids else [])}

        result = []
        for teacher in teachers:
            profile = profiles.get(teacher["id"]) or {}
            subjects = teacher.get("subjects") or []
            result.append(
                TeacherVerification(
                    id=teacher["id"],
                    name=profile.get("full_name") or "Unknown",
                    email=profile.get("email") or "",
                    subject=subjects[0] if subjects else "General",
                    experience=f"{teacher.get('experience_years') or 0}+ years",
                    qualifications=teacher.get("education") or [],
                    documents=len(teacher.get("verification_documents") or []),
                    application_date=_date(teacher.get("created_at")),
                    avatar=profile.get("avatar_url"),
                    verification_status=teacher.get("verification_status") or "pending",
                )
            )
        return result

    def get_teacher_documents(self, teacher_id: str) -> list[str]:
        teacher = self.db.select_one("teachers", {"id": teacher_id}, columns="id, verification_documents")
        if not teacher:
            raise NotFoundError(f"Teacher '{teacher_id}' not found")
        return teacher.get("verification_documents") or []

    def approve_teacher_verification(self, teacher_id: str, admin_id: str) -> bool:
        self._set_verification(teacher_id, "verified")
        try:
            self.db.update("profiles", teacher_id, {"is_verified": True})
        except Exception as e:
            logger.warning("admin.profile_verify_failed", teacher_id=teacher_id, error=str(e))

        self.notifications.create_notification(
            teacher_id,
            "teacher_verification_approved",
            "Verification Approved",
            "Congratulations! Your teacher verification has been approved. You can now start accepting students.",
            priority="high",
        )
        logger.info("admin.teacher_approved", teacher_id=teacher_id, admin_id=admin_id)
        return True

    def reject_teacher_verification(self, teacher_id: str, reason: str, admin_id: str) -> bool:
        if not reason.strip():
            raise ValidationError("A rejection reason is required")
        self._set_verification(teacher_id, "rejected")

        self.notifications.create_notification(
            teacher_id,
            "teacher_verification_rejected",
            "Verification Rejected",
            f"Your teacher verification has been rejected. Reason: {reason}. "
            "Please review your documents and reapply.",
            priority="high",
        )
        logger.info("admin.teacher_rejected", teacher_id=teacher_id, admin_id=admin_id, reason=reason)
        return True

    def _set_verification(self, teacher_id: str, status: str) -> None:
        rows = self.db.update_where("teachers", {"verification_status": status}, filters={"id": teacher_id})
        if not rows:
            raise NotFoundError("Teacher not found or update failed")

    # --- Payments and activity ---

    def get_payment_transactions(self, limit: int = 10) -> list[PaymentTransaction]:
        rows = self.db.select(
            "token_transactions", filters={"type": "earn"}, order_by="created_at", ascending=False, limit=limit
        )
        people = list({r[k] for r in rows for k in ("student_id", "teacher_id") if r.get(k)})
        names = {p["id"]: p.get("full_name") for p in (self.db.select("profiles", in_={"id": people}) if people else [])}

        return [
            PaymentTransaction(
                id=r["id"],
                amount=float(r.get("amount_usd") or 0),
                from_name=names.get(r.get("student_id")) or "Unknown",
                to_name=names.get(r.get("teacher_id")) or "Unknown",
                status=r.get("status") or "pending",
                date=_date(r.get("created_at")),
            )
            for r in rows
        ]

    def get_recent_activity(self, limit: int = 10) -> list[RecentActivity]:
        activities: list[RecentActivity] = []

        for user in self.db.select("profiles", order_by="created_at", ascending=False, limit=5):
            activities.append(
                RecentActivity(
                    type="user_registration",
                    message=f"New {user.get('role')} registered: {user.get('full_name') or 'Unknown'}",
                    time=format_time_ago(user["created_at"]) if user.get("created_at") else "Recently",
                    priority="low",
                )
            )

        pending = self.db.count("teachers", {"verification_status": "pending"})
        if pending:
            activities.append(
                RecentActivity(
                    type="teacher_application",
                    message=f"{pending} teacher verification{'s' if pending > 1 else ''} pending",
                    time="Recently",
                    priority="high",
                )
            )

        disputes = self.db.select(
            "withdrawal_requests", filters={"status": "disputed"}, order_by="created_at", ascending=False, limit=3
        )
        for dispute in disputes:
            activities.append(
                RecentActivity(
                    type="payment_issue",
                    message="Payment dispute reported",
                    time=format_time_ago(dispute["created_at"]) if dispute.get("created_at") else "Recently",
                    priority="high",
                )
            )
        return activities[:limit]

    # --- Health ---

    def get_system_health(self) -> SystemHealth:
        """Probe the store and grade each component. Never raises."""
        health = SystemHealth()

        db_ms = self._probe()
        if db_ms is None:
            health.database, health.database_message = "down", "Connection failed"
        elif db_ms > 1000:
            health.database = "slow"
            health.database_message = f"{'Slow' if db_ms > 2000 else 'Moderate'} ({round(db_ms)}ms)"
        else:
            health.database, health.database_message = "normal", f"Fast ({round(db_ms)}ms)"

        api_ms = self._probe()
        if api_ms is None:
            health.api_response, health.api_response_message = "down", "Unavailable"
        elif api_ms > 1000:
            health.api_response = "slow"
            health.api_response_message = f"{'Slow' if api_ms > 2000 else 'Moderate'} ({round(api_ms)}ms)"
        elif api_ms < 300:
            health.api_response, health.api_response_message = "fast", f"Fast ({round(api_ms)}ms)"
        else:
            health.api_response, health.api_response_message = "normal", f"Normal ({round(api_ms)}ms)"

        try:
            self.db.select(
                "token_transactions",
                filters={"status": "completed"},
                columns="id",
                gte={"created_at": (utcnow() - timedelta(hours=24)).isoformat()},
                limit=1,
            )
        except Exception as e:
            logger.warning("admin.payment_probe_failed", error=str(e))
            health.payment_gateway, health.payment_gateway_message = "degraded", "Limited access"

        if health.database == "down" or health.api_response == "down":
            health.server_status, health.server_status_message = "down", "System unavailable"
        elif "slow" in (health.database, health.api_response) or health.payment_gateway == "degraded":
            health.server_status, health.server_status_message = "degraded", "Performance issues detected"
        return health

    def _probe(self) -> float | None:
        started = time.perf_counter()
        try:
            self.db.select("profiles", columns="id", limit=1)
        except Exception as e:
            logger.warning("admin.health_probe_failed", error=str(e))
            return None
        return (time.perf_counter() - started) * 1000

    # --- System settings ---

    def get_system_settings(self) -> dict[str, Any]:
        """Stored private settings over the defaults."""
        try:
            rows = self.db.select("system_settings", filters={"is_public": False}, columns="key, value")
        except Exception as e:
            logger.error("admin.settings_fetch_failed", error=str(e))
            return dict(DEFAULT_SYSTEM_SETTINGS)
        stored = {r["key"]: r["value"] for r in rows if r.get("value") is not None}
        return {**DEFAULT_SYSTEM_SETTINGS, **stored}

    def update_system_setting(self, key: str, value: Any, admin_id: str) -> bool:
        return self.update_system_settings({key: value}, admin_id)

    def update_system_settings(self, settings: dict[str, Any], admin_id: str) -> bool:
        if not settings:
            return True
        stamp = now_iso()
        rows = [{"key": k, "value": v, "updated_by": admin_id, "updated_at": stamp} for k, v in settings.items()]
        self.db.upsert("system_settings", rows, on_conflict="key")
        logger.info("admin.settings_updated", keys=sorted(settings), admin_id=admin_id)
        return True

    # --- Helpers ---

    def _admin_user(self, profile: dict[str, Any]) -> AdminUser:
        role = profile.get("role") or "student"
        sessions = children = 0
        if role == "student":
            sessions = self.db.count("class_sessions", {"student_id": profile["id"]})
        elif role == "teacher":
            sessions = self.db.count("class_sessions", {"teacher_id": profile["id"]})
        elif role == "parent":
            children = self.db.count("students", {"parent_id": profile["id"]})

        last_login = profile.get("last_login_at")
        return AdminUser(
            id=profile["id"],
            name=profile.get("full_name") or "Unknown",
            email=profile.get("email") or "",
            type=role,
            status="active" if profile.get("is_active", True) else "inactive",
            join_date=_date(profile.get("created_at")),
            last_activity=format_time_ago(last_login) if last_login else "Never",
            sessions_count=sessions,
            children=children,
            verified=bool(profile.get("is_verified")),
            avatar=profile.get("avatar_url"),
        )


@lru_cache
def get_admin_service() -> AdminService:
    """Get cached admin service instance."""
    return AdminService(get_supabase_client(), get_notification_service())
