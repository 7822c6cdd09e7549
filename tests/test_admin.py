"""Tests for the admin service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tutor_hub.core.admin import DEFAULT_SYSTEM_SETTINGS, AdminService
from tutor_hub.core.errors import NotFoundError, ValidationError
from tutor_hub.core.notifications import NotificationService
from tutor_hub.utils.timefmt import current_month, previous_month


@pytest.fixture
def admin(mock_db):
    return AdminService(mock_db, NotificationService(mock_db))


def _earning(db, amount, month, **extra):
    db.insert(
        "token_transactions",
        {"type": "earn", "status": "completed", "amount_usd": amount, "created_at": f"{month}-15T12:00:00+00:00", **extra},
    )


class TestUsers:
    def test_list_all(self, admin, users):
        result = admin.get_users()
        assert len(result) == 6
        by_id = {u.id: u for u in result}
        assert by_id[users.parent].children == 1
        assert by_id[users.student].status == "active"
        assert by_id[users.student].last_activity == "Never"

    def test_filters(self, admin, mock_db, users):
        mock_db.update("profiles", users.poor_student, {"is_active": False})
        assert {u.id for u in admin.get_users(user_type="student")} == {users.student, users.poor_student}
        assert [u.id for u in admin.get_users(user_type="student", status="active")] == [users.student]
        assert [u.id for u in admin.get_users(status="suspended")] == [users.poor_student]
        assert [u.name for u in admin.get_users(search_term="grace")] == ["Grace Numbers"]
        assert len(admin.get_users(user_type="all")) == 6

    def test_details(self, admin, users):
        assert admin.get_user_details(users.teacher).type == "teacher"
        with pytest.raises(NotFoundError):
            admin.get_user_details("missing")

    def test_suspend_and_reactivate_notify(self, admin, mock_db, users):
        assert admin.toggle_user_suspension(users.student, True)
        assert mock_db.select_one("profiles", {"id": users.student})["is_active"] is False
        assert admin.toggle_user_suspension(users.student, False)
        assert mock_db.select_one("profiles", {"id": users.student})["is_active"] is True

        types = [n["type"] for n in mock_db.select("notifications", {"user_id": users.student}, order_by="created_at")]
        assert types == ["account_suspended", "account_reactivated"]

    def test_suspend_unknown_user(self, admin, mock_db):
        with pytest.raises(NotFoundError):
            admin.toggle_user_suspension("missing", True)
        assert mock_db.rows("notifications") == []


class TestStats:
    def test_counts(self, admin, mock_db, users):
        mock_db.update("profiles", users.poor_student, {"is_active": False})
        mock_db.update("teachers", users.other_teacher, {"verification_status": "pending"})
        mock_db.insert("class_sessions", {"status": "completed"})
        mock_db.insert("class_sessions", {"status": "in_progress"})
        _earning(mock_db, 120.5, current_month())

        stats = admin.get_admin_stats()
        assert stats.total_users == 5
        assert stats.students == 1
        assert stats.teachers == 2
        assert stats.suspended == 1
        assert stats.active_sessions == 1
        assert stats.success_rate == 50
        assert stats.pending_reviews == 1
        assert stats.verified_teachers == 1
        assert stats.monthly_revenue == 120.5

    def test_empty_store(self, mock_db):
        stats = AdminService(mock_db, NotificationService(mock_db)).get_admin_stats()
        assert stats.total_users == 0
        assert stats.success_rate == 0

    def test_revenue_growth(self, admin, mock_db):
        _earning(mock_db, 100, previous_month())
        _earning(mock_db, 150, current_month())
        assert admin.get_revenue_growth() == pytest.approx(50.0)

    def test_revenue_growth_from_zero(self, admin, mock_db):
        assert admin.get_revenue_growth() == 0.0
        _earning(mock_db, 10, current_month())
        assert admin.get_revenue_growth() == 100.0

    def test_user_count_change(self, admin, mock_db, users):
        last_month = f"{previous_month()}-10T00:00:00+00:00"
        mock_db.update("profiles", users.admin, {"created_at": last_month})
        # Five profiles created now, one last month.
        assert admin.get_user_count_change() == 4


class TestVerification:
    def test_pending_list(self, admin, mock_db, users):
        mock_db.update(
            "teachers",
            users.other_teacher,
            {"verification_status": "pending", "verification_documents": ["a.pdf", "b.pdf"], "experience_years": 6},
        )
        [entry] = admin.get_teacher_verifications()
        assert entry.name == "Niels Quantum"
        assert entry.subject == "Physics"
        assert entry.experience == "6+ years"
        assert entry.documents == 2
        assert admin.get_teacher_documents(users.other_teacher) == ["a.pdf", "b.pdf"]

    def test_approve(self, admin, mock_db, users):
        mock_db.update("teachers", users.other_teacher, {"verification_status": "pending"})
        assert admin.approve_teacher_verification(users.other_teacher, users.admin)
        assert mock_db.select_one("teachers", {"id": users.other_teacher})["verification_status"] == "verified"
        assert mock_db.select_one("profiles", {"id": users.other_teacher})["is_verified"] is True
        assert mock_db.select("notifications", {"type": "teacher_verification_approved"})

    def test_reject_requires_reason(self, admin, mock_db, users):
        with pytest.raises(ValidationError):
            admin.reject_teacher_verification(users.other_teacher, "  ", users.admin)
        assert admin.reject_teacher_verification(users.other_teacher, "Blurry ID", users.admin)
        note = mock_db.select("notifications", {"type": "teacher_verification_rejected"})[0]
        assert "Blurry ID" in note["message"]

    def test_unknown_teacher(self, admin):
        with pytest.raises(NotFoundError):
            admin.approve_teacher_verification("missing", "admin")
        with pytest.raises(NotFoundError):
            admin.get_teacher_documents("missing")


class TestActivityAndPayments:
    def test_payments_have_names(self, admin, mock_db, users):
        _earning(mock_db, 40, current_month(), student_id=users.student, teacher_id=users.teacher)
        [payment] = admin.get_payment_transactions()
        assert payment.amount == 40
        assert payment.from_name == "Sam Student"
        assert payment.to_name == "Grace Numbers"

    def test_recent_activity(self, admin, mock_db, users):
        mock_db.update("teachers", users.teacher, {"verification_status": "pending"})
        mock_db.insert("withdrawal_requests", {"status": "disputed"})
        activity = admin.get_recent_activity()
        types = [a.type for a in activity]
        assert types.count("user_registration") == 5
        assert "teacher_application" in types
        assert "payment_issue" in types
        assert [a.message for a in admin.get_recent_activity(limit=2)] == [a.message for a in activity[:2]]


class TestHealth:
    def test_healthy(self, admin):
        health = admin.get_system_health()
        assert health.server_status == "healthy"
        assert health.database == "normal"
        assert health.api_response == "fast"

    def test_database_down(self, admin, mock_db):
        mock_db.fail("select", "profiles")
        health = admin.get_system_health()
        assert health.database == "down"
        assert health.server_status == "down"

    def test_payments_degraded(self, admin, mock_db):
        mock_db.fail("select", "token_transactions")
        health = admin.get_system_health()
        assert health.payment_gateway == "degraded"
        assert health.server_status == "degraded"


class TestSettings:
    def test_defaults(self, admin):
        assert admin.get_system_settings() == DEFAULT_SYSTEM_SETTINGS

    def test_update_overrides_defaults(self, admin, mock_db, users):
        assert admin.update_system_settings({"platform_fee": 7, "maintenance_mode": True}, users.admin)
        settings = admin.get_system_settings()
        assert settings["platform_fee"] == 7
        assert settings["maintenance_mode"] is True
        assert settings["session_timeout"] == 30

    def test_stored_false_is_honored(self, admin, mock_db, users):
        admin.update_system_setting("push_notifications", False, users.admin)
        assert admin.get_system_settings()["push_notifications"] is False

    def test_upsert_replaces(self, admin, mock_db, users):
        admin.update_system_setting("platform_fee", 6, users.admin)
        admin.update_system_setting("platform_fee", 8, users.admin)
        rows = mock_db.select("system_settings", {"key": "platform_fee"})
        assert len(rows) == 1
        assert rows[0]["value"] == 8
        assert rows[0]["updated_by"] == users.admin

    def test_fetch_failure_falls_back(self, admin, mock_db):
        mock_db.fail("select", "system_settings")
        assert admin.get_system_settings() == DEFAULT_SYSTEM_SETTINGS


def test_time_ago_on_last_login(admin, mock_db, users):
    two_hours = (datetime.now(timezone.utc) - timedelta(hours=2, minutes=1)).isoformat()
    mock_db.update("profiles", users.student, {"last_login_at": two_hours})
    assert admin.get_user_details(users.student).last_activity == "2 hours ago"
