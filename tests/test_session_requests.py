"""Tests for the session request workflow and its token escrow."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tests.conftest import future
from tutor_hub.core.errors import (
    DuplicateRequestError,
    InsufficientTokensError,
    ConcurrentUpdateError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkflowError,
)
from tutor_hub.core.notifications import NotificationService
from tutor_hub.core.session_requests import SessionRequestService


@pytest.fixture
def notifications(mock_db):
    return NotificationService(mock_db)


@pytest.fixture
def service(mock_db, notifications, settings):
    return SessionRequestService(mock_db, notifications, settings)


def _tokens(db, student_id):
    return db.select_one("students", {"id": student_id})["tokens"]


def _create(service, users, **kwargs):
    return service.create_session_request(
        kwargs.pop("student_id", users.student),
        kwargs.pop("teacher_id", users.teacher),
        future(24),
        future(25),
        **kwargs,
    )


class TestCreate:
    def test_escrows_tokens(self, service, mock_db, users):
        request = _create(service, users, message="Help with calculus")
        assert request["status"] == "pending"
        assert request["tokens_required"] == 10
        assert request["duration_hours"] == 1.0
        assert _tokens(mock_db, users.student) == 40

        spend = mock_db.select("token_transactions", {"related_entity_id": request["id"]})
        assert len(spend) == 1
        assert spend[0]["type"] == "spend"
        assert spend[0]["amount_tokens"] == -10

    def test_notifies_teacher_and_student(self, service, mock_db, users):
        request = _create(service, users)
        teacher_notes = mock_db.select("notifications", {"user_id": users.teacher})
        assert [n["type"] for n in teacher_notes] == ["session_request"]
        assert teacher_notes[0]["data"]["request_id"] == request["id"]
        assert teacher_notes[0]["data"]["student_name"] == "Sam Student"

        student_notes = mock_db.select("notifications", {"user_id": users.student})
        assert [n["type"] for n in student_notes] == ["session_request_sent"]

    def test_sets_expiry(self, service, users):
        request = _create(service, users)
        expires = datetime.fromisoformat(request["expires_at"])
        assert timedelta(days=6) < expires - datetime.now(timezone.utc) <= timedelta(days=7)

    def test_insufficient_tokens_writes_nothing(self, service, mock_db, users):
        with pytest.raises(InsufficientTokensError) as exc:
            _create(service, users, student_id=users.poor_student)
        assert exc.value.available == 5
        assert mock_db.rows("session_requests") == []
        assert mock_db.rows("token_transactions") == []
        assert mock_db.rows("notifications") == []
        assert _tokens(mock_db, users.poor_student) == 5

    def test_duplicate_pending_request(self, service, mock_db, users):
        _create(service, users)
        with pytest.raises(DuplicateRequestError):
            _create(service, users)
        assert len(mock_db.rows("session_requests")) == 1
        assert _tokens(mock_db, users.student) == 40

    def test_other_teacher_is_not_a_duplicate(self, service, users):
        _create(service, users)
        second = _create(service, users, teacher_id=users.other_teacher)
        assert second["teacher_id"] == users.other_teacher

    def test_start_in_past_rejected(self, service, users):
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        with pytest.raises(ValidationError):
            service.create_session_request(users.student, users.teacher, past, future(1))

    def test_end_before_start_rejected(self, service, users):
        with pytest.raises(ValidationError):
            service.create_session_request(users.student, users.teacher, future(5), future(4))

    def test_unknown_student(self, service, users):
        with pytest.raises(NotFoundError):
            _create(service, users, student_id="nobody")

    def test_notification_failure_compensates(self, service, mock_db, users, notifications, monkeypatch):
        monkeypatch.setattr(notifications, "create_notification", lambda *a, **kw: None)
        with pytest.raises(WorkflowError) as exc:
            _create(service, users)
        assert exc.value.step == "notify_teacher"
        assert _tokens(mock_db, users.student) == 50
        assert mock_db.rows("session_requests") == []
        assert mock_db.rows("token_transactions") == []

    def test_ledger_failure_compensates(self, service, mock_db, users):
        mock_db.fail("insert", "token_transactions")
        with pytest.raises(WorkflowError) as exc:
            _create(service, users)
        assert exc.value.step == "record_spend"
        assert _tokens(mock_db, users.student) == 50
        assert mock_db.rows("session_requests") == []

    def test_balance_changed_during_create(self, service, mock_db, users, monkeypatch):
        read_student = mock_db.select_one

        def select_one(table, filters, columns="*"):
            row = read_student(table, filters, columns)
            if table == "students":
                # Another spend lands between the balance read and the debit
                mock_db.update("students", users.student, {"tokens": 45})
            return row

        monkeypatch.setattr(mock_db, "select_one", select_one)
        with pytest.raises(ConcurrentUpdateError):
            _create(service, users)
        assert _tokens(mock_db, users.student) == 45
        assert mock_db.rows("session_requests") == []
        assert mock_db.rows("token_transactions") == []


class TestRespond:
    def test_accept_keeps_tokens(self, service, mock_db, users):
        request = _create(service, users)
        updated = service.accept_request(request["id"], "See you then", teacher_id=users.teacher)
        assert updated["status"] == "accepted"
        assert updated["teacher_response"] == "See you then"
        assert _tokens(mock_db, users.student) == 40
        assert mock_db.select("token_transactions", {"type": "refund"}) == []

        accepted = mock_db.select("notifications", {"type": "session_request_accepted"})
        assert accepted[0]["user_id"] == users.student
        assert accepted[0]["priority"] == "high"

    def test_decline_refunds_once(self, service, mock_db, users):
        request = _create(service, users)
        updated = service.decline_request(request["id"], "Fully booked", teacher_id=users.teacher)
        assert updated["status"] == "declined"
        assert updated["declined_reason"] == "Fully booked"
        assert _tokens(mock_db, users.student) == 50

        refunds = mock_db.select("token_transactions", {"related_entity_id": request["id"], "type": "refund"})
        assert len(refunds) == 1
        assert refunds[0]["amount_tokens"] == 10
        assert mock_db.select("notifications", {"type": "session_request_declined"})

    def test_decline_twice_is_invalid(self, service, mock_db, users):
        request = _create(service, users)
        service.decline_request(request["id"], teacher_id=users.teacher)
        with pytest.raises(InvalidStateError):
            service.decline_request(request["id"], teacher_id=users.teacher)
        assert _tokens(mock_db, users.student) == 50
        assert len(mock_db.select("token_transactions", {"type": "refund"})) == 1

    def test_accept_after_decline_is_invalid(self, service, users):
        request = _create(service, users)
        service.decline_request(request["id"])
        with pytest.raises(InvalidStateError):
            service.accept_request(request["id"])

    def test_wrong_teacher(self, service, users):
        request = _create(service, users)
        with pytest.raises(PermissionDeniedError):
            service.accept_request(request["id"], teacher_id=users.other_teacher)

    def test_unknown_request(self, service):
        with pytest.raises(NotFoundError):
            service.accept_request("missing")

    def test_decline_after_concurrent_accept(self, service, mock_db, users, monkeypatch):
        request = _create(service, users)
        stale = service.get_request(request["id"])
        service.accept_request(request["id"], "See you then")

        monkeypatch.setattr(service, "get_request", lambda request_id: dict(stale))
        with pytest.raises(InvalidStateError, match="no longer pending"):
            service.decline_request(request["id"], "Fully booked")

        row = mock_db.select_one("session_requests", {"id": request["id"]})
        assert row["status"] == "accepted"
        assert row["teacher_response"] == "See you then"
        assert _tokens(mock_db, users.student) == 40
        assert mock_db.select("token_transactions", {"type": "refund"}) == []

    def test_refund_failure_restores_pending(self, service, mock_db, users):
        request = _create(service, users)
        before = service.get_request(request["id"])
        mock_db.fail("insert", "token_transactions")
        with pytest.raises(WorkflowError) as exc:
            service.decline_request(request["id"], "Fully booked", "Sorry")
        assert exc.value.step == "record_refund"

        restored = service.get_request(request["id"])
        assert restored["status"] == "pending"
        assert restored.get("declined_reason") is None
        assert restored.get("teacher_response") is None
        assert restored.get("updated_at") == before.get("updated_at")
        assert _tokens(mock_db, users.student) == 40


class TestCancel:
    def test_cancel_refunds_and_notifies_teacher(self, service, mock_db, users):
        request = _create(service, users)
        updated = service.cancel_request(request["id"], users.student)
        assert updated["status"] == "cancelled"
        assert _tokens(mock_db, users.student) == 50
        cancelled = mock_db.select("notifications", {"type": "session_request_cancelled"})
        assert cancelled[0]["user_id"] == users.teacher

    def test_only_requesting_student(self, service, users):
        request = _create(service, users)
        with pytest.raises(PermissionDeniedError):
            service.cancel_request(request["id"], users.poor_student)

    def test_cancel_accepted_is_invalid(self, service, users):
        request = _create(service, users)
        service.accept_request(request["id"])
        with pytest.raises(InvalidStateError):
            service.cancel_request(request["id"], users.student)


class TestExpire:
    def test_expires_overdue_requests(self, service, mock_db, users):
        stale = _create(service, users)
        fresh = _create(service, users, teacher_id=users.other_teacher)
        mock_db.update(
            "session_requests",
            stale["id"],
            {"expires_at": (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()},
        )

        assert service.expire_pending_requests() == 1
        assert service.get_request(stale["id"])["status"] == "expired"
        assert service.get_request(fresh["id"])["status"] == "pending"
        assert _tokens(mock_db, users.student) == 40
        assert mock_db.select("notifications", {"type": "session_request_expired"})

    def test_expire_is_idempotent(self, service, mock_db, users):
        _create(service, users)
        later = datetime.now(timezone.utc) + timedelta(days=8)
        assert service.expire_pending_requests(now=later) == 1
        assert service.expire_pending_requests(now=later) == 0
        assert len(mock_db.select("token_transactions", {"type": "refund"})) == 1

    def test_request_accepted_during_sweep_is_skipped(self, service, mock_db, users, monkeypatch):
        accepted = _create(service, users)
        overdue = _create(service, users, teacher_id=users.other_teacher)
        read = mock_db.select

        def select(table, *args, **kwargs):
            rows = read(table, *args, **kwargs)
            if table == "session_requests" and kwargs.get("lt"):
                # The teacher accepts right after the sweep read its batch
                mock_db.update("session_requests", accepted["id"], {"status": "accepted"})
            return rows

        monkeypatch.setattr(mock_db, "select", select)
        later = datetime.now(timezone.utc) + timedelta(days=8)
        assert service.expire_pending_requests(now=later) == 1

        assert service.get_request(accepted["id"])["status"] == "accepted"
        assert service.get_request(overdue["id"])["status"] == "expired"
        refunds = mock_db.select("token_transactions", {"type": "refund"})
        assert [r["related_entity_id"] for r in refunds] == [overdue["id"]]
        assert _tokens(mock_db, users.student) == 40


class TestQueries:
    def test_teacher_requests_include_student(self, service, users):
        _create(service, users)
        rows = service.get_teacher_requests(users.teacher)
        assert len(rows) == 1
        assert rows[0]["student"]["full_name"] == "Sam Student"

    def test_student_requests_include_teacher_rates(self, service, users):
        _create(service, users)
        rows = service.get_student_requests(users.student)
        assert rows[0]["teacher"]["full_name"] == "Grace Numbers"
        assert rows[0]["teacher"]["hourly_rate"] == 40

    def test_status_filter(self, service, users):
        request = _create(service, users)
        service.accept_request(request["id"])
        assert service.get_teacher_requests(users.teacher, status="pending") == []
        assert len(service.get_teacher_requests(users.teacher, status="accepted")) == 1

    def test_adjust_tokens(self, service, mock_db, users):
        assert service.adjust_tokens(users.student, 15) == 65
        assert _tokens(mock_db, users.student) == 65
