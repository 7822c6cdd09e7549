"""Session request workflow — token escrow between a student and a teacher.

Creating a request holds ``session_request_tokens`` from the student: the
request row, the token debit, the ``spend`` audit row and the teacher
notification run as one saga. Declining, cancelling or expiring a pending
request credits the tokens back with exactly one ``refund`` audit row.
Accepting keeps the tokens.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

import structlog

from tutor_hub.config import Settings, get_settings
from tutor_hub.core.errors import (
    ConcurrentUpdateError,
    DuplicateRequestError,
    InsufficientTokensError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tutor_hub.core.notifications import NotificationService, get_notification_service
from tutor_hub.core.saga import Saga
from tutor_hub.db.client import SupabaseClient, get_supabase_client
from tutor_hub.utils.timefmt import now_iso, parse_ts, utcnow

logger = structlog.get_logger()


class SessionRequestService:
    """Creates session requests and moves them through their lifecycle."""

    def __init__(
        self,
        db: SupabaseClient,
        notifications: NotificationService,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.notifications = notifications
        self.settings = settings or get_settings()

    # --- Queries ---

    def get_request(self, request_id: str) -> dict[str, Any]:
        request = self.db.select_one("session_requests", {"id": request_id})
        if not request:
            raise NotFoundError(f"Session request '{request_id}' not found")
        return request

    def get_teacher_requests(self, teacher_id: str, status: str | None = None) -> list[dict[str, Any]]:
        """Requests addressed to a teacher, newest first, with the student's profile."""
        filters: dict[str, Any] = {"teacher_id": teacher_id}
        if status:
            filters["status"] = status
        rows = self.db.select("session_requests", filters=filters, order_by="created_at", ascending=False)
        profiles = self._profiles([r["student_id"] for r in rows])
        return [{**r, "student": profiles.get(r["student_id"])} for r in rows]

    def get_student_requests(self, student_id: str, status: str | None = None) -> list[dict[str, Any]]:
        """Requests sent by a student, newest first, with the teacher's profile and rates."""
        filters: dict[str, Any] = {"student_id": student_id}
        if status:
            filters["status"] = status
        rows = self.db.select("session_requests", filters=filters, order_by="created_at", ascending=False)
        teacher_ids = [r["teacher_id"] for r in rows]
        profiles = self._profiles(teacher_ids)
        teachers = {t["id"]: t for t in self.db.select("teachers", in_={"id": teacher_ids})} if teacher_ids else {}

        result = []
        for r in rows:
            teacher = teachers.get(r["teacher_id"], {})
            profile = profiles.get(r["teacher_id"]) or {}
            result.append(
                {
                    **r,
                    "teacher": {
                        **profile,
                        "hourly_rate": teacher.get("hourly_rate") or 0,
                        "currency": teacher.get("currency") or "USD",
                        "subjects": teacher.get("subjects") or [],
                        "rating": teacher.get("rating") or 0,
                        "verification_status": teacher.get("verification_status") or "pending",
                    },
                }
            )
        return result

    # --- Create ---

    def create_session_request(
        self,
        student_id: str,
        teacher_id: str,
        requested_start: str | datetime,
        requested_end: str | datetime,
        duration_hours: float | None = None,
        message: str | None = None,
        requested_by: str | None = None,
    ) -> dict[str, Any]:
        """Validate, then escrow tokens and notify the teacher.

        Validation failures raise before any write. A failure in a later
        step compensates the earlier ones; a balance that changed underneath
        surfaces as ``ConcurrentUpdateError`` and anything unexpected as
        ``WorkflowError``.
        """
        start, end = parse_ts(requested_start), parse_ts(requested_end)
        if start <= utcnow():
            raise ValidationError("Requested start time must be in the future")
        if end <= start:
            raise ValidationError("Requested end time must be after the start time")
        if duration_hours is None:
            duration_hours = round((end - start).total_seconds() / 3600, 2)

        tokens_required = self.settings.session_request_tokens
        student = self.db.select_one("students", {"id": student_id})
        if not student:
            raise NotFoundError(f"Student '{student_id}' not found")
        balance = student.get("tokens") or 0
        if balance < tokens_required:
            raise InsufficientTokensError(tokens_required, balance)

        pending = self.db.select(
            "session_requests",
            filters={"student_id": student_id, "teacher_id": teacher_id, "status": "pending"},
            limit=1,
        )
        if pending:
            raise DuplicateRequestError("You already have a pending request for this teacher.")

        teacher_name = self._name(teacher_id, "the teacher")
        student_name = self._name(student_id, "a student")
        expires_at = (utcnow() + timedelta(days=self.settings.session_request_expiry_days)).isoformat()

        saga = Saga("create_session_request")
        request = saga.step(
            "insert_request",
            lambda: self.db.insert(
                "session_requests",
                {
                    "student_id": student_id,
                    "teacher_id": teacher_id,
                    "requested_start": start.isoformat(),
                    "requested_end": end.isoformat(),
                    "duration_hours": duration_hours,
                    "tokens_required": tokens_required,
                    "status": "pending",
                    "message": message,
                    "expires_at": expires_at,
                },
            ),
            lambda row: self.db.delete("session_requests", row["id"]),
        )
        saga.step(
            "debit_tokens",
            lambda: self._set_tokens(student_id, balance, balance - tokens_required),
            lambda _: self.adjust_tokens(student_id, tokens_required),
        )
        saga.step(
            "record_spend",
            lambda: self._record_transaction(
                student_id, "spend", -tokens_required, f"Session request to {teacher_name}", request["id"]
            ),
            lambda row: self.db.delete("token_transactions", row["id"]),
        )
        saga.step(
            "notify_teacher",
            lambda: self._require_notification(
                teacher_id,
                "session_request",
                "New Session Request",
                f"You have received a new session request from {student_name}",
                {
                    "request_id": request["id"],
                    "student_id": student_id,
                    "student_name": student_name,
                    "requested_start": request["requested_start"],
                    "requested_end": request["requested_end"],
                    "requested_by": requested_by or student_id,
                },
            ),
        )

        self.notifications.create_notification(
            student_id,
            "session_request_sent",
            "Session Request Sent",
            f"Your session request has been sent to {teacher_name}. "
            f"{tokens_required} tokens are held until they respond.",
            {"request_id": request["id"], "teacher_id": teacher_id, "tokens_required": tokens_required},
        )
        logger.info(
            "session_request.created",
            request_id=request["id"],
            student_id=student_id,
            teacher_id=teacher_id,
            tokens=tokens_required,
        )
        return request

    # --- Transitions ---

    def accept_request(
        self, request_id: str, teacher_response: str | None = None, teacher_id: str | None = None
    ) -> dict[str, Any]:
        request = self._pending_request(request_id, teacher_id=teacher_id)
        updated = self._transition(request, "accepted", {"teacher_response": teacher_response})

        teacher_name = self._name(request["teacher_id"], "the teacher")
        self.notifications.create_notification(
            request["student_id"],
            "session_request_accepted",
            "Session Request Accepted",
            f"Your session request has been accepted by {teacher_name}. The session is scheduled!",
            {
                "request_id": request_id,
                "teacher_id": request["teacher_id"],
                "teacher_name": teacher_name,
                "requested_start": request["requested_start"],
                "requested_end": request["requested_end"],
            },
            priority="high",
        )
        logger.info("session_request.accepted", request_id=request_id)
        return updated

    def decline_request(
        self,
        request_id: str,
        declined_reason: str | None = None,
        teacher_response: str | None = None,
        teacher_id: str | None = None,
    ) -> dict[str, Any]:
        request = self._pending_request(request_id, teacher_id=teacher_id)
        updated = self._close_with_refund(
            request,
            "declined",
            {"declined_reason": declined_reason, "teacher_response": teacher_response},
            description=f"Refund for declined session request - {request_id}",
        )
        self.notifications.create_notification(
            request["student_id"],
            "session_request_declined",
            "Session Request Declined",
            "Your session request has been declined by the teacher. "
            f"{request['tokens_required']} tokens were returned to your balance.",
            {
                "request_id": request_id,
                "teacher_id": request["teacher_id"],
                "declined_reason": declined_reason,
                "requested_start": request["requested_start"],
                "requested_end": request["requested_end"],
            },
        )
        logger.info("session_request.declined", request_id=request_id, reason=declined_reason)
        return updated

    def cancel_request(self, request_id: str, student_id: str) -> dict[str, Any]:
        request = self.get_request(request_id)
        if request["student_id"] != student_id:
            raise PermissionDeniedError("Only the requesting student can cancel this request")
        if request["status"] != "pending":
            raise InvalidStateError(f"Request is already {request['status']}")

        updated = self._close_with_refund(
            request, "cancelled", {}, description=f"Refund for cancelled session request - {request_id}"
        )
        self.notifications.create_notification(
            request["teacher_id"],
            "session_request_cancelled",
            "Session Request Cancelled",
            f"{self._name(student_id, 'A student')} cancelled their session request",
            {"request_id": request_id, "student_id": student_id},
        )
        logger.info("session_request.cancelled", request_id=request_id)
        return updated

    def expire_pending_requests(self, now: datetime | None = None) -> int:
        """Expire pending requests past ``expires_at`` and refund them. Returns how many."""
        cutoff = (now or utcnow()).isoformat()
        stale = self.db.select("session_requests", filters={"status": "pending"}, lt={"expires_at": cutoff})

        expired = 0
        for request in stale:
            try:
                self._close_with_refund(
                    request, "expired", {}, description=f"Refund for expired session request - {request['id']}"
                )
            except (InvalidStateError, ConcurrentUpdateError) as e:
                logger.info("session_request.expire_skipped", request_id=request["id"], reason=str(e))
                continue
            self.notifications.create_notification(
                request["student_id"],
                "session_request_expired",
                "Session Request Expired",
                "Your session request expired without a response. Your tokens were returned.",
                {"request_id": request["id"], "teacher_id": request["teacher_id"]},
            )
            expired += 1

        if expired:
            logger.info("session_request.expired", count=expired)
        return expired

    # --- Tokens ---

    def adjust_tokens(self, student_id: str, delta: int) -> int:
        """Add ``delta`` to a student's balance with a compare-and-set write."""
        student = self.db.select_one("students", {"id": student_id}, columns="id, tokens")
        if not student:
            raise NotFoundError(f"Student '{student_id}' not found")
        balance = student.get("tokens") or 0
        return self._set_tokens(student_id, balance, balance + delta)

    def _set_tokens(self, student_id: str, expected: int, new_balance: int) -> int:
        rows = self.db.update_where(
            "students", {"tokens": new_balance}, filters={"id": student_id, "tokens": expected}
        )
        if not rows:
            raise ConcurrentUpdateError(f"Token balance for '{student_id}' changed concurrently")
        return new_balance

    def _record_transaction(
        self, user_id: str, type: str, amount: int, description: str, request_id: str
    ) -> dict[str, Any]:
        return self.db.insert(
            "token_transactions",
            {
                "user_id": user_id,
                "type": type,
                "amount_tokens": amount,
                "amount_usd": 0,
                "description": description,
                "related_entity_type": "session_request",
                "related_entity_id": request_id,
                "status": "completed",
            },
        )

    # --- Helpers ---

    def _pending_request(self, request_id: str, teacher_id: str | None = None) -> dict[str, Any]:
        request = self.get_request(request_id)
        if teacher_id and request["teacher_id"] != teacher_id:
            raise PermissionDeniedError("This request is addressed to another teacher")
        if request["status"] != "pending":
            raise InvalidStateError(f"Request is already {request['status']}")
        return request

    def _transition(self, request: dict[str, Any], status: str, updates: dict[str, Any]) -> dict[str, Any]:
        """Move a pending request to ``status``; fails if it already left pending."""
        rows = self.db.update_where(
            "session_requests",
            {**updates, "status": status, "updated_at": now_iso()},
            filters={"id": request["id"], "status": "pending"},
        )
        if not rows:
            raise InvalidStateError(f"Request '{request['id']}' is no longer pending")
        return rows[0]

    def _close_with_refund(
        self, request: dict[str, Any], status: str, updates: dict[str, Any], description: str
    ) -> dict[str, Any]:
        tokens = request["tokens_required"]
        student_id = request["student_id"]

        saga = Saga(f"{status}_session_request")
        updated = saga.step(
            "transition",
            lambda: self._transition(request, status, updates),
            lambda _: self.db.update("session_requests", request["id"], self._reopen_fields(request, updates)),
        )
        already_refunded = self.db.select(
            "token_transactions",
            filters={"related_entity_id": request["id"], "type": "refund"},
            limit=1,
        )
        if already_refunded:
            logger.warning("session_request.refund_exists", request_id=request["id"])
            return updated

        saga.step(
            "credit_tokens",
            lambda: self.adjust_tokens(student_id, tokens),
            lambda _: self.adjust_tokens(student_id, -tokens),
        )
        saga.step(
            "record_refund",
            lambda: self._record_transaction(student_id, "refund", tokens, description, request["id"]),
        )
        return updated

    @staticmethod
    def _reopen_fields(request: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
        """Column values that put a closed request back exactly as it was read."""
        return {
            **{key: request.get(key) for key in updates},
            "status": "pending",
            "updated_at": request.get("updated_at"),
        }

    def _require_notification(self, user_id: str, type: str, title: str, message: str, data: dict[str, Any]) -> str:
        notification_id = self.notifications.create_notification(user_id, type, title, message, data)
        if notification_id is None:
            raise RuntimeError(f"Could not notify user '{user_id}'")
        return notification_id

    def _profiles(self, ids: list[str]) -> dict[str, dict[str, Any]]:
        if not ids:
            return {}
        rows = self.db.select("profiles", in_={"id": list(set(ids))})
        return {p["id"]: p for p in rows}

    def _name(self, user_id: str, default: str) -> str:
        profile = self.db.select_one("profiles", {"id": user_id}, columns="id, full_name")
        return (profile or {}).get("full_name") or default


@lru_cache
def get_session_request_service() -> SessionRequestService:
    """Get cached session request service instance."""
    return SessionRequestService(get_supabase_client(), get_notification_service())
