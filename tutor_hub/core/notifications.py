"""Notification store operations — list, read state, preferences, bulk sends.

Every method logs remote failures and returns a default (empty list, 0,
False or None) instead of raising, so a broken notification path never takes
down the workflow that triggered it.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import structlog
from pydantic import BaseModel

from tutor_hub.db.client import SupabaseClient, get_supabase_client, quote
from tutor_hub.utils.timefmt import now_iso

logger = structlog.get_logger()


class NotificationPreferences(BaseModel):
    email_notifications: bool = True
    sms_notifications: bool = False
    push_notifications: bool = True
    marketing_emails: bool = False
    session_requests: bool = True
    session_reminders: bool = True
    payment_updates: bool = True
    system_updates: bool = True


# Notification type -> preference flag that gates push delivery.
TYPE_PREFERENCE = {
    "session_request": "session_requests",
    "session_reminder": "session_reminders",
    "payment_update": "payment_updates",
    "system_update": "system_updates",
    "marketing": "marketing_emails",
}

STORED_PREFERENCES = ("email_notifications", "sms_notifications", "push_notifications", "marketing_emails")


class NotificationService:
    """Reads and writes rows in the notifications table."""

    def __init__(self, db: SupabaseClient) -> None:
        self.db = db

    def get_notifications(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
    ) -> tuple[list[dict[str, Any]], int]:
        """One newest-first page of a user's unexpired notifications, plus the total."""
        filters: dict[str, Any] = {"user_id": user_id}
        if unread_only:
            filters["is_read"] = False
        live = f"expires_at.is.null,expires_at.gt.{quote(now_iso())}"
        try:
            rows = self.db.select(
                "notifications",
                filters=filters,
                order_by="created_at",
                ascending=False,
                limit=limit,
                offset=offset,
                or_=live,
            )
            total = self.db.count("notifications", filters=filters, or_=live)
        except Exception as e:
            logger.error("notifications.fetch_failed", user_id=user_id, error=str(e))
            return [], 0
        return rows, total

    def get_unread_count(self, user_id: str) -> int:
        try:
            return self.db.count("notifications", filters={"user_id": user_id, "is_read": False})
        except Exception as e:
            logger.error("notifications.unread_count_failed", user_id=user_id, error=str(e))
            return 0

    def mark_as_read(self, notification_id: str) -> bool:
        try:
            self.db.update("notifications", notification_id, {"is_read": True, "read_at": now_iso()})
            return True
        except Exception as e:
            logger.error("notifications.mark_read_failed", id=notification_id, error=str(e))
            return False

    def mark_all_as_read(self, user_id: str) -> bool:
        try:
            self.db.update_where(
                "notifications",
                {"is_read": True, "read_at": now_iso()},
                filters={"user_id": user_id, "is_read": False},
            )
            return True
        except Exception as e:
            logger.error("notifications.mark_all_read_failed", user_id=user_id, error=str(e))
            return False

    def delete_notification(self, notification_id: str) -> bool:
        try:
            self.db.delete("notifications", notification_id)
            return True
        except Exception as e:
            logger.error("notifications.delete_failed", id=notification_id, error=str(e))
            return False

    def create_notification(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        priority: str = "normal",
        expires_at: str | None = None,
    ) -> str | None:
        """Insert one notification. Returns its id, or None on failure."""
        try:
            row = self.db.insert(
                "notifications",
                {
                    "user_id": user_id,
                    "type": type,
                    "title": title,
                    "message": message,
                    "data": data or {},
                    "priority": priority,
                    "is_read": False,
                    "expires_at": expires_at,
                },
            )
        except Exception as e:
            logger.error("notifications.create_failed", user_id=user_id, type=type, error=str(e))
            return None
        logger.info("notification.created", user_id=user_id, type=type)
        return row["id"]

    def send_bulk_notification(
        self,
        user_ids: list[str],
        type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        priority: str = "normal",
    ) -> int:
        rows = [
            {
                "user_id": uid,
                "type": type,
                "title": title,
                "message": message,
                "data": data or {},
                "priority": priority,
                "is_read": False,
            }
            for uid in user_ids
        ]
        try:
            inserted = self.db.insert_many("notifications", rows)
        except Exception as e:
            logger.error("notifications.bulk_failed", recipients=len(user_ids), error=str(e))
            return 0
        logger.info("notification.bulk_sent", recipients=len(inserted), type=type)
        return len(inserted)

    def get_preferences(self, user_id: str) -> NotificationPreferences:
        """Teacher preference row when present, defaults otherwise."""
        try:
            row = self.db.select_one("teacher_preferences", {"teacher_id": user_id})
        except Exception as e:
            logger.warning("notifications.preferences_failed", user_id=user_id, error=str(e))
            row = None
        if not row:
            return NotificationPreferences()
        stored = {k: row[k] for k in STORED_PREFERENCES if row.get(k) is not None}
        return NotificationPreferences(**stored)

    def update_preferences(self, user_id: str, preferences: dict[str, Any]) -> bool:
        data = {k: v for k, v in preferences.items() if k in STORED_PREFERENCES}
        try:
            self.db.upsert("teacher_preferences", {"teacher_id": user_id, **data}, on_conflict="teacher_id")
            return True
        except Exception as e:
            logger.error("notifications.preferences_update_failed", user_id=user_id, error=str(e))
            return False

    def should_deliver(self, notification: dict[str, Any]) -> bool:
        """Whether a push for this notification is allowed by the user's preferences."""
        prefs = self.get_preferences(notification["user_id"])
        flag = TYPE_PREFERENCE.get(notification.get("type", ""), "push_notifications")
        return bool(getattr(prefs, flag))

    def cleanup_expired(self) -> int:
        try:
            removed = self.db.delete_where("notifications", lt={"expires_at": now_iso()})
        except Exception as e:
            logger.error("notifications.cleanup_failed", error=str(e))
            return 0
        if removed:
            logger.info("notifications.expired_removed", removed=removed)
        return removed


@lru_cache
def get_notification_service() -> NotificationService:
    """Get cached notification service instance."""
    return NotificationService(get_supabase_client())
