"""Live notification feed for one signed-in user.

Created when the user signs in and closed when they sign out. New rows
arrive on the ``notifications:<user>`` channel; a refresh loop re-reads the
list and unread count every ``notification_refresh_seconds`` in case a
realtime event was missed.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog

from tutor_hub.config import Settings, get_settings
from tutor_hub.core.notifications import NotificationService
from tutor_hub.db.realtime import RealtimeHub

logger = structlog.get_logger()

NotificationListener = Callable[[dict[str, Any]], None]

FEED_SIZE = 50


class NotificationCenter:
    """Per-session notification state with observer fan-out."""

    def __init__(
        self,
        user_id: str,
        service: NotificationService,
        hub: RealtimeHub,
        settings: Settings | None = None,
        push_sink: NotificationListener | None = None,
    ) -> None:
        self.user_id = user_id
        self.service = service
        self.hub = hub
        self.settings = settings or get_settings()
        self.push_sink = push_sink
        self.push_enabled = False

        self.notifications: list[dict[str, Any]] = []
        self.unread_count = 0
        self.total = 0

        self._listeners: list[NotificationListener] = []
        self._refresh_task: asyncio.Task | None = None

    @property
    def channel(self) -> str:
        return f"notifications:{self.user_id}"

    async def start(self) -> None:
        self.refresh()
        await self.hub.subscribe_changes(
            self.channel, "notifications", f"user_id=eq.{self.user_id}", {"INSERT": self._on_insert}
        )
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info("notification_center.started", user_id=self.user_id)

    async def close(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        await self.hub.close()
        self._listeners.clear()
        logger.info("notification_center.closed", user_id=self.user_id)

    # --- Observers ---

    def add_listener(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: NotificationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # --- State ---

    def refresh(self) -> None:
        self.notifications, self.total = self.service.get_notifications(self.user_id, limit=FEED_SIZE)
        self.unread_count = self.service.get_unread_count(self.user_id)

    def mark_as_read(self, notification_id: str) -> bool:
        if not self.service.mark_as_read(notification_id):
            return False
        for notification in self.notifications:
            if notification["id"] == notification_id and not notification.get("is_read"):
                notification["is_read"] = True
                self.unread_count = max(0, self.unread_count - 1)
        return True

    def mark_all_as_read(self) -> bool:
        if not self.service.mark_all_as_read(self.user_id):
            return False
        for notification in self.notifications:
            notification["is_read"] = True
        self.unread_count = 0
        return True

    def delete(self, notification_id: str) -> bool:
        if not self.service.delete_notification(notification_id):
            return False
        removed = next((n for n in self.notifications if n["id"] == notification_id), None)
        if removed is not None:
            self.notifications.remove(removed)
            self.total = max(0, self.total - 1)
            if not removed.get("is_read"):
                self.unread_count = max(0, self.unread_count - 1)
        return True

    def request_push_permission(self, granted: bool) -> bool:
        """Record whether the client allows push delivery."""
        self.push_enabled = granted
        logger.info("notification_center.push_permission", user_id=self.user_id, granted=granted)
        return granted

    # --- Realtime ---

    def _on_insert(self, record: dict[str, Any]) -> None:
        if record.get("user_id") != self.user_id:
            return
        if any(n["id"] == record["id"] for n in self.notifications):
            return

        self.notifications.insert(0, record)
        self.total += 1
        if not record.get("is_read"):
            self.unread_count += 1

        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.warning("notification_center.listener_error", user_id=self.user_id, error=str(e))
        self._push(record)

    def _push(self, record: dict[str, Any]) -> None:
        if self.push_sink is None or not self.push_enabled:
            return
        if not self.service.should_deliver(record):
            return
        try:
            self.push_sink(record)
        except Exception as e:
            logger.warning("notification_center.push_failed", user_id=self.user_id, error=str(e))

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.notification_refresh_seconds)
            try:
                self.refresh()
            except Exception as e:
                logger.error("notification_center.refresh_failed", user_id=self.user_id, error=str(e))
