"""Live messaging state for one signed-in user.

Holds the conversation list, the open conversation and its messages, and
who is typing, and keeps them current from realtime channels:

- ``conversations:<user>``: conversation UPDATEs reorder the list
- ``messages:<conversation>``: message INSERT/UPDATE for the open conversation
- ``typing:<conversation>``: presence, ``{"user_id", "typing"}`` per client

Listeners registered with ``add_listener`` get ``(event, payload)`` on every
state change.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog

from tutor_hub.config import Settings, get_settings
from tutor_hub.core.messaging import MessagingService
from tutor_hub.db.realtime import RealtimeHub

logger = structlog.get_logger()

SessionListener = Callable[[str, Any], None]


class MessagingSession:
    """Per-user messaging state kept in sync with the store."""

    def __init__(
        self,
        user_id: str,
        messaging: MessagingService,
        hub: RealtimeHub,
        settings: Settings | None = None,
    ) -> None:
        self.user_id = user_id
        self.messaging = messaging
        self.hub = hub
        self.settings = settings or get_settings()

        self.conversations: list[dict[str, Any]] = []
        self.current_conversation: dict[str, Any] | None = None
        self.messages: list[dict[str, Any]] = []
        self.typing_users: list[str] = []
        self.is_loading = False
        self.is_sending = False
        self.error: str | None = None
        self.has_more_messages = True
        self.page = 0

        self._listeners: list[SessionListener] = []
        self._typing_task: asyncio.Task | None = None
        self._typing = False

    # --- Lifecycle ---

    async def start(self) -> None:
        self.load_conversations()
        await self.hub.subscribe_changes(
            f"conversations:{self.user_id}",
            "conversations",
            f"participants=cs.{{{self.user_id}}}",
            {"UPDATE": self._on_conversation_update},
        )

    async def close(self) -> None:
        await self.stop_typing()
        await self.hub.close()
        self._listeners.clear()
        logger.debug("messaging_session.closed", user_id=self.user_id)

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # --- Conversations ---

    def load_conversations(self) -> list[dict[str, Any]]:
        self.is_loading = True
        self.error = None
        try:
            self.conversations = self.messaging.get_conversations(self.user_id)
        except Exception as e:
            logger.error("messaging_session.load_failed", user_id=self.user_id, error=str(e))
            self.error = "Failed to load conversations"
        finally:
            self.is_loading = False
        self._emit("conversations", self.conversations)
        return self.conversations

    async def select_conversation(self, conversation: dict[str, Any]) -> None:
        """Open a conversation: load its newest page, mark it read, follow it live."""
        if self.current_conversation:
            previous = self.current_conversation["id"]
            await self.stop_typing()
            await self.hub.unsubscribe(f"messages:{previous}")
            await self.hub.unsubscribe(f"typing:{previous}")

        self.current_conversation = conversation
        self.messages = []
        self.typing_users = []
        self.page = 0
        self.has_more_messages = True
        self.error = None
        self.is_loading = True
        conversation_id = conversation["id"]
        try:
            self.messages = self.messaging.get_messages(
                conversation_id, page=0, limit=self.settings.message_page_size
            )
            unread = [
                m["id"]
                for m in self.messages
                if m["sender_id"] != self.user_id
                and not any(r["user_id"] == self.user_id for r in m.get("read_by", []))
            ]
            self.messaging.mark_messages_as_read(unread, self.user_id)
            self._set_unread(conversation_id, 0)

            await self.hub.subscribe_changes(
                f"messages:{conversation_id}",
                "messages",
                f"conversation_id=eq.{conversation_id}",
                {"INSERT": self._on_message_insert, "UPDATE": self._on_message_update},
            )
            await self.hub.subscribe_presence(f"typing:{conversation_id}", self._on_typing_sync)
        except Exception as e:
            logger.error("messaging_session.select_failed", conversation_id=conversation_id, error=str(e))
            self.error = "Failed to load conversation"
        finally:
            self.is_loading = False
        self._emit("messages", self.messages)

    def create_direct_conversation(self, other_user_id: str) -> dict[str, Any]:
        """Find or create the direct conversation and put it at the top of the list."""
        try:
            conversation = self.messaging.find_or_create_direct_conversation(self.user_id, other_user_id)
        except Exception as e:
            self.error = str(e) or "Failed to create conversation"
            raise
        described = self.messaging.describe_conversation(conversation, self.user_id)
        self.conversations = [described] + [c for c in self.conversations if c["id"] != described["id"]]
        self._emit("conversations", self.conversations)
        return described

    def search_users(self, query: str, role: str | None = None) -> list[dict[str, Any]]:
        try:
            return self.messaging.search_users(query, self.user_id, role)
        except Exception as e:
            logger.error("messaging_session.search_failed", error=str(e))
            self.error = "Failed to search users"
            return []

    def unread_total(self) -> int:
        return sum(c.get("unread_count") or 0 for c in self.conversations)

    def clear_error(self) -> None:
        self.error = None

    # --- Messages ---

    async def send_message(
        self,
        content: str,
        message_type: str = "text",
        attachments: list[Any] | None = None,
        reply_to_id: str | None = None,
    ) -> dict[str, Any] | None:
        if not self.current_conversation or not content.strip():
            return None

        self.is_sending = True
        self.error = None
        await self.stop_typing()
        conversation_id = self.current_conversation["id"]
        try:
            message = self.messaging.send_message(
                conversation_id, self.user_id, content, message_type, attachments, reply_to_id
            )
        except Exception as e:
            logger.error("messaging_session.send_failed", conversation_id=conversation_id, error=str(e))
            self.error = "Failed to send message"
            return None
        finally:
            self.is_sending = False

        self._append(message)
        self._touch_conversation(conversation_id, message, message.get("created_at"))
        return message

    def edit_message(self, message_id: str, content: str) -> dict[str, Any] | None:
        try:
            updated = self.messaging.edit_message(message_id, content)
        except Exception as e:
            logger.error("messaging_session.edit_failed", message_id=message_id, error=str(e))
            self.error = "Failed to edit message"
            return None
        self._replace(updated)
        return updated

    def delete_message(self, message_id: str) -> bool:
        try:
            self.messaging.delete_message(message_id)
        except Exception as e:
            logger.error("messaging_session.delete_failed", message_id=message_id, error=str(e))
            self.error = "Failed to delete message"
            return False
        self._remove(message_id)
        return True

    def mark_as_read(self) -> int:
        if not self.current_conversation:
            return 0
        conversation_id = self.current_conversation["id"]
        try:
            marked = self.messaging.mark_conversation_as_read(conversation_id, self.user_id)
        except Exception as e:
            logger.error("messaging_session.mark_read_failed", conversation_id=conversation_id, error=str(e))
            return 0
        self._set_unread(conversation_id, 0)
        return marked

    def load_more_messages(self) -> list[dict[str, Any]]:
        """Prepend the next older page. An empty page ends pagination."""
        if not self.current_conversation or not self.has_more_messages or self.is_loading:
            return []

        self.is_loading = True
        next_page = self.page + 1
        try:
            older = self.messaging.get_messages(
                self.current_conversation["id"], page=next_page, limit=self.settings.message_page_size
            )
        except Exception as e:
            logger.error("messaging_session.load_more_failed", error=str(e))
            self.error = "Failed to load more messages"
            return []
        finally:
            self.is_loading = False

        if not older:
            self.has_more_messages = False
            return []
        known = {m["id"] for m in self.messages}
        older = [m for m in older if m["id"] not in known]
        self.messages = older + self.messages
        self.page = next_page
        self._emit("messages", self.messages)
        return older

    # --- Typing ---

    async def start_typing(self) -> None:
        """Announce typing; it is withdrawn after ``typing_idle_seconds`` of no calls."""
        if not self.current_conversation:
            return
        if self._typing_task is not None:
            self._typing_task.cancel()
        if not self._typing:
            self._typing = await self._track_typing(True)
        self._typing_task = asyncio.create_task(self._typing_timeout())

    async def stop_typing(self) -> None:
        if self._typing_task is not None:
            self._typing_task.cancel()
            self._typing_task = None
        if self._typing:
            self._typing = False
            await self._track_typing(False)

    async def _typing_timeout(self) -> None:
        await asyncio.sleep(self.settings.typing_idle_seconds)
        self._typing_task = None
        if self._typing:
            self._typing = False
            await self._track_typing(False)

    async def _track_typing(self, typing: bool) -> bool:
        if not self.current_conversation:
            return False
        key = f"typing:{self.current_conversation['id']}"
        try:
            return await self.hub.track(key, {"user_id": self.user_id, "typing": typing})
        except Exception as e:
            logger.warning("messaging_session.typing_failed", channel=key, error=str(e))
            return False

    # --- Realtime handlers ---

    def _on_conversation_update(self, record: dict[str, Any]) -> None:
        if self.user_id not in (record.get("participants") or []):
            return
        existing = next((c for c in self.conversations if c["id"] == record["id"]), None)
        if record.get("is_archived"):
            self.conversations = [c for c in self.conversations if c["id"] != record["id"]]
        elif existing is not None:
            existing.update(record)
        else:
            self.conversations.insert(0, self.messaging.describe_conversation(record, self.user_id))
        self.conversations.sort(key=lambda c: c.get("last_message_at") or "", reverse=True)
        self._emit("conversations", self.conversations)

    def _on_message_insert(self, record: dict[str, Any]) -> None:
        if not self.current_conversation or record.get("conversation_id") != self.current_conversation["id"]:
            return
        if any(m["id"] == record["id"] for m in self.messages):
            return
        message = self.messaging.get_message(record["id"]) or record
        self._append(message)
        if message["sender_id"] != self.user_id:
            self.messaging.mark_messages_as_read([message["id"]], self.user_id)
        self._touch_conversation(record["conversation_id"], message, record.get("created_at"))

    def _on_message_update(self, record: dict[str, Any]) -> None:
        if record.get("is_deleted"):
            self._remove(record["id"])
        else:
            self._replace(record)

    def _on_typing_sync(self, state: dict[str, list[dict[str, Any]]]) -> None:
        typing = {
            p["user_id"]
            for presences in state.values()
            for p in presences
            if p.get("typing") and p.get("user_id") and p["user_id"] != self.user_id
        }
        self.typing_users = sorted(typing)
        self._emit("typing", self.typing_users)

    # --- Local state ---

    def _append(self, message: dict[str, Any]) -> None:
        if any(m["id"] == message["id"] for m in self.messages):
            return
        self.messages.append(message)
        self._emit("message", message)

    def _replace(self, message: dict[str, Any]) -> None:
        for i, existing in enumerate(self.messages):
            if existing["id"] == message["id"]:
                self.messages[i] = {**existing, **message}
                self._emit("message_updated", self.messages[i])
                return

    def _remove(self, message_id: str) -> None:
        before = len(self.messages)
        self.messages = [m for m in self.messages if m["id"] != message_id]
        if len(self.messages) != before:
            self._emit("message_deleted", message_id)

    def _touch_conversation(self, conversation_id: str, message: dict[str, Any], when: str | None) -> None:
        """Move a conversation to the top with ``message`` as its latest."""
        for i, conversation in enumerate(self.conversations):
            if conversation["id"] == conversation_id:
                conversation["last_message"] = message
                if when:
                    conversation["last_message_at"] = when
                self.conversations.insert(0, self.conversations.pop(i))
                self._emit("conversations", self.conversations)
                return

    def _set_unread(self, conversation_id: str, count: int) -> None:
        for conversation in self.conversations:
            if conversation["id"] == conversation_id:
                conversation["unread_count"] = count

    def _emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.warning("messaging_session.listener_error", event=event, error=str(e))
