"""Messaging service — conversations, messages, and read state.

Conversations hold a participant id array; messages are append-only apart
from edits and soft deletes. Read state lives in ``message_reads`` keyed by
``(message_id, user_id)``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import structlog

from tutor_hub.core.errors import NotFoundError, ValidationError
from tutor_hub.core.notifications import NotificationService, get_notification_service
from tutor_hub.db.client import DuplicateKeyError, SupabaseClient, get_supabase_client, ilike_any
from tutor_hub.db.models import AI_ASSISTANT_ID
from tutor_hub.utils.timefmt import now_iso

logger = structlog.get_logger()

PREVIEW_LENGTH = 100
SEARCH_LIMIT = 10


def participant_key(participants: list[str]) -> str:
    """Order-independent identity of a participant set."""
    return ":".join(sorted(set(participants)))


def preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    return content[:length] + "..." if len(content) > length else content


class MessagingService:
    """Conversation and message operations shared by every role."""

    def __init__(self, db: SupabaseClient, notifications: NotificationService) -> None:
        self.db = db
        self.notifications = notifications

    # --- Conversations ---

    def get_conversations(self, user_id: str) -> list[dict[str, Any]]:
        """Active conversations for a user, newest activity first."""
        rows = self.db.select(
            "conversations",
            filters={"is_archived": False},
            contains={"participants": [user_id]},
            order_by="last_message_at",
            ascending=False,
        )
        return [self.describe_conversation(row, user_id) for row in rows]

    def describe_conversation(self, conversation: dict[str, Any], user_id: str) -> dict[str, Any]:
        """Attach last message, unread count and the other participant's profile."""
        other_id = next((p for p in conversation["participants"] if p != user_id), None)
        return {
            **conversation,
            "last_message": self.get_last_message(conversation["id"]),
            "unread_count": self.get_unread_count(conversation["id"], user_id),
            "other_participant": self.get_user_profile(other_id) if other_id else None,
        }

    def create_conversation(
        self,
        participants: list[str],
        type: str = "direct",
        title: str | None = None,
        class_id: str | None = None,
        created_by: str | None = None,
    ) -> dict[str, Any]:
        if len(set(participants)) < 2:
            raise ValidationError("A conversation needs at least two distinct participants")
        data: dict[str, Any] = {
            "type": type,
            "title": title,
            "class_id": class_id,
            "participants": participants,
            "created_by": created_by or participants[0],
            "last_message_at": now_iso(),
            "is_archived": False,
        }
        if type == "direct":
            data["participant_key"] = participant_key(participants)
        conversation = self.db.insert("conversations", data)
        logger.info("conversation.created", id=conversation["id"], type=type)
        return conversation

    def find_direct_conversation(self, user_a: str, user_b: str) -> dict[str, Any] | None:
        return self.db.select_one(
            "conversations",
            {"type": "direct", "participant_key": participant_key([user_a, user_b])},
        )

    def find_or_create_direct_conversation(
        self, user_a: str, user_b: str, title: str | None = None
    ) -> dict[str, Any]:
        """Return the one direct conversation between two users, creating it on first use.

        The unique index on ``participant_key`` decides concurrent creates; the
        loser re-reads the winner's row.
        """
        existing = self.find_direct_conversation(user_a, user_b)
        if existing:
            if existing.get("is_archived"):
                existing = self.db.update("conversations", existing["id"], {"is_archived": False}) or existing
            return existing

        try:
            return self.create_conversation([user_a, user_b], "direct", title=title, created_by=user_a)
        except DuplicateKeyError:
            logger.info("conversation.create_race_lost", participants=[user_a, user_b])
            winner = self.find_direct_conversation(user_a, user_b)
            if winner is None:
                raise
            return winner

    # --- Messages ---

    def get_messages(
        self, conversation_id: str, page: int = 0, limit: int = 50
    ) -> list[dict[str, Any]]:
        """One page of non-deleted messages, oldest first within the page.

        Page 0 is the newest ``limit`` messages; higher pages go back in time.
        """
        rows = self.db.select(
            "messages",
            filters={"conversation_id": conversation_id, "is_deleted": False},
            order_by="created_at",
            ascending=False,
            limit=limit,
            offset=page * limit,
        )
        rows.reverse()
        return self._decorate(rows)

    def get_message(self, message_id: str) -> dict[str, Any] | None:
        row = self.db.select_one("messages", {"id": message_id})
        return self._decorate([row])[0] if row else None

    def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: str = "text",
        attachments: list[Any] | None = None,
        reply_to_id: str | None = None,
    ) -> dict[str, Any]:
        if not content.strip() and not attachments:
            raise ValidationError("Message content cannot be empty")

        row = self.db.insert(
            "messages",
            {
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "content": content,
                "message_type": message_type,
                "attachments": attachments or [],
                "reply_to_id": reply_to_id,
                "is_edited": False,
                "is_deleted": False,
                "metadata": {},
            },
        )
        self.db.update("conversations", conversation_id, {"last_message_at": row.get("created_at") or now_iso()})

        message = self._decorate([row])[0]
        self._notify_recipients(conversation_id, message)
        logger.info("message.sent", conversation_id=conversation_id, message_id=row["id"])
        return message

    def edit_message(self, message_id: str, content: str) -> dict[str, Any]:
        row = self.db.update(
            "messages", message_id, {"content": content, "is_edited": True, "edited_at": now_iso()}
        )
        if row is None:
            raise NotFoundError(f"Message '{message_id}' not found")
        return self._decorate([row])[0]

    def delete_message(self, message_id: str) -> None:
        """Soft delete; the row stays but never shows up in listings again."""
        row = self.db.update("messages", message_id, {"is_deleted": True, "deleted_at": now_iso()})
        if row is None:
            raise NotFoundError(f"Message '{message_id}' not found")
        logger.info("message.deleted", message_id=message_id)

    def mark_messages_as_read(self, message_ids: list[str], user_id: str) -> None:
        """Idempotently record read receipts."""
        if not message_ids:
            return
        self.db.upsert(
            "message_reads",
            [{"message_id": mid, "user_id": user_id, "read_at": now_iso()} for mid in message_ids],
            on_conflict="message_id,user_id",
            ignore_duplicates=True,
        )

    def mark_conversation_as_read(self, conversation_id: str, user_id: str) -> int:
        """Mark every unread message from others in a conversation. Returns how many."""
        unread = self.unread_message_ids(conversation_id, user_id)
        self.mark_messages_as_read(unread, user_id)
        return len(unread)

    def get_last_message(self, conversation_id: str) -> dict[str, Any] | None:
        rows = self.db.select(
            "messages",
            filters={"conversation_id": conversation_id, "is_deleted": False},
            order_by="created_at",
            ascending=False,
            limit=1,
        )
        return self._decorate(rows)[0] if rows else None

    def unread_message_ids(self, conversation_id: str, user_id: str) -> list[str]:
        rows = self.db.select(
            "messages",
            filters={"conversation_id": conversation_id, "is_deleted": False},
            neq={"sender_id": user_id},
            columns="id",
        )
        ids = [r["id"] for r in rows]
        if not ids:
            return []
        reads = self.db.select(
            "message_reads", filters={"user_id": user_id}, in_={"message_id": ids}, columns="message_id"
        )
        read_ids = {r["message_id"] for r in reads}
        return [mid for mid in ids if mid not in read_ids]

    def get_unread_count(self, conversation_id: str, user_id: str) -> int:
        return len(self.unread_message_ids(conversation_id, user_id))

    # --- Users ---

    def search_users(self, query: str, current_user_id: str, role: str | None = None) -> list[dict[str, Any]]:
        """Active users other than the caller whose name or email matches ``query``."""
        filters: dict[str, Any] = {"is_active": True}
        if role:
            filters["role"] = role
        return self.db.select(
            "profiles",
            filters=filters,
            order_by="full_name",
            limit=SEARCH_LIMIT,
            neq={"id": current_user_id},
            or_=ilike_any(("full_name", "email"), query.strip()),
        )

    def get_user_profile(self, user_id: str) -> dict[str, Any] | None:
        try:
            return self.db.select_one("profiles", {"id": user_id})
        except Exception as e:
            logger.warning("messaging.profile_fetch_failed", user_id=user_id, error=str(e))
            return None

    # --- Helpers ---

    def _decorate(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Attach sender profiles and read receipts to message rows."""
        if not rows:
            return []
        sender_ids = list({r["sender_id"] for r in rows})
        profiles = {p["id"]: p for p in self.db.select("profiles", in_={"id": sender_ids})}
        reads = self.db.select("message_reads", in_={"message_id": [r["id"] for r in rows]})

        read_by: dict[str, list[dict[str, Any]]] = {}
        for read in reads:
            read_by.setdefault(read["message_id"], []).append(read)

        return [
            {**r, "sender": profiles.get(r["sender_id"]), "read_by": read_by.get(r["id"], [])}
            for r in rows
        ]

    def _notify_recipients(self, conversation_id: str, message: dict[str, Any]) -> None:
        try:
            conversation = self.db.select_one("conversations", {"id": conversation_id}, columns="participants")
        except Exception as e:
            logger.warning("messaging.notify_lookup_failed", conversation_id=conversation_id, error=str(e))
            return
        if not conversation:
            return

        sender_name = (message.get("sender") or {}).get("full_name") or "Unknown User"
        for recipient in conversation["participants"]:
            if recipient in (message["sender_id"], AI_ASSISTANT_ID):
                continue
            self.notifications.create_notification(
                recipient,
                "message",
                f"New message from {sender_name}",
                preview(message["content"]),
                {
                    "conversation_id": conversation_id,
                    "sender_id": message["sender_id"],
                    "message_id": message["id"],
                },
            )


@lru_cache
def get_messaging_service() -> MessagingService:
    """Get cached messaging service instance."""
    return MessagingService(get_supabase_client(), get_notification_service())
