"""Per-role messaging — the view each kind of user gets of conversations.

A session picks its implementation once with ``messaging_for_role`` and calls
it through the shared ``RoleMessaging`` surface. Unlike ``MessagingService``
these methods never raise: failures are logged and come back as an empty
list or an ``OperationResult`` with ``success=False``.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, Field

from tutor_hub.config import Settings
from tutor_hub.core.errors import TutorHubError
from tutor_hub.core.messaging import MessagingService
from tutor_hub.core.notifications import NotificationService
from tutor_hub.core.session_requests import SessionRequestService
from tutor_hub.db.client import SupabaseClient
from tutor_hub.db.models import AI_ASSISTANT_ID

logger = structlog.get_logger()

AI_CONVERSATION_TITLE = "AI Assistant"
HISTORY_LIMIT = 200


class OperationResult(BaseModel):
    success: bool
    conversation_id: str | None = None
    message_id: str | None = None
    request_id: str | None = None
    error: str | None = None


class Participant(BaseModel):
    id: str
    name: str
    avatar_url: str | None = None
    role: str = "user"


class LastMessage(BaseModel):
    content: str
    sender_name: str
    created_at: str | None = None


class ConversationSummary(BaseModel):
    id: str
    type: str = "direct"
    title: str | None = None
    participants: list[str] = Field(default_factory=list)
    last_message_at: str | None = None
    is_archived: bool = False
    other_participant: Participant | None = None
    last_message: LastMessage | None = None
    unread_count: int = 0


class ReplyPreview(BaseModel):
    content: str
    sender_name: str


class MessageView(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    message_type: str = "text"
    attachments: list[Any] = Field(default_factory=list)
    reply_to_id: str | None = None
    is_edited: bool = False
    created_at: str | None = None
    sender_name: str
    sender_avatar: str | None = None
    sender_role: str = "user"
    reply_to: ReplyPreview | None = None


class TeacherContact(BaseModel):
    id: str
    name: str
    email: str = ""
    avatar_url: str | None = None
    subjects: list[str] = Field(default_factory=list)
    rating: float = 0
    total_reviews: int = 0
    is_available: bool = False
    last_seen: str | None = None
    conversation_id: str | None = None
    unread_count: int = 0
    last_message: str | None = None
    last_message_time: str | None = None


def _sender_name(message: dict[str, Any]) -> str:
    if message.get("sender_id") == AI_ASSISTANT_ID:
        return AI_CONVERSATION_TITLE
    return (message.get("sender") or {}).get("full_name") or "Unknown"


def _participant(profile: dict[str, Any] | None, participant_id: str | None) -> Participant | None:
    if participant_id == AI_ASSISTANT_ID:
        return Participant(id=AI_ASSISTANT_ID, name=AI_CONVERSATION_TITLE, role="ai")
    if not profile:
        return None
    return Participant(
        id=profile["id"],
        name=profile.get("full_name") or "Unknown",
        avatar_url=profile.get("avatar_url"),
        role=profile.get("role") or "user",
    )


class RoleMessaging:
    """Messaging operations shared by every role."""

    role = "user"

    def __init__(self, messaging: MessagingService, requests: SessionRequestService) -> None:
        self.messaging = messaging
        self.requests = requests
        self.db = messaging.db

    def get_conversations(self, user_id: str) -> list[ConversationSummary]:
        try:
            conversations = self.messaging.get_conversations(user_id)
        except Exception as e:
            logger.error("messaging.conversations_failed", role=self.role, user_id=user_id, error=str(e))
            return []
        return [self._summary(c, user_id) for c in conversations]

    def get_messages(self, conversation_id: str) -> list[MessageView]:
        try:
            messages = self.messaging.get_messages(conversation_id, limit=HISTORY_LIMIT)
            replies = self._reply_previews(messages)
        except Exception as e:
            logger.error("messaging.messages_failed", conversation_id=conversation_id, error=str(e))
            return []
        return [self._view(m, replies) for m in messages]

    def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: str = "text",
        attachments: list[Any] | None = None,
        reply_to_id: str | None = None,
    ) -> OperationResult:
        try:
            message = self.messaging.send_message(
                conversation_id, sender_id, content, message_type, attachments, reply_to_id
            )
        except TutorHubError as e:
            return OperationResult(success=False, error=str(e))
        except Exception as e:
            logger.error("messaging.send_failed", conversation_id=conversation_id, error=str(e))
            return OperationResult(success=False, error="Failed to send message")
        return OperationResult(success=True, conversation_id=conversation_id, message_id=message["id"])

    def get_or_create_teacher_conversation(self, user_id: str, teacher_id: str) -> OperationResult:
        try:
            teacher = self.messaging.get_user_profile(teacher_id)
            name = (teacher or {}).get("full_name") or "Teacher"
            conversation = self.messaging.find_or_create_direct_conversation(
                user_id, teacher_id, title=f"Chat with {name}"
            )
        except TutorHubError as e:
            return OperationResult(success=False, error=str(e))
        except Exception as e:
            logger.error("messaging.teacher_conversation_failed", user_id=user_id, teacher_id=teacher_id, error=str(e))
            return OperationResult(success=False, error="Failed to create teacher conversation")
        return OperationResult(success=True, conversation_id=conversation["id"])

    def get_or_create_ai_conversation(self, user_id: str) -> OperationResult:
        try:
            conversation = self.messaging.find_or_create_direct_conversation(
                user_id, AI_ASSISTANT_ID, title=AI_CONVERSATION_TITLE
            )
        except Exception as e:
            logger.error("messaging.ai_conversation_failed", user_id=user_id, error=str(e))
            return OperationResult(success=False, error="Failed to create AI conversation")
        return OperationResult(success=True, conversation_id=conversation["id"])

    def get_available_teachers(self, user_id: str) -> list[TeacherContact]:
        """Available teachers with the caller's existing conversation, if any.

        Conversations are not created here; that happens when the user opens one.
        """
        try:
            teachers = self.db.select("teachers", filters={"is_available": True})
            ids = [t["id"] for t in teachers]
            profiles = {
                p["id"]: p
                for p in (self.db.select("profiles", filters={"is_active": True}, in_={"id": ids}) if ids else [])
            }
            contacts = []
            for teacher in teachers:
                profile = profiles.get(teacher["id"])
                if profile:
                    contacts.append(self._contact(user_id, teacher, profile))
        except Exception as e:
            logger.error("messaging.teachers_failed", user_id=user_id, error=str(e))
            return []
        return contacts

    def mark_messages_as_read(self, conversation_id: str, user_id: str) -> int:
        try:
            return self.messaging.mark_conversation_as_read(conversation_id, user_id)
        except Exception as e:
            logger.error("messaging.mark_read_failed", conversation_id=conversation_id, error=str(e))
            return 0

    # --- Helpers ---

    def _summary(self, conversation: dict[str, Any], user_id: str) -> ConversationSummary:
        other_id = next((p for p in conversation["participants"] if p != user_id), None)
        last = conversation.get("last_message")
        return ConversationSummary(
            id=conversation["id"],
            type=conversation.get("type") or "direct",
            title=conversation.get("title"),
            participants=conversation["participants"],
            last_message_at=conversation.get("last_message_at"),
            is_archived=bool(conversation.get("is_archived")),
            other_participant=_participant(conversation.get("other_participant"), other_id),
            last_message=LastMessage(
                content=last["content"], sender_name=_sender_name(last), created_at=last.get("created_at")
            )
            if last
            else None,
            unread_count=conversation.get("unread_count") or 0,
        )

    def _reply_previews(self, messages: list[dict[str, Any]]) -> dict[str, ReplyPreview]:
        reply_ids = list({m["reply_to_id"] for m in messages if m.get("reply_to_id")})
        if not reply_ids:
            return {}
        originals = self.db.select("messages", in_={"id": reply_ids})
        sender_ids = list({o["sender_id"] for o in originals})
        names = {p["id"]: p.get("full_name") for p in self.db.select("profiles", in_={"id": sender_ids})}
        return {
            o["id"]: ReplyPreview(content=o["content"], sender_name=names.get(o["sender_id"]) or "Unknown")
            for o in originals
        }

    @staticmethod
    def _view(message: dict[str, Any], replies: dict[str, ReplyPreview]) -> MessageView:
        sender = message.get("sender") or {}
        is_ai = message["sender_id"] == AI_ASSISTANT_ID
        return MessageView(
            id=message["id"],
            conversation_id=message["conversation_id"],
            sender_id=message["sender_id"],
            content=message["content"],
            message_type=message.get("message_type") or "text",
            attachments=message.get("attachments") or [],
            reply_to_id=message.get("reply_to_id"),
            is_edited=bool(message.get("is_edited")),
            created_at=message.get("created_at"),
            sender_name=_sender_name(message),
            sender_avatar=sender.get("avatar_url"),
            sender_role="ai" if is_ai else sender.get("role") or "user",
            reply_to=replies.get(message.get("reply_to_id") or ""),
        )

    def _contact(self, user_id: str, teacher: dict[str, Any], profile: dict[str, Any]) -> TeacherContact:
        conversation = self.messaging.find_direct_conversation(user_id, teacher["id"])
        last = self.messaging.get_last_message(conversation["id"]) if conversation else None
        return TeacherContact(
            id=teacher["id"],
            name=profile.get("full_name") or "Teacher",
            email=profile.get("email") or "",
            avatar_url=profile.get("avatar_url"),
            subjects=teacher.get("subjects") or [],
            rating=teacher.get("rating") or 0,
            total_reviews=teacher.get("total_reviews") or 0,
            is_available=bool(teacher.get("is_available")),
            last_seen=teacher.get("updated_at"),
            conversation_id=conversation["id"] if conversation else None,
            unread_count=self.messaging.get_unread_count(conversation["id"], user_id) if conversation else 0,
            last_message=last["content"] if last else None,
            last_message_time=last.get("created_at") if last else None,
        )


class StudentMessaging(RoleMessaging):
    role = "student"

    def get_student_requests(self, student_id: str) -> list[dict[str, Any]]:
        try:
            return self.requests.get_student_requests(student_id)
        except Exception as e:
            logger.error("messaging.student_requests_failed", student_id=student_id, error=str(e))
            return []


class ParentMessaging(RoleMessaging):
    role = "parent"

    def send_session_request(
        self,
        parent_id: str,
        student_id: str,
        teacher_id: str,
        requested_start: str,
        requested_end: str,
        duration_hours: float | None = None,
        message: str | None = None,
    ) -> OperationResult:
        """Request a session for one of the parent's children; tokens come from the child."""
        try:
            child = self.db.select_one("students", {"id": student_id, "parent_id": parent_id}, columns="id")
            if not child:
                return OperationResult(success=False, error="Student is not linked to this parent")
            request = self.requests.create_session_request(
                student_id,
                teacher_id,
                requested_start,
                requested_end,
                duration_hours=duration_hours,
                message=message,
                requested_by=parent_id,
            )
        except TutorHubError as e:
            return OperationResult(success=False, error=str(e))
        except Exception as e:
            logger.error("messaging.parent_request_failed", parent_id=parent_id, error=str(e))
            return OperationResult(success=False, error="Failed to send session request")
        return OperationResult(success=True, request_id=request["id"])

    def get_session_requests(self, parent_id: str) -> list[dict[str, Any]]:
        """Requests of every child linked to the parent, newest first."""
        try:
            children = self.db.select("students", filters={"parent_id": parent_id}, columns="id")
            if not children:
                return []
            child_ids = [c["id"] for c in children]
            rows = self.db.select(
                "session_requests", in_={"student_id": child_ids}, order_by="created_at", ascending=False
            )
            people = list({r["student_id"] for r in rows} | {r["teacher_id"] for r in rows})
            profiles = {p["id"]: p for p in (self.db.select("profiles", in_={"id": people}) if people else [])}
        except Exception as e:
            logger.error("messaging.parent_requests_failed", parent_id=parent_id, error=str(e))
            return []

        return [
            {
                **r,
                "student_name": (profiles.get(r["student_id"]) or {}).get("full_name") or "Unknown Student",
                "teacher_name": (profiles.get(r["teacher_id"]) or {}).get("full_name") or "Unknown Teacher",
                "teacher_avatar": (profiles.get(r["teacher_id"]) or {}).get("avatar_url"),
            }
            for r in rows
        ]


class TeacherMessaging(RoleMessaging):
    role = "teacher"

    def get_available_teachers(self, user_id: str) -> list[TeacherContact]:
        return []

    def get_student_contacts(self, teacher_id: str) -> list[Participant]:
        """Students who have sent this teacher a session request."""
        try:
            rows = self.db.select("session_requests", filters={"teacher_id": teacher_id}, columns="student_id")
            ids = list({r["student_id"] for r in rows})
            profiles = self.db.select("profiles", in_={"id": ids}) if ids else []
        except Exception as e:
            logger.error("messaging.student_contacts_failed", teacher_id=teacher_id, error=str(e))
            return []
        return sorted(
            (p for p in (_participant(profile, profile["id"]) for profile in profiles) if p),
            key=lambda p: p.name,
        )


class AdminMessaging(RoleMessaging):
    role = "admin"


ROLE_MESSAGING: dict[str, type[RoleMessaging]] = {
    "student": StudentMessaging,
    "parent": ParentMessaging,
    "teacher": TeacherMessaging,
    "admin": AdminMessaging,
}


def messaging_for_role(
    role: str,
    db: SupabaseClient,
    notifications: NotificationService | None = None,
    settings: Settings | None = None,
) -> RoleMessaging:
    """Build the messaging implementation for a role."""
    cls = ROLE_MESSAGING.get(role)
    if cls is None:
        raise ValueError(f"Unknown role '{role}'")
    notifications = notifications or NotificationService(db)
    return cls(MessagingService(db, notifications), SessionRequestService(db, notifications, settings))
