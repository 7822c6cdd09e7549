"""Conversation endpoints — listing, creation, history, sending and read state."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from tutor_hub.api.deps import get_current_profile, get_current_user_id, get_role_messaging, http_error
from tutor_hub.api.models import ConversationCreate, DirectConversationRequest, MessageCreate
from tutor_hub.core.errors import TutorHubError
from tutor_hub.core.messaging import MessagingService, get_messaging_service
from tutor_hub.core.role_messaging import (
    ConversationSummary,
    OperationResult,
    Participant,
    RoleMessaging,
    TeacherContact,
    TeacherMessaging,
)

router = APIRouter()


def _get_conversation_for(conversation_id: str, user_id: str, messaging: MessagingService) -> dict[str, Any]:
    conversation = messaging.db.select_one("conversations", {"id": conversation_id})
    if not conversation:
        raise HTTPException(status_code=404, detail=f"Conversation '{conversation_id}' not found")
    if user_id not in conversation["participants"]:
        raise HTTPException(status_code=403, detail="Not a participant in this conversation")
    return conversation


def _result_or_400(result: OperationResult) -> OperationResult:
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error or "Operation failed")
    return result


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    user_id: str = Depends(get_current_user_id),
    role_messaging: RoleMessaging = Depends(get_role_messaging),
) -> list[ConversationSummary]:
    return role_messaging.get_conversations(user_id)


@router.post("", status_code=201)
async def create_conversation(
    data: ConversationCreate,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> dict[str, Any]:
    participants = [user_id] + [p for p in dict.fromkeys(data.participants) if p != user_id]
    try:
        if data.type == "direct":
            if len(participants) != 2:
                raise HTTPException(status_code=400, detail="A direct conversation has exactly two participants")
            return messaging.find_or_create_direct_conversation(user_id, participants[1], title=data.title)
        return messaging.create_conversation(
            participants, data.type, title=data.title, class_id=data.class_id, created_by=user_id
        )
    except TutorHubError as e:
        raise http_error(e)


@router.post("/direct")
async def direct_conversation(
    data: DirectConversationRequest,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> dict[str, Any]:
    try:
        conversation = messaging.find_or_create_direct_conversation(user_id, data.other_user_id)
    except TutorHubError as e:
        raise http_error(e)
    return messaging.describe_conversation(conversation, user_id)


@router.post("/teacher/{teacher_id}", response_model=OperationResult)
async def teacher_conversation(
    teacher_id: str,
    user_id: str = Depends(get_current_user_id),
    role_messaging: RoleMessaging = Depends(get_role_messaging),
) -> OperationResult:
    return _result_or_400(role_messaging.get_or_create_teacher_conversation(user_id, teacher_id))


@router.post("/ai", response_model=OperationResult)
async def ai_conversation(
    user_id: str = Depends(get_current_user_id),
    role_messaging: RoleMessaging = Depends(get_role_messaging),
) -> OperationResult:
    return _result_or_400(role_messaging.get_or_create_ai_conversation(user_id))


@router.get("/teachers", response_model=list[TeacherContact])
async def available_teachers(
    user_id: str = Depends(get_current_user_id),
    role_messaging: RoleMessaging = Depends(get_role_messaging),
) -> list[TeacherContact]:
    return role_messaging.get_available_teachers(user_id)


@router.get("/student-contacts", response_model=list[Participant])
async def student_contacts(
    profile: dict[str, Any] = Depends(get_current_profile),
    role_messaging: RoleMessaging = Depends(get_role_messaging),
) -> list[Participant]:
    if not isinstance(role_messaging, TeacherMessaging):
        raise HTTPException(status_code=403, detail="Only teachers have student contacts")
    return role_messaging.get_student_contacts(profile["id"])


@router.get("/search-users")
async def search_users(
    q: str = Query(..., min_length=1),
    role: str | None = None,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> list[dict[str, Any]]:
    return messaging.search_users(q, user_id, role)


@router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    page: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> list[dict[str, Any]]:
    _get_conversation_for(conversation_id, user_id, messaging)
    return messaging.get_messages(conversation_id, page=page, limit=limit)


@router.post("/{conversation_id}/messages", status_code=201)
async def send_message(
    conversation_id: str,
    data: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> dict[str, Any]:
    _get_conversation_for(conversation_id, user_id, messaging)
    try:
        return messaging.send_message(
            conversation_id, user_id, data.content, data.message_type, data.attachments, data.reply_to_id
        )
    except TutorHubError as e:
        raise http_error(e)


@router.post("/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> dict[str, int]:
    _get_conversation_for(conversation_id, user_id, messaging)
    return {"marked": messaging.mark_conversation_as_read(conversation_id, user_id)}


@router.get("/{conversation_id}/unread-count")
async def conversation_unread_count(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging_service),
) -> dict[str, int]:
    _get_conversation_for(conversation_id, user_id, messaging)
    return {"unread_count": messaging.get_unread_count(conversation_id, user_id)}
