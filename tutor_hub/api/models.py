"""Pydantic request/response models for the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# --- Auth ---


class SignInRequest(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    full_name: str | None = None
    avatar_url: str | None = None
    phone: str | None = None
    bio: str | None = None
    location: str | None = None
    timezone: str | None = None
    language: str | None = None


# --- Conversations and messages ---


class ConversationCreate(BaseModel):
    """Create a conversation; the caller is always added as a participant."""

    participants: list[str] = Field(..., min_length=1)
    type: str = Field("group", pattern=r"^(direct|group|class)$")
    title: str | None = None
    class_id: str | None = None


class DirectConversationRequest(BaseModel):
    other_user_id: str


class MessageCreate(BaseModel):
    content: str = Field(..., max_length=10000)
    message_type: str = Field("text", pattern=r"^(text|image|file|assignment|system)$")
    attachments: list[Any] = Field(default_factory=list)
    reply_to_id: str | None = None


class MessageUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class MarkReadRequest(BaseModel):
    message_ids: list[str]


# --- Session requests ---


class SessionRequestCreate(BaseModel):
    """Student callers request for themselves; parent callers name the child."""

    teacher_id: str
    requested_start: datetime
    requested_end: datetime
    duration_hours: float | None = Field(None, gt=0)
    message: str | None = None
    student_id: str | None = None


class AcceptRequest(BaseModel):
    teacher_response: str | None = None


class DeclineRequest(BaseModel):
    declined_reason: str | None = None
    teacher_response: str | None = None


# --- Notifications ---


class NotificationListResponse(BaseModel):
    notifications: list[dict[str, Any]]
    total: int
    unread_count: int


class PreferencesUpdate(BaseModel):
    email_notifications: bool | None = None
    sms_notifications: bool | None = None
    push_notifications: bool | None = None
    marketing_emails: bool | None = None


class BulkNotificationRequest(BaseModel):
    user_ids: list[str] = Field(..., min_length=1)
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    priority: str = Field("normal", pattern=r"^(low|normal|high|urgent)$")


# --- Admin ---


class RejectVerificationRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class SettingUpdate(BaseModel):
    value: Any


class SettingsUpdate(BaseModel):
    settings: dict[str, Any]
