"""Main API router — aggregates all endpoint modules."""

from fastapi import APIRouter

from tutor_hub.api.admin import router as admin_router
from tutor_hub.api.auth import router as auth_router
from tutor_hub.api.conversations import router as conversations_router
from tutor_hub.api.messages import router as messages_router
from tutor_hub.api.notifications import router as notifications_router
from tutor_hub.api.session_requests import router as session_requests_router
from tutor_hub.api.teachers import router as teachers_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(conversations_router, prefix="/conversations", tags=["conversations"])
api_router.include_router(messages_router, prefix="/messages", tags=["messages"])
api_router.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
api_router.include_router(
    session_requests_router, prefix="/session-requests", tags=["session-requests"]
)
api_router.include_router(teachers_router, tags=["directory"])
api_router.include_router(admin_router, prefix="/admin", tags=["admin"])
