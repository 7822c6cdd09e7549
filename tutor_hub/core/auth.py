"""Authentication and per-user sessions.

``AuthService`` wraps Supabase auth and the ``profiles`` row that goes with
each account. ``UserSession`` is everything a signed-in user carries around:
their profile, the messaging implementation picked for their role, a live
notification feed, a lazily opened messaging session and a scratch ``state``
dict. ``SessionRegistry`` keeps at most one session per user.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Any, Awaitable, Callable

import structlog
from pydantic import BaseModel, Field
from supabase import AsyncClient

from tutor_hub.config import Settings, get_settings
from tutor_hub.core.errors import AuthError, NotFoundError
from tutor_hub.core.messaging_session import MessagingSession
from tutor_hub.core.notification_center import NotificationCenter
from tutor_hub.core.notifications import NotificationService
from tutor_hub.core.role_messaging import RoleMessaging, messaging_for_role
from tutor_hub.db.client import SupabaseClient, get_supabase_client
from tutor_hub.db.models import Role
from tutor_hub.db.realtime import RealtimeHub, get_realtime_client
from tutor_hub.utils.timefmt import now_iso

logger = structlog.get_logger()

EMAIL_EXISTS = "An account with this email already exists. Please try signing in instead."
EDITABLE_PROFILE_FIELDS = ("full_name", "avatar_url", "phone", "bio", "location", "timezone", "language")


class SignUpData(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    full_name: str
    role: Role = "student"
    phone: str | None = None
    location: str | None = None
    bio: str | None = None
    timezone: str = "UTC"
    language: str = "en"
    school_name: str | None = None
    interests: list[str] = Field(default_factory=list)


class AuthService:
    """Account operations against Supabase auth plus the profiles table."""

    def __init__(self, db: SupabaseClient, auth: Any = None) -> None:
        self.db = db
        self.auth = auth if auth is not None else db.client.auth

    def sign_up(self, data: SignUpData) -> dict[str, Any]:
        """Register an account; the store's trigger creates the profile rows."""
        if self.db.select_one("profiles", {"email": data.email}, columns="id, email"):
            raise AuthError(EMAIL_EXISTS)

        metadata = data.model_dump(exclude={"email", "password"}, exclude_none=True)
        try:
            response = self.auth.sign_up(
                {"email": data.email, "password": data.password, "options": {"data": metadata}}
            )
        except Exception as e:
            message = str(e)
            if "already registered" in message or "already exists" in message:
                raise AuthError(EMAIL_EXISTS) from e
            logger.error("auth.sign_up_failed", email=data.email, error=message)
            raise AuthError(message or "Sign up failed") from e

        if response.user is None:
            raise AuthError("No user data returned from signup")
        logger.info("auth.signed_up", user_id=response.user.id, role=data.role)
        return {"user_id": response.user.id, "email": data.email, "role": data.role}

    def sign_in(self, email: str, password: str) -> dict[str, Any]:
        try:
            response = self.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            logger.info("auth.sign_in_failed", email=email, error=str(e))
            raise AuthError("Invalid email or password") from e
        if response.user is None:
            raise AuthError("Invalid email or password")

        user = response.user
        self.db.update("profiles", user.id, {"last_login_at": now_iso()})
        profile = self.fetch_profile(user.id, email=user.email, metadata=user.user_metadata or {})
        logger.info("auth.signed_in", user_id=user.id)
        return profile

    def fetch_profile(
        self, user_id: str, email: str | None = None, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Return the user's profile, creating a default one when it is missing."""
        profile = self.db.select_one("profiles", {"id": user_id})
        if profile:
            return profile

        metadata = metadata or {}
        logger.info("auth.profile_created", user_id=user_id)
        return self.db.insert(
            "profiles",
            {
                "id": user_id,
                "email": email or "",
                "full_name": metadata.get("full_name") or "User",
                "role": metadata.get("role") or "student",
                "timezone": "UTC",
                "language": "en",
                "is_verified": False,
                "is_active": True,
            },
        )

    def update_profile(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        data = {k: v for k, v in updates.items() if k in EDITABLE_PROFILE_FIELDS}
        if not data:
            return self.fetch_profile(user_id)
        row = self.db.update("profiles", user_id, {**data, "updated_at": now_iso()})
        if row is None:
            raise NotFoundError(f"Profile '{user_id}' not found")
        return row

    def sign_out(self) -> None:
        try:
            self.auth.sign_out()
        except Exception as e:
            logger.warning("auth.sign_out_failed", error=str(e))


class UserSession:
    """State held for one signed-in user until sign-out."""

    def __init__(
        self,
        profile: dict[str, Any],
        messaging: RoleMessaging,
        notifications: NotificationCenter,
        hub_factory: Callable[[], RealtimeHub],
        settings: Settings,
    ) -> None:
        self.profile = profile
        self.messaging = messaging
        self.notifications = notifications
        self.state: dict[str, Any] = {}
        self._hub_factory = hub_factory
        self._settings = settings
        self._messaging_session: MessagingSession | None = None

    @property
    def user_id(self) -> str:
        return self.profile["id"]

    @property
    def role(self) -> str:
        return self.profile.get("role") or "student"

    async def messaging_session(self) -> MessagingSession:
        if self._messaging_session is None:
            session = MessagingSession(self.user_id, self.messaging.messaging, self._hub_factory(), self._settings)
            await session.start()
            self._messaging_session = session
        return self._messaging_session

    async def close(self) -> None:
        if self._messaging_session is not None:
            await self._messaging_session.close()
            self._messaging_session = None
        await self.notifications.close()
        self.state.clear()


class SessionRegistry:
    """One ``UserSession`` per user id."""

    def __init__(
        self,
        db: SupabaseClient,
        client_factory: Callable[[], Awaitable[AsyncClient]],
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._client_factory = client_factory
        self._sessions: dict[str, UserSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str) -> UserSession | None:
        return self._sessions.get(user_id)

    async def open(self, user_id: str) -> UserSession:
        """Return the user's session, starting one on first use."""
        async with self._lock:
            existing = self._sessions.get(user_id)
            if existing is not None:
                return existing

            profile = self.db.select_one("profiles", {"id": user_id})
            if not profile:
                raise AuthError(f"Unknown user '{user_id}'")
            if not profile.get("is_active", True):
                raise AuthError("Account is suspended")

            client = await self._client_factory()
            notifications = NotificationService(self.db)
            center = NotificationCenter(user_id, notifications, RealtimeHub(client), self.settings)
            await center.start()

            session = UserSession(
                profile,
                messaging_for_role(profile.get("role") or "student", self.db, notifications, self.settings),
                center,
                lambda: RealtimeHub(client),
                self.settings,
            )
            self._sessions[user_id] = session
            logger.info("session.opened", user_id=user_id, role=session.role)
            return session

    async def close(self, user_id: str) -> bool:
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("session.closed", user_id=user_id)
        return True

    async def close_all(self) -> None:
        for user_id in list(self._sessions):
            await self.close(user_id)


@lru_cache
def get_auth_service() -> AuthService:
    """Get cached auth service instance."""
    return AuthService(get_supabase_client())


@lru_cache
def get_session_registry() -> SessionRegistry:
    """Get the process-wide session registry."""
    return SessionRegistry(get_supabase_client(), get_realtime_client)
