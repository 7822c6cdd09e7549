"""TutorHub settings — environment, .env file and Docker Swarm secrets."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

SECRETS_DIR = Path("/run/secrets")

# Secret file name -> settings field / un-prefixed env fallback
SECRET_FIELDS = {
    "supabase_url": "SUPABASE_URL",
    "supabase_key": "SUPABASE_KEY",
    "supabase_service_key": "SUPABASE_SERVICE_KEY",
}


def _read_secret(name: str) -> str | None:
    path = SECRETS_DIR / name
    if path.is_file():
        return path.read_text().strip() or None
    return None


class Settings(BaseSettings):
    """Runtime configuration. Env vars use the ``TUTOR_`` prefix."""

    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""
    port: int = 8400
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    # Session requests
    session_request_tokens: int = 10
    session_request_expiry_days: int = 7

    # Messaging
    message_page_size: int = 50
    typing_idle_seconds: float = 3.0

    # Notifications
    notification_refresh_seconds: float = 30.0

    # Background sweeps
    expiry_sweep_seconds: float = 3600
    notification_cleanup_seconds: float = 3600

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "TUTOR_"}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # A mounted secret wins; the plain SUPABASE_* env vars fill anything still empty
        for field, env_var in SECRET_FIELDS.items():
            if secret := _read_secret(field):
                setattr(self, field, secret)
            elif not getattr(self, field):
                setattr(self, field, os.getenv(env_var, ""))


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
