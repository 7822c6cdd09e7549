"""TutorHub API service: routers, websockets and the periodic maintenance jobs."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Callable

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tutor_hub.api.router import api_router
from tutor_hub.api.ws import router as ws_router
from tutor_hub.config import get_settings
from tutor_hub.core.auth import get_session_registry
from tutor_hub.core.notifications import get_notification_service
from tutor_hub.core.session_requests import get_session_request_service
from tutor_hub.db.client import get_supabase_client
from tutor_hub.db.realtime import get_realtime_client
from tutor_hub.utils.logging import setup_logging

VERSION = "0.1.0"

logger = structlog.get_logger()


async def run_periodic(name: str, interval: float, job: Callable[[], object]) -> None:
    """Run ``job`` every ``interval`` seconds until cancelled; failures are logged and retried next tick."""
    while True:
        try:
            await asyncio.sleep(interval)
            result = job()
            logger.debug("maintenance.tick", job=name, result=result)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning("maintenance.job_failed", job=name, error=str(e))


def expire_session_requests() -> int:
    return get_session_request_service().expire_pending_requests()


def cleanup_notifications() -> int:
    return get_notification_service().cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("tutorhub.starting", port=settings.port)

    get_supabase_client()
    try:
        await get_realtime_client()
    except Exception as e:
        # HTTP routes still work; only the websockets need realtime
        logger.warning("tutorhub.realtime_unavailable", error=str(e))

    tasks = [
        asyncio.create_task(
            run_periodic("expire_session_requests", settings.expiry_sweep_seconds, expire_session_requests)
        ),
        asyncio.create_task(
            run_periodic("cleanup_notifications", settings.notification_cleanup_seconds, cleanup_notifications)
        ),
    ]

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    await get_session_registry().close_all()
    logger.info("tutorhub.shutdown")


app = FastAPI(
    title="TutorHub",
    description="Messaging, notifications and session requests for the tutoring marketplace",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")
app.include_router(ws_router)


@app.get("/")
async def root():
    return {"service": "tutorhub", "version": VERSION}


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "healthy", "service": "tutorhub", "version": VERSION}
