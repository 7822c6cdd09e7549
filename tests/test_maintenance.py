"""Tests for the periodic maintenance jobs."""

from __future__ import annotations

import asyncio

import pytest

from tests.conftest import future
from tutor_hub.core.notifications import NotificationService
from tutor_hub.core.session_requests import SessionRequestService
from tutor_hub.main import run_periodic


class TestRunPeriodic:
    @pytest.mark.asyncio
    async def test_keeps_running_after_failure_and_stops_on_cancel(self):
        calls = []

        def job():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("store unavailable")
            return len(calls)

        task = asyncio.create_task(run_periodic("test", 0.01, job))
        while len(calls) < 3:
            await asyncio.sleep(0.01)
        task.cancel()
        await task

        assert task.done()
        assert len(calls) >= 3

    @pytest.mark.asyncio
    async def test_expiry_job_refunds(self, mock_db, settings, users):
        service = SessionRequestService(mock_db, NotificationService(mock_db), settings)
        mock_db.insert(
            "session_requests",
            {
                "student_id": users.student,
                "teacher_id": users.teacher,
                "status": "pending",
                "tokens_required": 10,
                "expires_at": future(-1),
            },
        )

        task = asyncio.create_task(run_periodic("expire", 0.01, service.expire_pending_requests))
        while mock_db.rows("session_requests")[0]["status"] == "pending":
            await asyncio.sleep(0.01)
        task.cancel()
        await task

        assert mock_db.select_one("students", {"id": users.student})["tokens"] == 60
