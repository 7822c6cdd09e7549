"""API client for the TutorHub REST API."""

from __future__ import annotations

from typing import Any

import httpx


class TutorClient:
    """HTTP client wrapping the TutorHub API endpoints used by the CLI."""

    def __init__(self, base_url: str = "http://localhost:8400", user_id: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {}
        if user_id:
            headers["X-User-ID"] = user_id
        self._client = httpx.Client(base_url=f"{self.base_url}/api/v1", headers=headers, timeout=30)

    def _handle(self, resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except Exception:
                detail = resp.text
            raise RuntimeError(f"API error ({resp.status_code}): {detail}")
        if resp.status_code == 204:
            return None
        return resp.json()

    # --- Admin ---

    def admin_stats(self) -> dict:
        return self._handle(self._client.get("/admin/stats"))

    def list_users(self, **params: Any) -> list[dict]:
        return self._handle(self._client.get("/admin/users", params=params))

    def get_user(self, user_id: str) -> dict:
        return self._handle(self._client.get(f"/admin/users/{user_id}"))

    def suspend_user(self, user_id: str) -> dict:
        return self._handle(self._client.post(f"/admin/users/{user_id}/suspend"))

    def reactivate_user(self, user_id: str) -> dict:
        return self._handle(self._client.post(f"/admin/users/{user_id}/reactivate"))

    def list_verifications(self) -> list[dict]:
        return self._handle(self._client.get("/admin/verifications"))

    def approve_teacher(self, teacher_id: str) -> dict:
        return self._handle(self._client.post(f"/admin/verifications/{teacher_id}/approve"))

    def reject_teacher(self, teacher_id: str, reason: str) -> dict:
        return self._handle(
            self._client.post(f"/admin/verifications/{teacher_id}/reject", json={"reason": reason})
        )

    def get_settings(self) -> dict:
        return self._handle(self._client.get("/admin/settings"))

    def set_setting(self, key: str, value: Any) -> dict:
        return self._handle(self._client.put(f"/admin/settings/{key}", json={"value": value}))

    def system_health(self) -> dict:
        return self._handle(self._client.get("/admin/health"))

    def expire_requests(self) -> dict:
        return self._handle(self._client.post("/admin/session-requests/expire"))

    # --- Session requests ---

    def list_requests(self, **params: Any) -> list[dict]:
        return self._handle(self._client.get("/session-requests", params=params))

    def accept_request(self, request_id: str, response: str | None = None) -> dict:
        return self._handle(
            self._client.post(f"/session-requests/{request_id}/accept", json={"teacher_response": response})
        )

    def decline_request(self, request_id: str, reason: str | None = None) -> dict:
        return self._handle(
            self._client.post(f"/session-requests/{request_id}/decline", json={"declined_reason": reason})
        )

    # --- Notifications ---

    def list_notifications(self, **params: Any) -> dict:
        return self._handle(self._client.get("/notifications", params=params))

    def mark_all_read(self) -> dict:
        return self._handle(self._client.post("/notifications/read-all"))

    # --- Auth (used by the seed script) ---

    def sign_up(self, data: dict) -> dict:
        return self._handle(self._client.post("/auth/sign-up", json=data))
