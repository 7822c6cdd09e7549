"""Tests for account, directory and service endpoints."""

from __future__ import annotations

from tests.conftest import as_user


def _sign_up(client, email="newbie@example.com", role="student"):
    return client.post(
        "/api/v1/auth/sign-up",
        json={"email": email, "password": "secret123", "full_name": "New Bie", "role": role},
    )


class TestAccounts:
    def test_sign_up(self, client, mock_db):
        resp = _sign_up(client)
        assert resp.status_code == 201
        assert mock_db.select_one("profiles", {"id": resp.json()["user_id"]})["full_name"] == "New Bie"

    def test_sign_up_duplicate(self, client):
        _sign_up(client)
        assert _sign_up(client).status_code == 409

    def test_sign_in(self, client):
        user_id = _sign_up(client).json()["user_id"]
        resp = client.post("/api/v1/auth/sign-in", json={"email": "newbie@example.com", "password": "secret123"})
        assert resp.status_code == 200
        assert resp.json()["id"] == user_id

    def test_sign_in_bad_password(self, client):
        _sign_up(client)
        resp = client.post("/api/v1/auth/sign-in", json={"email": "newbie@example.com", "password": "nope"})
        assert resp.status_code == 401

    def test_me(self, client, users):
        resp = client.get("/api/v1/auth/me", headers=as_user(users.student))
        assert resp.json()["full_name"] == "Sam Student"
        assert client.get("/api/v1/auth/me", headers=as_user("ghost")).status_code == 401

    def test_update_me(self, client, users):
        resp = client.patch("/api/v1/auth/me", json={"bio": "Physics nerd"}, headers=as_user(users.student))
        assert resp.json()["bio"] == "Physics nerd"

    def test_sign_out(self, client, mock_db, users):
        resp = client.post("/api/v1/auth/sign-out", headers=as_user(users.student))
        assert resp.status_code == 204
        assert mock_db.client.auth.signed_out


class TestDirectory:
    def test_browse(self, client, users):
        resp = client.get("/api/v1/teachers?subject=Physics", headers=as_user(users.student))
        body = resp.json()
        assert body["total_count"] == 1
        assert body["teachers"][0]["id"] == users.other_teacher

    def test_profiles(self, client, users):
        headers = as_user(users.parent)
        assert client.get(f"/api/v1/teachers/{users.teacher}", headers=headers).json()["hourly_rate"] == 40
        assert client.get(f"/api/v1/students/{users.student}", headers=headers).json()["tokens"] == 50
        assert client.get(f"/api/v1/teachers/{users.student}", headers=headers).status_code == 404


class TestService:
    def test_root(self, client):
        assert client.get("/").json()["service"] == "tutorhub"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
