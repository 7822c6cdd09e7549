"""Test fixtures — mock Supabase client, fake realtime transport and seeded users."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from tutor_hub.config import Settings
from tutor_hub.db.client import DuplicateKeyError, SupabaseClient


# Column defaults the store applies on insert.
COLUMN_DEFAULTS: dict[str, dict[str, Any]] = {
    "system_settings": {"is_public": False},
}


def _matches(
    row: dict[str, Any],
    filters: dict[str, Any] | None = None,
    neq: dict[str, Any] | None = None,
    contains: dict[str, Any] | None = None,
    in_: dict[str, list[Any]] | None = None,
    gte: dict[str, Any] | None = None,
    gt: dict[str, Any] | None = None,
    lt: dict[str, Any] | None = None,
) -> bool:
    for key, value in (filters or {}).items():
        if value is None:
            if row.get(key) is not None:
                return False
        elif row.get(key) != value:
            return False
    for key, value in (neq or {}).items():
        if row.get(key) == value:
            return False
    for key, value in (contains or {}).items():
        if not all(item in (row.get(key) or []) for item in value):
            return False
    for key, values in (in_ or {}).items():
        if row.get(key) not in values:
            return False
    # NULL never satisfies a comparison, as in Postgres.
    for key, value in (gte or {}).items():
        if row.get(key) is None or not row[key] >= value:
            return False
    for key, value in (gt or {}).items():
        if row.get(key) is None or not row[key] > value:
            return False
    for key, value in (lt or {}).items():
        if row.get(key) is None or not row[key] < value:
            return False
    return True


_OR_TERM = re.compile(r'(\w+)\.(\w+)\.("(?:[^"\\]|\\.)*"|[^,]*)')


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def _ilike(actual: Any, pattern: str) -> bool:
    regex = ".*".join(re.escape(part) for part in re.split(r"[*%]", pattern))
    return re.fullmatch(regex, str(actual), re.IGNORECASE | re.DOTALL) is not None


# Timestamps are ISO strings in UTC, so text order is time order.
_OR_OPS: dict[str, Callable[[Any, str], bool]] = {
    "eq": lambda actual, value: str(actual) == value,
    "neq": lambda actual, value: str(actual) != value,
    "gt": lambda actual, value: str(actual) > value,
    "gte": lambda actual, value: str(actual) >= value,
    "lt": lambda actual, value: str(actual) < value,
    "lte": lambda actual, value: str(actual) <= value,
    "ilike": _ilike,
}


def _matches_or(row: dict[str, Any], or_: str | None) -> bool:
    """Evaluate a flat PostgREST ``or`` logic tree against one row."""
    if not or_:
        return True
    for column, op, raw in _OR_TERM.findall(or_):
        value, actual = _unquote(raw), row.get(column)
        if op == "is":
            if value == "null" and actual is None:
                return True
        elif actual is not None and _OR_OPS[op](actual, value):
            return True
    return False


class FakeAuth:
    """Stands in for ``supabase.auth``; sign-up also creates the profile like the store trigger."""

    def __init__(self, db: "MockSupabaseClient") -> None:
        self.db = db
        self.users: dict[str, tuple[SimpleNamespace, str]] = {}
        self.signed_out = False

    def sign_up(self, credentials: dict[str, Any]) -> SimpleNamespace:
        email = credentials["email"]
        if email in self.users:
            raise Exception("User already registered")
        metadata = credentials.get("options", {}).get("data", {})
        user = SimpleNamespace(id=str(uuid4()), email=email, user_metadata=metadata)
        self.users[email] = (user, credentials["password"])
        self.db.insert(
            "profiles",
            {
                "id": user.id,
                "email": email,
                "full_name": metadata.get("full_name", ""),
                "role": metadata.get("role", "student"),
                "is_active": True,
                "is_verified": False,
            },
        )
        return SimpleNamespace(user=user, session=None)

    def sign_in_with_password(self, credentials: dict[str, Any]) -> SimpleNamespace:
        entry = self.users.get(credentials["email"])
        if entry is None or entry[1] != credentials["password"]:
            raise Exception("Invalid login credentials")
        return SimpleNamespace(user=entry[0], session=SimpleNamespace(access_token="token"))

    def sign_out(self) -> None:
        self.signed_out = True


class MockSupabaseClient(SupabaseClient):
    """In-memory mock of the Supabase client for testing."""

    def __init__(self):
        self._tables: dict[str, list[dict[str, Any]]] = {
            "profiles": [],
            "students": [],
            "teachers": [],
            "conversations": [],
            "messages": [],
            "message_reads": [],
            "notifications": [],
            "session_requests": [],
            "token_transactions": [],
            "teacher_preferences": [],
            "system_settings": [],
            "class_sessions": [],
            "platform_earnings": [],
            "withdrawal_requests": [],
            "reviews": [],
        }
        self._auth = FakeAuth(self)
        self._failures: set[tuple[str, str]] = set()
        self._clock = datetime.now(timezone.utc)

    @property
    def client(self):
        return SimpleNamespace(auth=self._auth)

    def fail(self, operation: str, table: str) -> None:
        """Make ``operation`` on ``table`` raise from now on."""
        self._failures.add((operation, table))

    def _check(self, operation: str, table: str) -> None:
        if (operation, table) in self._failures:
            raise RuntimeError(f"simulated {operation} failure on {table}")

    def _now(self) -> str:
        # Strictly increasing so ordering by created_at is deterministic.
        self._clock = max(datetime.now(timezone.utc), self._clock + timedelta(microseconds=1))
        return self._clock.isoformat()

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self._tables.setdefault(table, [])

    def insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        self._check("insert", table)
        if table == "conversations" and data.get("type") == "direct" and data.get("participant_key"):
            if any(
                r.get("type") == "direct" and r.get("participant_key") == data["participant_key"]
                for r in self.rows(table)
            ):
                raise DuplicateKeyError(table, "participant_key")
        stamp = self._now()
        record = {
            "id": str(uuid4()),
            "created_at": stamp,
            "updated_at": stamp,
            **COLUMN_DEFAULTS.get(table, {}),
            **data,
        }
        self.rows(table).append(record)
        return dict(record)

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self._check("insert", table)
        return [self.insert(table, row) for row in rows]

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        *,
        columns: str = "*",
        offset: int = 0,
        neq: dict[str, Any] | None = None,
        contains: dict[str, Any] | None = None,
        in_: dict[str, list[Any]] | None = None,
        gte: dict[str, Any] | None = None,
        gt: dict[str, Any] | None = None,
        lt: dict[str, Any] | None = None,
        or_: str | None = None,
    ) -> list[dict[str, Any]]:
        self._check("select", table)
        rows = [
            r
            for r in self.rows(table)
            if _matches(r, filters, neq, contains, in_, gte, gt, lt) and _matches_or(r, or_)
        ]
        if order_by:
            rows = sorted(rows, key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=not ascending)
        if limit:
            rows = rows[offset : offset + limit]
        return [dict(r) for r in rows]

    def count(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        neq: dict[str, Any] | None = None,
        in_: dict[str, list[Any]] | None = None,
        gte: dict[str, Any] | None = None,
        gt: dict[str, Any] | None = None,
        lt: dict[str, Any] | None = None,
        or_: str | None = None,
    ) -> int:
        self._check("select", table)
        return sum(
            1 for r in self.rows(table) if _matches(r, filters, neq, None, in_, gte, gt, lt) and _matches_or(r, or_)
        )

    def update(self, table: str, id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        self._check("update", table)
        for row in self.rows(table):
            if row["id"] == id:
                row.update(data)
                return dict(row)
        return None

    def update_where(self, table: str, data: dict[str, Any], filters: dict[str, Any]) -> list[dict[str, Any]]:
        self._check("update", table)
        updated = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(data)
                updated.append(dict(row))
        return updated

    def upsert(
        self,
        table: str,
        data: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> list[dict[str, Any]]:
        self._check("upsert", table)
        keys = [k.strip() for k in on_conflict.split(",")]
        result = []
        for item in data if isinstance(data, list) else [data]:
            existing = next(
                (r for r in self.rows(table) if all(r.get(k) == item.get(k) for k in keys)), None
            )
            if existing is None:
                result.append(self.insert(table, item))
            elif not ignore_duplicates:
                existing.update(item)
                result.append(dict(existing))
        return result

    def delete(self, table: str, id: str) -> None:
        self._check("delete", table)
        self._tables[table] = [r for r in self.rows(table) if r["id"] != id]

    def delete_where(self, table: str, filters: dict[str, Any] | None = None, lt: dict[str, Any] | None = None) -> int:
        self._check("delete", table)
        before = len(self.rows(table))
        self._tables[table] = [r for r in self.rows(table) if not _matches(r, filters, lt=lt)]
        return before - len(self._tables[table])

    def reset(self):
        for table in self._tables:
            self._tables[table] = []


class FakeChannel:
    """Records subscriptions and lets tests push realtime events."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.changes: list[tuple[str, Callable, str, str | None]] = []
        self.sync_callbacks: list[Callable[[], None]] = []
        self.presence: dict[str, list[dict[str, Any]]] = {}
        self.tracked: list[dict[str, Any]] = []
        self.subscribed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.changes.append((event, callback, table, filter))
        return self

    def on_presence_sync(self, callback):
        self.sync_callbacks.append(callback)
        return self

    def presence_state(self) -> dict[str, list[dict[str, Any]]]:
        return self.presence

    async def track(self, payload: dict[str, Any]) -> None:
        self.tracked.append(payload)

    async def subscribe(self):
        self.subscribed = True
        return self

    def emit(self, event: str, record: dict[str, Any]) -> None:
        for registered, callback, _table, _filter in self.changes:
            if registered == event:
                callback({"data": {"type": event, "record": record}})

    def sync(self, state: dict[str, list[dict[str, Any]]]) -> None:
        self.presence = state
        for callback in self.sync_callbacks:
            callback()


class FakeRealtimeClient:
    """Stands in for the async Supabase client's channel API."""

    def __init__(self) -> None:
        self.channels: dict[str, FakeChannel] = {}
        self.removed: list[str] = []

    def channel(self, name: str) -> FakeChannel:
        channel = FakeChannel(name)
        self.channels[name] = channel
        return channel

    async def remove_channel(self, channel: FakeChannel) -> None:
        channel.subscribed = False
        self.removed.append(channel.name)

    def open(self) -> list[str]:
        return [name for name, ch in self.channels.items() if ch.subscribed]


# --- Seed helpers ---


def add_user(db: MockSupabaseClient, role: str, name: str, **profile: Any) -> str:
    user_id = profile.pop("id", None) or str(uuid4())
    db.insert(
        "profiles",
        {
            "id": user_id,
            "email": f"{name.split()[0].lower()}@example.com",
            "full_name": name,
            "role": role,
            "is_active": True,
            "is_verified": False,
            **profile,
        },
    )
    return user_id


def add_student(db: MockSupabaseClient, name: str, tokens: int = 50, parent_id: str | None = None) -> str:
    student_id = add_user(db, "student", name)
    db.insert("students", {"id": student_id, "tokens": tokens, "parent_id": parent_id, "interests": []})
    return student_id


def add_teacher(db: MockSupabaseClient, name: str, **teacher: Any) -> str:
    teacher_id = add_user(db, "teacher", name)
    db.insert(
        "teachers",
        {
            "id": teacher_id,
            "hourly_rate": 40,
            "currency": "USD",
            "subjects": ["Mathematics"],
            "rating": 4.5,
            "total_reviews": 12,
            "is_available": True,
            "verification_status": "verified",
            **teacher,
        },
    )
    return teacher_id


def future(hours: float = 24) -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()


@pytest.fixture
def mock_db() -> MockSupabaseClient:
    """Fresh mock database for each test."""
    return MockSupabaseClient()


@pytest.fixture
def realtime() -> FakeRealtimeClient:
    return FakeRealtimeClient()


@pytest.fixture
def settings() -> Settings:
    return Settings(typing_idle_seconds=0.05, notification_refresh_seconds=3600, message_page_size=50)


@pytest.fixture
def users(mock_db) -> SimpleNamespace:
    """A small marketplace: two teachers, a parent with a child, a broke student and an admin."""
    parent = add_user(mock_db, "parent", "Pat Parent")
    return SimpleNamespace(
        parent=parent,
        student=add_student(mock_db, "Sam Student", tokens=50, parent_id=parent),
        poor_student=add_student(mock_db, "Polly Poor", tokens=5),
        teacher=add_teacher(mock_db, "Grace Numbers"),
        other_teacher=add_teacher(mock_db, "Niels Quantum", subjects=["Physics"], rating=4.9, hourly_rate=60),
        admin=add_user(mock_db, "admin", "Ada Admin"),
    )


@pytest.fixture
def app(mock_db, realtime, settings):
    """FastAPI test app with mocked dependencies."""
    from tutor_hub.core.admin import AdminService, get_admin_service
    from tutor_hub.core.auth import AuthService, SessionRegistry, get_auth_service, get_session_registry
    from tutor_hub.core.messaging import MessagingService, get_messaging_service
    from tutor_hub.core.notifications import NotificationService, get_notification_service
    from tutor_hub.core.session_requests import SessionRequestService, get_session_request_service
    from tutor_hub.core.teachers import TeacherDirectory, get_teacher_directory
    from tutor_hub.db.client import get_supabase_client
    from tutor_hub.main import app as _app

    notifications = NotificationService(mock_db)
    messaging = MessagingService(mock_db, notifications)
    requests = SessionRequestService(mock_db, notifications, settings)
    admin = AdminService(mock_db, notifications)
    directory = TeacherDirectory(mock_db)
    auth = AuthService(mock_db)

    async def realtime_factory():
        return realtime

    registry = SessionRegistry(mock_db, realtime_factory, settings)

    _app.dependency_overrides[get_supabase_client] = lambda: mock_db
    _app.dependency_overrides[get_notification_service] = lambda: notifications
    _app.dependency_overrides[get_messaging_service] = lambda: messaging
    _app.dependency_overrides[get_session_request_service] = lambda: requests
    _app.dependency_overrides[get_admin_service] = lambda: admin
    _app.dependency_overrides[get_teacher_directory] = lambda: directory
    _app.dependency_overrides[get_auth_service] = lambda: auth
    _app.dependency_overrides[get_session_registry] = lambda: registry

    yield _app

    _app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    """HTTP test client."""
    return TestClient(app)


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-ID": user_id}
