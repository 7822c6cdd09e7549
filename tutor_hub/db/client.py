"""Supabase client initialization and helper methods."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Iterable

import structlog
from postgrest.exceptions import APIError
from supabase import Client, create_client

from tutor_hub.config import get_settings

logger = structlog.get_logger()

UNIQUE_VIOLATION = "23505"

Filters = dict[str, Any]


class DuplicateKeyError(Exception):
    """An insert collided with a unique constraint on the store."""

    def __init__(self, table: str, detail: str = "") -> None:
        super().__init__(f"Duplicate key in {table}: {detail}".rstrip(": "))
        self.table = table


def _apply_filters(
    query: Any,
    filters: Filters | None = None,
    neq: Filters | None = None,
    contains: Filters | None = None,
    in_: dict[str, list[Any]] | None = None,
    gte: Filters | None = None,
    gt: Filters | None = None,
    lt: Filters | None = None,
    or_: str | None = None,
) -> Any:
    for key, value in (filters or {}).items():
        query = query.is_(key, "null") if value is None else query.eq(key, value)
    for key, value in (neq or {}).items():
        query = query.neq(key, value)
    for key, value in (contains or {}).items():
        query = query.contains(key, value)
    for key, values in (in_ or {}).items():
        query = query.in_(key, values)
    for key, value in (gte or {}).items():
        query = query.gte(key, value)
    for key, value in (gt or {}).items():
        query = query.gt(key, value)
    for key, value in (lt or {}).items():
        query = query.lt(key, value)
    if or_:
        query = query.or_(or_)
    return query


def quote(value: Any) -> str:
    """Double-quote a value for an ``or_`` filter so commas, dots and colons stay literal."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def ilike_any(columns: Iterable[str], text: str) -> str:
    """``or_`` filter matching rows where any of ``columns`` contains ``text``, ignoring case."""
    pattern = quote(f"*{text}*")
    return ",".join(f"{column}.ilike.{pattern}" for column in columns)


class SupabaseClient:
    """Wrapper around the Supabase client with convenience methods.

    Filter keyword arguments map one-to-one onto PostgREST operators:
    ``filters`` is equality (``None`` means ``IS NULL``), ``contains`` is array
    containment, ``in_`` is set membership, and ``neq``/``gte``/``gt``/``lt``
    are comparisons. ``or_`` is a raw PostgREST logic tree such as
    ``"expires_at.is.null,expires_at.gt.<ts>"``; build values with ``quote``.
    """

    def __init__(self, client: Client) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    def insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return the created row."""
        try:
            result = self._client.table(table).insert(data).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateKeyError(table, e.message or "") from e
            raise
        return result.data[0]

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert several records in one round trip."""
        if not rows:
            return []
        result = self._client.table(table).insert(rows).execute()
        return result.data

    def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        *,
        columns: str = "*",
        offset: int = 0,
        neq: Filters | None = None,
        contains: Filters | None = None,
        in_: dict[str, list[Any]] | None = None,
        gte: Filters | None = None,
        gt: Filters | None = None,
        lt: Filters | None = None,
        or_: str | None = None,
    ) -> list[dict[str, Any]]:
        """Select records with optional filters, ordering, and pagination."""
        query = self._client.table(table).select(columns)
        query = _apply_filters(query, filters, neq, contains, in_, gte, gt, lt, or_)

        if order_by:
            query = query.order(order_by, desc=not ascending)

        if limit:
            query = query.range(offset, offset + limit - 1)

        result = query.execute()
        return result.data

    def select_one(self, table: str, filters: Filters, columns: str = "*") -> dict[str, Any] | None:
        """Return the first row matching ``filters`` or None."""
        rows = self.select(table, filters=filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def count(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        neq: Filters | None = None,
        in_: dict[str, list[Any]] | None = None,
        gte: Filters | None = None,
        gt: Filters | None = None,
        lt: Filters | None = None,
        or_: str | None = None,
    ) -> int:
        """Exact row count for the filtered table."""
        query = self._client.table(table).select("id", count="exact")
        query = _apply_filters(query, filters, neq, None, in_, gte, gt, lt, or_)
        result = query.limit(1).execute()
        return result.count or 0

    def update(self, table: str, id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        """Update a record by ID. Returns None when no row matched."""
        result = self._client.table(table).update(data).eq("id", id).execute()
        return result.data[0] if result.data else None

    def update_where(
        self, table: str, data: dict[str, Any], filters: Filters
    ) -> list[dict[str, Any]]:
        """Update every row matching ``filters`` and return the updated rows.

        Including the previous value of a column in ``filters`` turns this into
        a compare-and-set: an empty result means the row changed underneath.
        """
        query = _apply_filters(self._client.table(table).update(data), filters)
        result = query.execute()
        return result.data

    def upsert(
        self,
        table: str,
        data: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> list[dict[str, Any]]:
        """Insert or update on the given conflict target."""
        result = (
            self._client.table(table)
            .upsert(data, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates)
            .execute()
        )
        return result.data

    def delete(self, table: str, id: str) -> None:
        """Delete a record by ID."""
        self._client.table(table).delete().eq("id", id).execute()

    def delete_where(self, table: str, filters: Filters | None = None, lt: Filters | None = None) -> int:
        """Delete rows matching the filters. Returns the number removed."""
        query = _apply_filters(self._client.table(table).delete(), filters, lt=lt)
        result = query.execute()
        return len(result.data or [])


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get cached Supabase client instance."""
    settings = get_settings()
    key = settings.supabase_service_key or settings.supabase_key
    client = create_client(settings.supabase_url, key)
    logger.info("supabase.connected", url=settings.supabase_url)
    return SupabaseClient(client)
