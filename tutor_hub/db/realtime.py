"""Realtime channel registry over the Supabase async client.

Each ``RealtimeHub`` owns the channels opened through it, keyed by channel
name (``messages:<conversation>``, ``typing:<conversation>``,
``notifications:<user>``...). Subscribing to a key that is already open
replaces the old channel, so at most one listener per key is live.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog
from supabase import AsyncClient, acreate_client

from tutor_hub.config import get_settings

logger = structlog.get_logger()

ChangeHandler = Callable[[dict[str, Any]], None]
PresenceHandler = Callable[[dict[str, list[dict[str, Any]]]], None]


def extract_record(payload: dict[str, Any]) -> dict[str, Any]:
    """Pull the changed row out of a postgres_changes payload."""
    data = payload.get("data", payload)
    for key in ("record", "new"):
        value = data.get(key)
        if isinstance(value, dict):
            return value
    return {}


class RealtimeHub:
    """Keyed registry of realtime channels for one user session."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client
        self._channels: dict[str, Any] = {}

    @property
    def keys(self) -> list[str]:
        return list(self._channels)

    def has(self, key: str) -> bool:
        return key in self._channels

    async def subscribe_changes(
        self,
        key: str,
        table: str,
        filter: str | None,
        handlers: dict[str, ChangeHandler],
    ) -> Any:
        """Open ``key`` and route INSERT/UPDATE/DELETE rows to ``handlers``."""
        await self.unsubscribe(key)

        channel = self._client.channel(key)
        for event, handler in handlers.items():
            channel.on_postgres_changes(
                event,
                callback=self._guard(key, event, handler),
                table=table,
                schema="public",
                filter=filter,
            )
        await channel.subscribe()
        self._channels[key] = channel
        logger.debug("realtime.subscribed", channel=key, table=table, events=list(handlers))
        return channel

    async def subscribe_presence(self, key: str, on_sync: PresenceHandler) -> Any:
        """Open a presence channel; ``on_sync`` receives the full presence state."""
        await self.unsubscribe(key)

        channel = self._client.channel(key)

        def handle_sync() -> None:
            try:
                on_sync(channel.presence_state())
            except Exception as e:
                logger.warning("realtime.presence_handler_error", channel=key, error=str(e))

        channel.on_presence_sync(handle_sync)
        await channel.subscribe()
        self._channels[key] = channel
        logger.debug("realtime.presence_subscribed", channel=key)
        return channel

    async def track(self, key: str, payload: dict[str, Any]) -> bool:
        """Publish presence state on an open channel."""
        channel = self._channels.get(key)
        if channel is None:
            return False
        await channel.track(payload)
        return True

    async def unsubscribe(self, key: str) -> None:
        channel = self._channels.pop(key, None)
        if channel is not None:
            await self._client.remove_channel(channel)
            logger.debug("realtime.unsubscribed", channel=key)

    async def close(self) -> None:
        """Remove every channel opened through this hub."""
        for key in list(self._channels):
            await self.unsubscribe(key)

    @staticmethod
    def _guard(key: str, event: str, handler: ChangeHandler) -> Callable[[dict[str, Any]], None]:
        def callback(payload: dict[str, Any]) -> None:
            try:
                handler(extract_record(payload))
            except Exception as e:
                logger.warning("realtime.handler_error", channel=key, event=event, error=str(e))

        return callback


_async_client: AsyncClient | None = None


async def get_realtime_client() -> AsyncClient:
    """Get the shared async Supabase client used for realtime (lazy init)."""
    global _async_client
    if _async_client is None:
        settings = get_settings()
        _async_client = await acreate_client(settings.supabase_url, settings.supabase_key)
        logger.info("supabase.realtime_connected", url=settings.supabase_url)
    return _async_client
