"""WebSocket endpoints — live notifications and a live conversation view.

Both sockets identify the caller with a ``user_id`` query parameter and reuse
the caller's ``UserSession``; disconnecting a socket does not sign the user
out. Clients send JSON commands (``{"type": ...}``) and receive JSON events.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from tutor_hub.core.auth import SessionRegistry, UserSession, get_session_registry
from tutor_hub.core.errors import AuthError

logger = structlog.get_logger()

router = APIRouter()

UNAUTHORIZED = 4401
FORBIDDEN = 4403

Command = Callable[[dict[str, Any]], Awaitable[None]]


async def _open_session(websocket: WebSocket, user_id: str, registry: SessionRegistry) -> UserSession | None:
    try:
        return await registry.open(user_id)
    except AuthError as e:
        await websocket.close(code=UNAUTHORIZED, reason=str(e))
        return None


async def _pump(websocket: WebSocket, queue: asyncio.Queue, handle: Command) -> None:
    """Forward queued events out and client commands in until either side stops."""

    async def send_loop() -> None:
        while True:
            await websocket.send_json(await queue.get())

    async def receive_loop() -> None:
        while True:
            command = await websocket.receive_json()
            try:
                await handle(command)
            except Exception as e:
                logger.warning("ws.command_failed", command=command.get("type"), error=str(e))
                await websocket.send_json({"type": "error", "message": str(e)})

    tasks = [asyncio.create_task(send_loop()), asyncio.create_task(receive_loop())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    finally:
        for task in tasks:
            task.cancel()


@router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    user_id: str = Query(...),
    registry: SessionRegistry = Depends(get_session_registry),
) -> None:
    await websocket.accept()
    session = await _open_session(websocket, user_id, registry)
    if session is None:
        return
    center = session.notifications

    queue: asyncio.Queue = asyncio.Queue()

    def on_notification(notification: dict[str, Any]) -> None:
        queue.put_nowait(
            {"type": "notification", "notification": notification, "unread_count": center.unread_count}
        )

    async def handle(command: dict[str, Any]) -> None:
        kind = command.get("type")
        if kind == "mark_read":
            center.mark_as_read(command["id"])
        elif kind == "mark_all_read":
            center.mark_all_as_read()
        elif kind == "delete":
            center.delete(command["id"])
        elif kind == "push_permission":
            center.request_push_permission(bool(command.get("granted")))
        elif kind == "refresh":
            center.refresh()
        else:
            await websocket.send_json({"type": "error", "message": "Unknown command"})
            return
        await websocket.send_json({"type": "unread_count", "unread_count": center.unread_count})

    center.add_listener(on_notification)
    try:
        await websocket.send_json(
            {"type": "snapshot", "notifications": center.notifications, "unread_count": center.unread_count}
        )
        await _pump(websocket, queue, handle)
    except WebSocketDisconnect:
        pass
    finally:
        center.remove_listener(on_notification)
        logger.debug("ws.notifications_disconnected", user_id=user_id)


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_socket(
    websocket: WebSocket,
    conversation_id: str,
    user_id: str = Query(...),
    registry: SessionRegistry = Depends(get_session_registry),
) -> None:
    await websocket.accept()
    session = await _open_session(websocket, user_id, registry)
    if session is None:
        return

    conversation = session.messaging.db.select_one("conversations", {"id": conversation_id})
    if not conversation or user_id not in conversation["participants"]:
        await websocket.close(code=FORBIDDEN, reason="Not a participant in this conversation")
        return

    live = await session.messaging_session()
    await live.select_conversation(conversation)

    queue: asyncio.Queue = asyncio.Queue()

    def on_change(event: str, payload: Any) -> None:
        if event in ("message", "message_updated", "message_deleted", "typing"):
            queue.put_nowait({"type": event, "data": payload})

    async def handle(command: dict[str, Any]) -> None:
        kind = command.get("type")
        if kind == "send":
            message = await live.send_message(
                command.get("content", ""),
                command.get("message_type", "text"),
                command.get("attachments"),
                command.get("reply_to_id"),
            )
            if message is None and live.error:
                await websocket.send_json({"type": "error", "message": live.error})
        elif kind == "typing":
            await live.start_typing()
        elif kind == "stop_typing":
            await live.stop_typing()
        elif kind == "read":
            live.mark_as_read()
        elif kind == "load_more":
            older = live.load_more_messages()
            await websocket.send_json(
                {"type": "history", "messages": older, "has_more": live.has_more_messages}
            )
        else:
            await websocket.send_json({"type": "error", "message": "Unknown command"})

    live.add_listener(on_change)
    try:
        await websocket.send_json(
            {"type": "history", "messages": live.messages, "has_more": live.has_more_messages}
        )
        await _pump(websocket, queue, handle)
    except WebSocketDisconnect:
        pass
    finally:
        live.remove_listener(on_change)
        await live.stop_typing()
        logger.debug("ws.conversation_disconnected", user_id=user_id, conversation_id=conversation_id)
