"""
Websocket endpoint. The client connects to /ws?user_id=N and exchanges
`{"event": ..., "data": {...}}` frames. Each client event runs against its own
database session; failures are answered with an `error` event on the same socket.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from careerhub.app.db import get_session_factory
from careerhub.app.errors import AppError, ValidationError
from careerhub.app.models import User
from careerhub.app.services.chat import ChatService, serialize_message
from careerhub.app.services.notifications import EVENT_COUNT, NotificationDispatcher
from careerhub.app.services.realtime import ConnectionManager, conversation_channel

logger = logging.getLogger(__name__)

router = APIRouter()


def _conversation_id(data: Dict[str, Any]) -> int:
    try:
        return int(data["conversation_id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("conversation_id is required") from None


async def handle_event(websocket: WebSocket, user_id: int, event: str, data: Dict[str, Any]) -> None:
    app = websocket.app
    gateway: ConnectionManager = app.state.gateway
    async with get_session_factory()() as session:
        dispatcher = NotificationDispatcher(session, app.state.cache, gateway, app.state.settings)
        chat = ChatService(session, gateway, dispatcher)

        if event == "conversation:join":
            conversation_id = _conversation_id(data)
            await chat.ensure_access(conversation_id, user_id)
            channel = conversation_channel(conversation_id)
            gateway.subscribe(channel, websocket)
            await gateway.emit_to_channel(channel, "user:joined",
                                          {"conversation_id": conversation_id, "user_id": user_id},
                                          exclude=websocket)
            await gateway.send(websocket, "conversation:joined", {
                "conversation_id": conversation_id,
                "online_users": gateway.online_users(channel),
            })
        elif event == "conversation:leave":
            conversation_id = _conversation_id(data)
            channel = conversation_channel(conversation_id)
            gateway.unsubscribe(channel, websocket)
            await gateway.emit_to_channel(channel, "user:left",
                                          {"conversation_id": conversation_id, "user_id": user_id})
        elif event == "message:send":
            message = await chat.append_message(_conversation_id(data), user_id, data.get("text") or "")
            await gateway.send(websocket, "message:sent", serialize_message(message))
        elif event == "messages:mark_read":
            await chat.mark_conversation_read(_conversation_id(data), user_id)
        elif event == "notification:get-count":
            await gateway.send(websocket, EVENT_COUNT, await dispatcher.get_count(user_id))
        elif event in ("typing:start", "typing:stop"):
            conversation_id = _conversation_id(data)
            await chat.ensure_access(conversation_id, user_id)
            await gateway.emit_to_channel(conversation_channel(conversation_id), "user:typing", {
                "conversation_id": conversation_id,
                "user_id": user_id,
                "is_typing": event == "typing:start",
            }, exclude=websocket)
        else:
            raise ValidationError(f"unknown event: {event}")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: int):
    async with get_session_factory()() as session:
        user = await session.get(User, user_id)
    if user is None:
        await websocket.close(code=4401)
        return

    gateway: ConnectionManager = websocket.app.state.gateway
    await websocket.accept()
    gateway.connect(user_id, websocket)
    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await gateway.send(websocket, "error", {"message": "frames must be {event, data}"})
                continue
            event = frame["event"]
            data = frame.get("data") if isinstance(frame.get("data"), dict) else {}
            try:
                await handle_event(websocket, user_id, event, data)
            except AppError as e:
                await gateway.send(websocket, "error", {"event": event, "message": str(e.detail)})
            except Exception:
                logger.exception("websocket event %s from user %s failed", event, user_id)
                await gateway.send(websocket, "error", {"event": event, "message": "Internal server error"})
    except WebSocketDisconnect:
        pass
    finally:
        for channel in gateway.disconnect(user_id, websocket):
            await gateway.emit_to_channel(channel, "user:left", {"user_id": user_id})
