# careerhub/app/services/realtime.py
"""
In-process realtime gateway over FastAPI websockets.

A user may hold several sockets (tabs, devices). Sockets join logical channels
(`conv:{id}` for conversations). Pushes are best-effort: a socket that fails to
receive a frame is dropped and the failure is never raised to the caller, since
the REST read path is the recovery mechanism.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def conversation_channel(conversation_id: int) -> str:
    return f"conv:{conversation_id}"


class ConnectionManager:
    def __init__(self):
        self._user_sockets: Dict[int, Set[WebSocket]] = defaultdict(set)
        self._socket_user: Dict[WebSocket, int] = {}
        self._channels: Dict[str, Set[WebSocket]] = defaultdict(set)

    def connect(self, user_id: int, websocket: WebSocket) -> None:
        self._user_sockets[user_id].add(websocket)
        self._socket_user[websocket] = user_id
        logger.info("user %s connected (%d sockets)", user_id, len(self._user_sockets[user_id]))

    def disconnect(self, user_id: int, websocket: WebSocket) -> List[str]:
        """Forget the socket everywhere; returns the channels it was in."""
        left = []
        for channel, sockets in list(self._channels.items()):
            if websocket in sockets:
                sockets.discard(websocket)
                left.append(channel)
                if not sockets:
                    del self._channels[channel]
        sockets = self._user_sockets.get(user_id)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                del self._user_sockets[user_id]
        self._socket_user.pop(websocket, None)
        logger.info("user %s disconnected", user_id)
        return left

    def subscribe(self, channel: str, websocket: WebSocket) -> None:
        self._channels[channel].add(websocket)

    def unsubscribe(self, channel: str, websocket: WebSocket) -> None:
        sockets = self._channels.get(channel)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._channels[channel]

    def is_user_connected(self, user_id: int) -> bool:
        return bool(self._user_sockets.get(user_id))

    def online_users(self, channel: str) -> List[int]:
        users = {self._socket_user[ws] for ws in self._channels.get(channel, ()) if ws in self._socket_user}
        return sorted(users)

    async def _send(self, websocket: WebSocket, event: str, payload: Any) -> bool:
        try:
            await websocket.send_json({"event": event, "data": payload})
            return True
        except Exception as e:
            logger.debug("push of %s failed, dropping socket: %s", event, e)
            user_id = self._socket_user.get(websocket)
            if user_id is not None:
                self.disconnect(user_id, websocket)
            return False

    async def _send_all(self, sockets: Iterable[WebSocket], event: str, payload: Any, exclude=None) -> int:
        delivered = 0
        for ws in list(sockets):
            if ws is exclude:
                continue
            if await self._send(ws, event, payload):
                delivered += 1
        return delivered

    async def emit_to_user(self, user_id: int, event: str, payload: Any) -> int:
        """Push to every socket of `user_id`; returns how many received it."""
        return await self._send_all(self._user_sockets.get(user_id, ()), event, payload)

    async def emit_to_channel(self, channel: str, event: str, payload: Any, exclude: WebSocket = None) -> int:
        return await self._send_all(self._channels.get(channel, ()), event, payload, exclude=exclude)

    async def send(self, websocket: WebSocket, event: str, payload: Any) -> bool:
        return await self._send(websocket, event, payload)

    async def broadcast(self, event: str, payload: Any) -> int:
        return await self._send_all(self._socket_user.keys(), event, payload)
