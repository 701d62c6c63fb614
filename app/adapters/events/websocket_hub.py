import asyncio
import logging
import threading
import time
from typing import Any, Dict, Optional, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketHub:
    """
    Connected WebSocket clients, each optionally subscribed to one session.
    broadcast_to_session may be called from worker threads; sends are scheduled on
    the event loop the clients connected on.
    """
    def __init__(self):
        self._clients: Dict[str, WebSocket] = {}
        self._sessions: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

    async def connect(self, ws: WebSocket) -> str:
        await ws.accept()
        self._loop = asyncio.get_running_loop()
        client_id = f"{int(time.time() * 1000)}-{id(ws):x}"
        with self._lock:
            self._clients[client_id] = ws
            self._sessions[client_id] = None
        logger.info("WebSocket client connected: %s", client_id)
        await ws.send_json({"type": "welcome", "clientId": client_id, "timestamp": _now_ms()})
        return client_id

    def disconnect(self, client_id: str) -> None:
        with self._lock:
            self._clients.pop(client_id, None)
            self._sessions.pop(client_id, None)
        logger.info("WebSocket client disconnected: %s", client_id)

    def subscribe(self, client_id: str, session_id: Optional[str]) -> None:
        with self._lock:
            if client_id in self._clients:
                self._sessions[client_id] = session_id

    async def handle_message(self, client_id: str, data: Any) -> None:
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed message from %s: %r", client_id, data)
            return

        msg_type = data.get("type")
        if msg_type == "subscribe":
            self.subscribe(client_id, data.get("sessionId"))
        elif msg_type == "ping":
            ws = self._clients.get(client_id)
            if ws is not None:
                await ws.send_json({"type": "pong", "timestamp": _now_ms()})

    def broadcast_to_session(self, session_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            targets = [
                ws for cid, ws in self._clients.items()
                if self._sessions.get(cid) == session_id
            ]
        for ws in targets:
            self._schedule(ws, data)

    def _schedule(self, ws: WebSocket, data: Dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task = loop.create_task(self._send(ws, data))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            asyncio.run_coroutine_threadsafe(self._send(ws, data), loop)

    async def _send(self, ws: WebSocket, data: Dict[str, Any]) -> None:
        try:
            await ws.send_json(data)
        except Exception as exc:  # client gone mid-send
            logger.debug("WebSocket send failed: %s", exc)


def _now_ms() -> int:
    return int(time.time() * 1000)
