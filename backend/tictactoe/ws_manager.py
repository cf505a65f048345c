"""
Менеджер WebSocket: подключения наблюдателей и их подписки на аккаунты.
"""
import asyncio
import logging
import uuid
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Connection:
    def __init__(self, ws: WebSocket, conn_id: str):
        self.ws = ws
        self.conn_id = conn_id
        # account -> handle подписки в леджере
        self.subscriptions: dict[str, int] = {}


class WSManager:
    def __init__(self):
        self._by_id: dict[str, Connection] = {}
        self._pending: set[asyncio.Task] = set()

    def connect(self, ws: WebSocket) -> Connection:
        conn = Connection(ws, uuid.uuid4().hex[:12])
        self._by_id[conn.conn_id] = conn
        return conn

    def disconnect(self, conn_id: str) -> Connection | None:
        return self._by_id.pop(conn_id, None)

    async def send_to(self, conn_id: str, payload: dict[str, Any]) -> bool:
        conn = self._by_id.get(conn_id)
        if not conn:
            return False
        try:
            await conn.ws.send_json(payload)
            return True
        except Exception as e:
            logger.warning("send_to %s: %s", conn_id, e)
            return False

    def schedule_send(self, conn_id: str, payload: dict[str, Any]) -> None:
        """Отправить из синхронного колбэка леджера."""
        task = asyncio.get_running_loop().create_task(self.send_to(conn_id, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


manager = WSManager()
