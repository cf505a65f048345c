"""
Обработка сообщений WebSocket: subscribe, unsubscribe, ping.
Подписанный клиент получает снимок аккаунта и затем каждое его изменение.
"""
import json
import logging

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from .devnet import Devnet, account_payload
from .errors import AccountNotFound
from .keys import is_valid_key
from .ws_manager import Connection, manager

logger = logging.getLogger(__name__)


async def _resolve_account(data: dict, devnet: Devnet) -> str | None:
    account = data.get("account")
    if account == "lobby":
        return (await devnet.dashboard()).lobby
    if isinstance(account, str) and is_valid_key(account):
        return account
    return None


def _subscribe(conn: Connection, account: str, devnet: Devnet) -> None:
    if account in conn.subscriptions:
        return

    def on_change(raw: bytes) -> None:
        manager.schedule_send(conn.conn_id, account_payload("account_change", account, raw))

    conn.subscriptions[account] = devnet.ledger.subscribe(account, on_change)


async def handle_ws_message(conn: Connection, raw: str, devnet: Devnet) -> bool:
    """
    Обрабатывает одно сообщение клиента.
    Возвращает False если соединение нужно закрыть.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("WS: invalid JSON from %s: %s", conn.conn_id, e)
        return True
    if not isinstance(data, dict):
        return True
    t = data.get("type")
    logger.info("WS: msg from %s type=%s", conn.conn_id, t)
    if t == "ping":
        await manager.send_to(conn.conn_id, {"type": "pong"})
        return True
    if t == "subscribe":
        account = await _resolve_account(data, devnet)
        if account is None:
            await manager.send_to(conn.conn_id, {"type": "error", "error": "invalid_account"})
            return True
        _subscribe(conn, account, devnet)
        try:
            snapshot = await devnet.ledger.read_account(account)
        except AccountNotFound:
            await manager.send_to(
                conn.conn_id,
                {"type": "error", "error": "account_not_found", "account": account},
            )
            return True
        await manager.send_to(conn.conn_id, account_payload("account_state", account, snapshot))
        return True
    if t == "unsubscribe":
        account = await _resolve_account(data, devnet)
        handle = conn.subscriptions.pop(account, None) if account else None
        if handle is not None:
            devnet.ledger.unsubscribe(handle)
        return True
    if t == "close":
        return False
    return True


async def ws_loop(ws: WebSocket, devnet: Devnet) -> None:
    conn = None
    try:
        await ws.accept()
        conn = manager.connect(ws)
        logger.info("WS: accepted %s", conn.conn_id)
        while True:
            msg = await ws.receive_text()
            if not await handle_ws_message(conn, msg, devnet):
                await ws.close()
                break
    except WebSocketDisconnect as e:
        logger.info("WS: client disconnected code=%s reason=%s conn=%s",
                    e.code, e.reason or "", conn.conn_id if conn else None)
    except Exception as e:
        logger.exception("WS: error conn=%s: %s", conn.conn_id if conn else None, e)
    finally:
        if conn:
            for handle in conn.subscriptions.values():
                devnet.ledger.unsubscribe(handle)
            manager.disconnect(conn.conn_id)
            logger.info("WS: disconnected %s", conn.conn_id)
