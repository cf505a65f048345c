"""
Devnet: LocalLedger с лобби, которое создаётся при первом обращении.
Плюс сборка JSON-представлений аккаунтов для HTTP и WebSocket.
"""
import asyncio
import logging
from typing import Any

from . import dashboard
from .codec import decode_dashboard_state, decode_game_state, state_type
from .config import Config, get_config
from .constants import StateType
from .dashboard import DashboardSession
from .errors import DecodeError
from .local_ledger import LocalLedger
from .state import DashboardState, GameState
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class Devnet:
    def __init__(self, ledger: LocalLedger | None = None, config: Config | None = None):
        self.config = config or get_config()
        self.ledger = ledger or LocalLedger(units_per_second=self.config.keep_alive_units_per_second)
        self.submitter = TransactionSubmitter(self.ledger, self.config)
        self._dashboard: DashboardSession | None = None
        self._lock = asyncio.Lock()

    async def dashboard(self) -> DashboardSession:
        async with self._lock:
            if self._dashboard is None:
                logger.info("Devnet: creating dashboard")
                self._dashboard = await dashboard.create(self.ledger, self.submitter, self.config)
                logger.info("Devnet: dashboard loaded: %s", self._dashboard.lobby)
            return self._dashboard


def game_state_payload(state: GameState) -> dict[str, Any]:
    return {
        "phase": state.phase.value,
        "player_x": state.player_x,
        "player_o": state.player_o,
        "board": [c.value for c in state.board],
        "keep_alive": list(state.keep_alive),
    }


def dashboard_state_payload(state: DashboardState) -> dict[str, Any]:
    return {
        "pending_game": state.pending_game,
        "completed_games": list(state.completed_games),
        "total_games": state.total_games,
    }


def account_payload(msg_type: str, account: str, raw: bytes) -> dict[str, Any]:
    """Собрать сообщение account_state/account_change для клиента."""
    payload: dict[str, Any] = {"type": msg_type, "account": account}
    try:
        kind = state_type(raw)
        if kind == StateType.GAME:
            payload.update(kind="game", state=game_state_payload(decode_game_state(raw)))
        elif kind == StateType.DASHBOARD:
            payload.update(kind="dashboard", state=dashboard_state_payload(decode_dashboard_state(raw)))
        else:
            payload.update(kind="uninitialized", state=None)
    except DecodeError as e:
        payload.update(kind="invalid", state=None, error=str(e))
    return payload
