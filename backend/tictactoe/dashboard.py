"""
Лобби и матчмейкинг без центрального координатора.
Единственный слот pending_game в аккаунте лобби служит доской объявлений:
клиент рекламирует свою игру и пытается присоединиться к чужой.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

from . import commands
from .codec import decode_dashboard_state
from .config import Config, get_config
from .errors import (
    AccountNotFound,
    DecodeError,
    Disconnected,
    LedgerTransportError,
    MatchmakingError,
    SubmitError,
)
from .game import ChangeListener, GameSession
from .keys import Keypair
from .ledger import LedgerClient
from .state import DashboardState, GameState
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class DashboardSession:
    def __init__(
        self,
        ledger: LedgerClient,
        submitter: TransactionSubmitter,
        lobby: str,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.submitter = submitter
        self.lobby = lobby
        self.config = config or get_config()
        self._clock = clock
        self._state = DashboardState()
        self.stale_discards = 0
        self._listeners: dict[ChangeListener, None] = {}
        self._handling = False
        self._queued: deque[bytes] = deque()
        self._subscription: int | None = ledger.subscribe(lobby, self._on_account_change)

    @property
    def state(self) -> DashboardState:
        return self._state

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners[listener] = None

    def remove_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.pop(listener, None)

    def close(self) -> None:
        if self._subscription is not None:
            self.ledger.unsubscribe(self._subscription)
            self._subscription = None

    async def refresh(self) -> DashboardState:
        raw = await self.ledger.read_account(self.lobby)
        self._accept(raw)
        return self._state

    async def submit_game_state(self, game: GameSession) -> None:
        """Попросить лобби пересчитать состояние по игре (игру в Waiting объявить)."""
        await self.submitter.submit(
            "updateDashboard",
            [commands.advertise(game.player_key, self.lobby, game.game_ref)],
            [game.player],
        )

    async def fetch_completed_games(self) -> list[tuple[str, GameState]]:
        games = []
        for ref in self._state.completed_games:
            try:
                games.append((ref, await GameSession.get_game_state(self.ledger, ref)))
            except (AccountNotFound, DecodeError, LedgerTransportError) as e:
                logger.warning("Dashboard: cannot read completed game %s: %s", ref[:8], e)
        return games

    async def start_game(self, player: Keypair | None = None) -> GameSession:
        """Найти соперника и начать партию."""
        player = player or Keypair.generate()
        my_game = await GameSession.create(
            self.ledger, self.submitter, self.lobby, player, self.config, self._clock,
        )
        try:
            return await self._match(my_game, player)
        except BaseException:
            # Включая отмену: игра не должна остаться живой и объявленной
            try:
                await my_game.abandon()
            finally:
                my_game.close()
            raise

    async def _match(self, my_game: GameSession, player: Keypair) -> GameSession:
        while True:
            if my_game.in_progress:
                logger.info("Another player accepted our game (%s)", my_game.game_ref[:8])
                return my_game
            if my_game.disconnected:
                raise Disconnected(f"game {my_game.game_ref} disconnected")
            if my_game.abandoned:
                raise MatchmakingError(f"game {my_game.game_ref} abandoned")

            try:
                state = await self.refresh()
            except LedgerTransportError as e:
                logger.warning("Dashboard: refresh failed: %s", e)
                state = self._state
            pending = state.pending_game

            if pending is not None and pending != my_game.game_ref:
                logger.info("Trying to join %s", pending[:8])
                try:
                    their_game = await GameSession.join(
                        self.ledger, self.submitter, self.lobby, player, pending, self.config, self._clock,
                    )
                except (SubmitError, DecodeError, AccountNotFound, LedgerTransportError) as e:
                    logger.info("Join %s failed: %s", pending[:8], e)
                    their_game = None
                if their_game is not None and their_game.state.player_o == player.public_key:
                    logger.info("Joined game %s", pending[:8])
                    return await self._settle(my_game, their_game)

            if pending != my_game.game_ref:
                logger.info("Advertising our game (%s)", my_game.game_ref[:8])
                await self.submit_game_state(my_game)

            await asyncio.sleep(self.config.poll_interval)

    async def _settle(self, my_game: GameSession, their_game: GameSession) -> GameSession:
        """
        Соперник мог одновременно присоединиться к нашей игре. Тогда обе
        стороны оставляют игру с меньшим ключом, иначе ту, к которой присоединились.
        """
        try:
            await my_game.refresh()
        except (DecodeError, AccountNotFound, LedgerTransportError) as e:
            logger.warning("Game %s: refresh failed: %s", my_game.game_ref[:8], e)
        if my_game.in_progress and my_game.game_ref < their_game.game_ref:
            logger.info("Both games joined, keeping %s", my_game.game_ref[:8])
            await their_game.abandon()
            return my_game
        await my_game.abandon()
        return their_game

    def _on_account_change(self, raw: bytes) -> None:
        if self._handling:
            self._queued.append(raw)
            return
        self._handling = True
        try:
            self._queued.append(raw)
            while self._queued:
                try:
                    self._accept(self._queued.popleft())
                except DecodeError as e:
                    logger.error("Dashboard: bad account data: %s", e)
        finally:
            self._handling = False

    def _is_stale(self, new: DashboardState) -> bool:
        old = self._state
        if new.total_games < old.total_games:
            return True
        # Изменение списка завершённых игр без сдвига курсора
        return new.total_games == old.total_games and new.completed_games != old.completed_games

    def _accept(self, raw: bytes) -> bool:
        new = decode_dashboard_state(raw)
        if self._is_stale(new):
            self.stale_discards += 1
            logger.debug("Dashboard: stale notification discarded (total %d < %d)",
                         new.total_games, self._state.total_games)
            return False
        self._state = new
        for listener in list(self._listeners):
            listener()
        return True


async def create(
    ledger: LedgerClient,
    submitter: TransactionSubmitter | None = None,
    config: Config | None = None,
) -> DashboardSession:
    """Создать новый аккаунт лобби."""
    config = config or get_config()
    submitter = submitter or TransactionSubmitter(ledger, config)
    lobby = Keypair.generate()
    await submitter.submit("initDashboard", [commands.init_dashboard(lobby.public_key)], [lobby])
    logger.info("Dashboard %s: created", lobby.public_key[:8])
    return await connect(ledger, lobby.public_key, submitter, config)


async def connect(
    ledger: LedgerClient,
    lobby: str,
    submitter: TransactionSubmitter | None = None,
    config: Config | None = None,
) -> DashboardSession:
    """Подключиться к существующему лобби."""
    config = config or get_config()
    submitter = submitter or TransactionSubmitter(ledger, config)
    session = DashboardSession(ledger, submitter, lobby, config)
    try:
        await session.refresh()
    except Exception:
        session.close()
        raise
    return session
