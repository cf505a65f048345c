"""
Сессия одной партии: локальная машина состояний хода и живости,
выводимая из уведомлений об изменении аккаунта игры.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

from . import commands
from .codec import decode_game_state
from .config import Config, get_config
from .constants import DEPARTED
from .errors import CreateError, DecodeError, MoveError, NotConfirmed, SubmitError
from .keys import Keypair
from .ledger import LedgerClient
from .state import Cell, GameState, Phase
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


def _filled(state: GameState) -> int:
    return sum(1 for c in state.board if c is not Cell.EMPTY)


class GameSession:
    def __init__(
        self,
        ledger: LedgerClient,
        submitter: TransactionSubmitter,
        lobby: str,
        game_ref: str,
        player: Keypair,
        is_x: bool,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.submitter = submitter
        self.lobby = lobby
        self.game_ref = game_ref
        self.player = player
        self.is_x = is_x
        self.config = config or get_config()
        self._clock = clock
        self._state = GameState()
        self.in_progress = False
        self.my_turn = False
        self.draw = False
        self.winner = False
        self.abandoned = False
        self.disconnected = False
        self.last_keep_alive = 0
        # Сколько уведомлений отброшено как устаревшие
        self.stale_discards = 0
        self._keep_alive_errors = 0
        self._listeners: dict[ChangeListener, None] = {}
        self._subscription: int | None = None
        self._keep_alive_task: asyncio.Task | None = None
        self._handling = False
        self._queued: deque[bytes] = deque()
        self._closed = False

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def player_key(self) -> str:
        return self.player.public_key

    @classmethod
    async def create(
        cls,
        ledger: LedgerClient,
        submitter: TransactionSubmitter,
        lobby: str,
        player: Keypair,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
    ) -> GameSession:
        """Создать новую игру, где вызывающий играет X."""
        game = Keypair.generate()
        session = cls(ledger, submitter, lobby, game.public_key, player, True, config, clock)
        session._subscribe()
        instruction = commands.init_game(game.public_key, lobby, player.public_key, session._next_counter())
        try:
            await submitter.submit("initGame", [instruction], [player, game])
        except SubmitError as e:
            session.close()
            raise CreateError(f"game {game.public_key} was not created: {e}") from e
        logger.info("Game %s: created by %s", session.game_ref[:8], player.public_key[:8])
        session._start_keep_alive()
        return session

    @classmethod
    async def join(
        cls,
        ledger: LedgerClient,
        submitter: TransactionSubmitter,
        lobby: str,
        player: Keypair,
        game_ref: str,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
    ) -> GameSession | None:
        """
        Присоединиться к игре как O.
        None, если гонку выиграл другой игрок (или игра уже недоступна).
        """
        session = cls(ledger, submitter, lobby, game_ref, player, False, config, clock)
        session._subscribe()
        instruction = commands.join(player.public_key, lobby, game_ref, session._next_counter())
        try:
            await submitter.submit("joinGame", [instruction], [player])
        except NotConfirmed as e:
            if not e.program_rejected:
                session.close()
                raise
            logger.info("Game %s: join rejected by program: %s", game_ref[:8], e.status.detail)
        except SubmitError:
            session.close()
            raise
        try:
            await session.refresh()
        except Exception:
            session.close()
            raise
        if not session.in_progress or session.state.player_o != player.public_key:
            logger.info("Game %s: join by %s lost", game_ref[:8], player.public_key[:8])
            session.close()
            return None
        logger.info("Game %s: joined by %s", game_ref[:8], player.public_key[:8])
        session._start_keep_alive()
        return session

    @staticmethod
    async def get_game_state(ledger: LedgerClient, game_ref: str) -> GameState:
        return decode_game_state(await ledger.read_account(game_ref))

    async def refresh(self) -> None:
        """Перечитать аккаунт игры (с теми же правилами устаревания)."""
        raw = await self.ledger.read_account(self.game_ref)
        self._accept(raw)

    async def move(self, x: int, y: int) -> None:
        if not (0 <= x < 3 and 0 <= y < 3):
            raise MoveError(f"cell ({x}, {y}) is off the board")
        if not self.my_turn:
            raise MoveError("not your turn")
        if self._state.cell(x, y) is not Cell.EMPTY:
            raise MoveError(f"cell ({x}, {y}) is taken")
        await self.submitter.submit(
            f"move({x + 1},{y + 1})",
            [commands.move(self.player_key, self.lobby, self.game_ref, x, y)],
            [self.player],
            soft_failure_allowed=True,
        )

    async def keep_alive(self) -> None:
        """Сообщить сопернику, что мы живы."""
        await self._send_keep_alive("keepAlive", self._next_counter())

    async def abandon(self) -> None:
        """Покинуть игру; сопернику best-effort отправляется признак ухода."""
        if self._closed:
            return
        self.abandoned = True
        self.in_progress = False
        self.my_turn = False
        if not self._state.phase.is_terminal:
            try:
                await self._send_keep_alive("abandon", DEPARTED)
                self.last_keep_alive = DEPARTED
            except SubmitError as e:
                logger.warning("Game %s: departure signal failed: %s", self.game_ref[:8], e)
        logger.info("Game %s: abandoned by %s", self.game_ref[:8], self.player_key[:8])
        self._emit()
        self.close()

    def close(self) -> None:
        """Перестать наблюдать за игрой."""
        self._closed = True
        if self._keep_alive_task is not None:
            self._keep_alive_task.cancel()
        self._unsubscribe()

    def is_peer_alive(self) -> bool:
        keep_alive = self._state.keep_alive
        return abs(keep_alive[0] - keep_alive[1]) < self.config.liveness_threshold

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners[listener] = None

    def remove_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.pop(listener, None)

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener()

    def _next_counter(self) -> int:
        # Программа помечает keep-alive временем леджера, счётчик клиента только уходит в команду
        counter = max(int(self._clock() * self.config.keep_alive_units_per_second), self.last_keep_alive + 1)
        self.last_keep_alive = counter
        return counter

    async def _send_keep_alive(self, title: str, counter: int) -> None:
        await self.submitter.submit(
            title,
            [commands.keep_alive(self.player_key, self.lobby, self.game_ref, counter)],
            [self.player],
            soft_failure_allowed=True,
        )

    def _subscribe(self) -> None:
        if self._subscription is None:
            self._subscription = self.ledger.subscribe(self.game_ref, self._on_account_change)

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self.ledger.unsubscribe(self._subscription)
            self._subscription = None

    def _start_keep_alive(self) -> None:
        if self._keep_alive_task is None:
            self._keep_alive_task = asyncio.create_task(self._keep_alive_loop())

    async def _keep_alive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.keep_alive_period)
            if self._closed or self.abandoned or self.disconnected:
                self._unsubscribe()
                return
            if self._state.phase.is_terminal:
                return
            try:
                await self.keep_alive()
            except SubmitError as e:
                self._keep_alive_errors += 1
                logger.warning("Game %s: keepAlive() failed #%d: %s", self.game_ref[:8], self._keep_alive_errors, e)
                if self._keep_alive_errors >= self.config.keep_alive_failure_threshold:
                    self.disconnected = True
                    self.in_progress = False
                    self.my_turn = False
                    logger.warning("Game %s: disconnected", self.game_ref[:8])
                    self._emit()
                    self._unsubscribe()
                    return
            else:
                self._keep_alive_errors = 0

    def _on_account_change(self, raw: bytes) -> None:
        if self._closed:
            return
        # Одно уведомление за раз; пришедшие во время обработки ждут очереди
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
                    logger.error("Game %s: bad account data: %s", self.game_ref[:8], e)
        finally:
            self._handling = False

    def _is_stale(self, new: GameState) -> bool:
        old = self._state
        if any(n < o for n, o in zip(new.keep_alive, old.keep_alive)):
            return True
        return new.phase.rank < old.phase.rank or _filled(new) < _filled(old)

    def _accept(self, raw: bytes) -> bool:
        new = decode_game_state(raw)
        if self._is_stale(new):
            self.stale_discards += 1
            logger.debug("Game %s: stale notification discarded (%s < %s)",
                         self.game_ref[:8], new.keep_alive, self._state.keep_alive)
            return False
        self._state = new
        self._derive()
        self._emit()
        return True

    def _derive(self) -> None:
        phase = self._state.phase
        self.in_progress = phase.in_progress
        self.my_turn = (phase == Phase.X_TURN and self.is_x) or (phase == Phase.O_TURN and not self.is_x)
        self.draw = phase == Phase.DRAW
        self.winner = (phase == Phase.X_WON and self.is_x) or (phase == Phase.O_WON and not self.is_x)
        if self.abandoned or self.disconnected:
            self.in_progress = False
            self.my_turn = False
            return
        if self.in_progress and not self.is_peer_alive():
            logger.info("Game %s: peer is not alive, abandoning locally", self.game_ref[:8])
            self.in_progress = False
            self.my_turn = False
            self.abandoned = True
