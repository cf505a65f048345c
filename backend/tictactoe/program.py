"""
Программа игры, которую исполняет леджер: присоединение, ходы, keep-alive
и учёт игр в лобби. Клиент её напрямую не вызывает, только LocalLedger.
"""
from dataclasses import replace
from enum import Enum

from .codec import (
    decode_dashboard_state,
    decode_game_state,
    encode_dashboard_state,
    encode_game_state,
    state_type,
)
from .commands import decode_command
from .constants import BOARD_SIZE, DEPARTED, Command, StateType
from .errors import DecodeError
from .ledger import Instruction
from .state import Cell, DashboardState, GameState, Phase


class ProgramErrorKind(Enum):
    DESERIALIZATION_FAILED = "deserialization failed"
    GAME_IN_PROGRESS = "game in progress"
    INVALID_MOVE = "invalid move"
    INVALID_TIMESTAMP = "invalid timestamp"
    NOT_YOUR_TURN = "not your turn"
    PLAYER_NOT_FOUND = "player not found"
    INVALID_INPUT = "invalid input"


class ProgramError(Exception):
    def __init__(self, kind: ProgramErrorKind, detail: str = ""):
        super().__init__(f"{kind.value}{': ' + detail if detail else ''}")
        self.kind = kind


def join_game(game: GameState, player: str, counter: int) -> GameState:
    if game.phase != Phase.WAITING:
        raise ProgramError(ProgramErrorKind.GAME_IN_PROGRESS)
    if counter <= game.keep_alive[1]:
        raise ProgramError(ProgramErrorKind.INVALID_TIMESTAMP)
    return replace(
        game,
        player_o=player,
        phase=Phase.X_TURN,
        keep_alive=(game.keep_alive[0], counter),
    )


def apply_move(game: GameState, player: str, x: int, y: int) -> GameState:
    index = y * 3 + x
    if x > 2 or y > 2 or index >= BOARD_SIZE or game.board[index] is not Cell.EMPTY:
        raise ProgramError(ProgramErrorKind.INVALID_MOVE, f"({x}, {y})")
    if game.phase == Phase.X_TURN:
        if player != game.player_x:
            raise ProgramError(ProgramErrorKind.PLAYER_NOT_FOUND)
        mark, next_phase, won = Cell.X, Phase.O_TURN, Phase.X_WON
    elif game.phase == Phase.O_TURN:
        if player != game.player_o:
            raise ProgramError(ProgramErrorKind.PLAYER_NOT_FOUND)
        mark, next_phase, won = Cell.O, Phase.X_TURN, Phase.O_WON
    else:
        raise ProgramError(ProgramErrorKind.NOT_YOUR_TURN)

    game = game.with_move(index, mark)
    if game.winner_mark() is mark:
        next_phase = won
    elif game.is_full():
        next_phase = Phase.DRAW
    return replace(game, phase=next_phase)


def apply_keep_alive(game: GameState, player: str, counter: int) -> GameState:
    # После окончания игры keep-alive игнорируется
    if game.phase.is_terminal:
        return game
    if player == game.player_x:
        index = 0
    elif player == game.player_o:
        index = 1
    else:
        raise ProgramError(ProgramErrorKind.PLAYER_NOT_FOUND)
    if counter <= game.keep_alive[index]:
        raise ProgramError(ProgramErrorKind.INVALID_TIMESTAMP, f"{counter} <= {game.keep_alive[index]}")
    keep_alive = list(game.keep_alive)
    keep_alive[index] = counter
    return replace(game, keep_alive=(keep_alive[0], keep_alive[1]))


def update_dashboard(dashboard: DashboardState, game_ref: str, game: GameState) -> DashboardState:
    if game.phase == Phase.WAITING:
        if game.keep_alive[0] == DEPARTED:
            # Хозяин ушёл: объявление снимается
            if dashboard.pending_game == game_ref:
                return replace(dashboard, pending_game=None)
            return dashboard
        return replace(dashboard, pending_game=game_ref)
    if game.phase.is_terminal:
        return dashboard.with_completed(game_ref)
    # Идущие игры лобби не отслеживает
    return dashboard


def _is_uninitialized(raw: bytes | None) -> bool:
    return raw is None or state_type(raw) == StateType.UNINITIALIZED


def _load_dashboard(raw: bytes | None) -> DashboardState:
    if raw is None:
        raise ProgramError(ProgramErrorKind.INVALID_INPUT, "dashboard account missing")
    try:
        return decode_dashboard_state(raw)
    except DecodeError as e:
        raise ProgramError(ProgramErrorKind.DESERIALIZATION_FAILED, str(e)) from e


def _load_game(raw: bytes | None) -> GameState:
    if raw is None:
        raise ProgramError(ProgramErrorKind.INVALID_INPUT, "game account missing")
    try:
        return decode_game_state(raw)
    except DecodeError as e:
        raise ProgramError(ProgramErrorKind.DESERIALIZATION_FAILED, str(e)) from e


def process_instruction(instruction: Instruction, accounts: dict[str, bytes], slot: int) -> dict[str, bytes]:
    """
    Исполнить инструкцию над текущими данными аккаунтов.
    slot: текущее время леджера; им помечаются keep-alive обоих игроков,
    от клиента принимается только признак ухода DEPARTED.
    Возвращает новые данные изменённых аккаунтов или поднимает ProgramError.
    """
    try:
        cmd = decode_command(instruction.data)
    except DecodeError as e:
        raise ProgramError(ProgramErrorKind.DESERIALIZATION_FAILED, str(e)) from e
    keys = instruction.accounts

    if cmd.command == Command.INIT_DASHBOARD:
        if len(keys) < 1:
            raise ProgramError(ProgramErrorKind.INVALID_INPUT, "incorrect number of accounts")
        if not _is_uninitialized(accounts.get(keys[0])):
            raise ProgramError(ProgramErrorKind.INVALID_INPUT, "dashboard already initialized")
        return {keys[0]: encode_dashboard_state(DashboardState())}

    if len(keys) < 3:
        raise ProgramError(ProgramErrorKind.INVALID_INPUT, "incorrect number of accounts")
    lobby = keys[1]
    dashboard = _load_dashboard(accounts.get(lobby))

    if cmd.command == Command.INIT_GAME:
        game_ref, player = keys[0], keys[2]
        if not _is_uninitialized(accounts.get(game_ref)):
            raise ProgramError(ProgramErrorKind.INVALID_INPUT, "game already initialized")
        game = GameState(player_x=player, keep_alive=(slot, 0))
    else:
        player, game_ref = keys[0], keys[2]
        game = _load_game(accounts.get(game_ref))
        if cmd.command == Command.JOIN:
            game = join_game(game, player, slot)
        elif cmd.command == Command.MOVE:
            game = apply_move(game, player, cmd.x, cmd.y)
        elif cmd.command == Command.KEEP_ALIVE:
            game = apply_keep_alive(game, player, DEPARTED if cmd.counter == DEPARTED else slot)
        elif cmd.command != Command.ADVERTISE:
            raise ProgramError(ProgramErrorKind.INVALID_INPUT, f"invalid command {cmd.command.name} for game")

    dashboard = update_dashboard(dashboard, game_ref, game)
    return {
        game_ref: encode_game_state(game),
        lobby: encode_dashboard_state(dashboard),
    }
