"""
Двоичная раскладка аккаунтов игры и лобби (little-endian, ключи по 32 байта).
Нулевой ключ означает отсутствие значения.
"""
import struct

from .constants import ACCOUNT_SPACE, EMPTY_KEY, MAX_COMPLETED_GAMES, StateType
from .errors import DecodeError
from .state import Cell, DashboardState, GameState, Phase

_TAG = struct.Struct("<Q")
_GAME = struct.Struct("<QQQB32s32s9B")
_DASHBOARD = struct.Struct("<QQ32s" + "32s" * MAX_COMPLETED_GAMES + "B")

_PHASES = list(Phase)
_CELLS = list(Cell)


def _key_to_bytes(key: str | None) -> bytes:
    return bytes.fromhex(key or EMPTY_KEY)


def _key_from_bytes(raw: bytes) -> str | None:
    key = raw.hex()
    return None if key == EMPTY_KEY else key


def _pad(payload: bytes) -> bytes:
    return payload.ljust(ACCOUNT_SPACE, b"\0")


def state_type(raw: bytes) -> StateType:
    if len(raw) < _TAG.size:
        raise DecodeError(f"account too small: {len(raw)} bytes")
    (tag,) = _TAG.unpack_from(raw)
    try:
        return StateType(tag)
    except ValueError:
        raise DecodeError(f"unknown state type: {tag}") from None


def decode_game_state(raw: bytes) -> GameState:
    if len(raw) < _GAME.size:
        raise DecodeError(f"game account too small: {len(raw)} bytes")
    tag, ka_x, ka_o, phase, player_x, player_o, *board = _GAME.unpack_from(raw)
    if tag != StateType.GAME:
        raise DecodeError(f"invalid game state type: {tag}")
    if phase >= len(_PHASES):
        raise DecodeError(f"invalid game phase: {phase}")
    if any(cell >= len(_CELLS) for cell in board):
        raise DecodeError(f"invalid board: {board}")
    return GameState(
        phase=_PHASES[phase],
        player_x=_key_from_bytes(player_x),
        player_o=_key_from_bytes(player_o),
        board=tuple(_CELLS[cell] for cell in board),
        keep_alive=(ka_x, ka_o),
    )


def encode_game_state(state: GameState) -> bytes:
    return _pad(_GAME.pack(
        StateType.GAME,
        state.keep_alive[0],
        state.keep_alive[1],
        _PHASES.index(state.phase),
        _key_to_bytes(state.player_x),
        _key_to_bytes(state.player_o),
        *(_CELLS.index(cell) for cell in state.board),
    ))


def decode_dashboard_state(raw: bytes) -> DashboardState:
    if len(raw) < _DASHBOARD.size:
        raise DecodeError(f"dashboard account too small: {len(raw)} bytes")
    tag, total_games, pending, *rest = _DASHBOARD.unpack_from(raw)
    if tag != StateType.DASHBOARD:
        raise DecodeError(f"invalid dashboard state type: {tag}")
    slots, cursor = rest[:-1], rest[-1]
    if cursor >= MAX_COMPLETED_GAMES:
        raise DecodeError(f"invalid completed games cursor: {cursor}")
    completed = []
    for i in range(MAX_COMPLETED_GAMES):
        key = _key_from_bytes(slots[(cursor - i) % MAX_COMPLETED_GAMES])
        if key is not None:
            completed.append(key)
    return DashboardState(
        pending_game=_key_from_bytes(pending),
        completed_games=tuple(completed),
        total_games=total_games,
        cursor=cursor,
    )


def encode_dashboard_state(state: DashboardState) -> bytes:
    slots = [_key_to_bytes(None)] * MAX_COMPLETED_GAMES
    for i, game in enumerate(state.completed_games):
        slots[(state.cursor - i) % MAX_COMPLETED_GAMES] = _key_to_bytes(game)
    return _pad(_DASHBOARD.pack(
        StateType.DASHBOARD,
        state.total_games,
        _key_to_bytes(state.pending_game),
        *slots,
        state.cursor,
    ))


def encode_uninitialized() -> bytes:
    return _pad(_TAG.pack(StateType.UNINITIALIZED))
