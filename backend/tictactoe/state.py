"""
Снимки состояния аккаунтов игры и лобби.
Каждое принятое уведомление даёт новый неизменяемый снимок.
"""
from dataclasses import dataclass, field, replace
from enum import Enum

from .constants import BOARD_SIZE, MAX_COMPLETED_GAMES, WIN_LINES


class Phase(Enum):
    WAITING = "Waiting"
    X_TURN = "XTurn"
    O_TURN = "OTurn"
    X_WON = "XWon"
    O_WON = "OWon"
    DRAW = "Draw"

    @property
    def rank(self) -> int:
        """Положение в решётке Waiting -> ход -> итог."""
        if self is Phase.WAITING:
            return 0
        if self in (Phase.X_TURN, Phase.O_TURN):
            return 1
        return 2

    @property
    def is_terminal(self) -> bool:
        return self.rank == 2

    @property
    def in_progress(self) -> bool:
        return self.rank == 1


class Cell(Enum):
    EMPTY = " "
    X = "X"
    O = "O"


def _empty_board() -> tuple[Cell, ...]:
    return (Cell.EMPTY,) * BOARD_SIZE


@dataclass(frozen=True)
class GameState:
    phase: Phase = Phase.WAITING
    player_x: str | None = None
    player_o: str | None = None
    board: tuple[Cell, ...] = field(default_factory=_empty_board)
    keep_alive: tuple[int, int] = (0, 0)

    def __post_init__(self) -> None:
        if len(self.board) != BOARD_SIZE:
            raise ValueError(f"board must have {BOARD_SIZE} cells, got {len(self.board)}")
        if len(self.keep_alive) != 2:
            raise ValueError("keep_alive must hold one counter per player")

    def cell(self, x: int, y: int) -> Cell:
        return self.board[y * 3 + x]

    def with_move(self, index: int, mark: Cell) -> "GameState":
        board = list(self.board)
        board[index] = mark
        return replace(self, board=tuple(board))

    def winner_mark(self) -> Cell | None:
        for line in WIN_LINES:
            a, b, c = line["cells"]
            if self.board[a] is not Cell.EMPTY and self.board[a] == self.board[b] == self.board[c]:
                return self.board[a]
        return None

    def is_full(self) -> bool:
        return all(c is not Cell.EMPTY for c in self.board)


@dataclass(frozen=True)
class DashboardState:
    pending_game: str | None = None
    # Последние завершённые игры, самая свежая первой
    completed_games: tuple[str, ...] = ()
    total_games: int = 0
    # Индекс последней записи в кольцевом буфере
    cursor: int = 0

    def __post_init__(self) -> None:
        if len(self.completed_games) > MAX_COMPLETED_GAMES:
            raise ValueError(f"at most {MAX_COMPLETED_GAMES} completed games")

    def with_completed(self, game: str) -> "DashboardState":
        """Записать завершённую игру; старейшая вытесняется."""
        if game in self.completed_games:
            return self
        completed = ((game,) + self.completed_games)[:MAX_COMPLETED_GAMES]
        return replace(
            self,
            completed_games=completed,
            total_games=self.total_games + 1,
            cursor=(self.cursor + 1) % MAX_COMPLETED_GAMES,
        )
