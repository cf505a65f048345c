"""Константы программы крестиков-ноликов и раскладки аккаунтов."""
from enum import IntEnum
from typing import TypedDict

BOARD_SIZE = 9
MAX_COMPLETED_GAMES = 5
KEY_SIZE = 32
ACCOUNT_SPACE = 256
COMMAND_LENGTH = 12

# Нулевой ключ в раскладке означает "нет значения"
EMPTY_KEY = "00" * KEY_SIZE

# Последнее значение keep-alive: игрок ушёл. Больше любого честного счётчика,
# поэтому счётчики остаются монотонными.
DEPARTED = 2**64 - 1

TRANSACTION_FEE = 5


class StateType(IntEnum):
    UNINITIALIZED = 0
    DASHBOARD = 1
    GAME = 2


class Command(IntEnum):
    INIT_DASHBOARD = 0
    INIT_GAME = 1
    ADVERTISE = 2
    JOIN = 3
    KEEP_ALIVE = 4
    MOVE = 5


class WinLine(TypedDict):
    name: str
    cells: tuple[int, int, int]


WIN_LINES: list[WinLine] = [
    {"name": "row 1", "cells": (0, 1, 2)},
    {"name": "row 2", "cells": (3, 4, 5)},
    {"name": "row 3", "cells": (6, 7, 8)},
    {"name": "column 1", "cells": (0, 3, 6)},
    {"name": "column 2", "cells": (1, 4, 7)},
    {"name": "column 3", "cells": (2, 5, 8)},
    {"name": "diagonal", "cells": (0, 4, 8)},
    {"name": "anti-diagonal", "cells": (2, 4, 6)},
]
