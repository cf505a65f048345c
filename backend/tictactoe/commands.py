"""
Команды, которые принимает программа игры (в виде инструкций транзакции).
Формат: u32 тег команды + аргументы, дополнено нулями до COMMAND_LENGTH.
"""
import struct
from dataclasses import dataclass

from .constants import COMMAND_LENGTH, Command
from .errors import DecodeError
from .ledger import Instruction

_TAG = struct.Struct("<I")
_WITH_COUNTER = struct.Struct("<IQ")
_MOVE = struct.Struct("<IBB")

_COUNTER_COMMANDS = (Command.INIT_GAME, Command.JOIN, Command.KEEP_ALIVE)


@dataclass(frozen=True)
class DecodedCommand:
    command: Command
    counter: int = 0
    x: int = 0
    y: int = 0


def _zero_pad(data: bytes) -> bytes:
    if len(data) > COMMAND_LENGTH:
        raise ValueError(f"command buffer too large: {len(data)} > {COMMAND_LENGTH}")
    return data.ljust(COMMAND_LENGTH, b"\0")


def encode_command(command: Command, counter: int = 0, x: int = 0, y: int = 0) -> bytes:
    if command in _COUNTER_COMMANDS:
        return _zero_pad(_WITH_COUNTER.pack(command, counter))
    if command == Command.MOVE:
        return _zero_pad(_MOVE.pack(command, x, y))
    return _zero_pad(_TAG.pack(command))


def decode_command(data: bytes) -> DecodedCommand:
    if len(data) != COMMAND_LENGTH:
        raise DecodeError(f"invalid command length: {len(data)}")
    (tag,) = _TAG.unpack_from(data)
    try:
        command = Command(tag)
    except ValueError:
        raise DecodeError(f"unknown command: {tag}") from None
    if command in _COUNTER_COMMANDS:
        _, counter = _WITH_COUNTER.unpack_from(data)
        return DecodedCommand(command, counter=counter)
    if command == Command.MOVE:
        _, x, y = _MOVE.unpack_from(data)
        return DecodedCommand(command, x=x, y=y)
    return DecodedCommand(command)


# Порядок аккаунтов: для команд игры [игрок, лобби, игра]


def init_dashboard(lobby: str) -> Instruction:
    return Instruction(
        data=encode_command(Command.INIT_DASHBOARD),
        accounts=(lobby,),
        signers=(lobby,),
    )


def init_game(game: str, lobby: str, player: str, counter: int) -> Instruction:
    return Instruction(
        data=encode_command(Command.INIT_GAME, counter=counter),
        accounts=(game, lobby, player),
        signers=(game, player),
    )


def advertise(player: str, lobby: str, game: str) -> Instruction:
    return Instruction(
        data=encode_command(Command.ADVERTISE),
        accounts=(player, lobby, game),
        signers=(player,),
    )


def join(player: str, lobby: str, game: str, counter: int) -> Instruction:
    return Instruction(
        data=encode_command(Command.JOIN, counter=counter),
        accounts=(player, lobby, game),
        signers=(player,),
    )


def keep_alive(player: str, lobby: str, game: str, counter: int) -> Instruction:
    return Instruction(
        data=encode_command(Command.KEEP_ALIVE, counter=counter),
        accounts=(player, lobby, game),
        signers=(player,),
    )


def move(player: str, lobby: str, game: str, x: int, y: int) -> Instruction:
    return Instruction(
        data=encode_command(Command.MOVE, x=x, y=y),
        accounts=(player, lobby, game),
        signers=(player,),
    )
