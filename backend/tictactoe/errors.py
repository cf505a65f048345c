"""Иерархия ошибок клиента."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ledger import TransactionStatus


class TicTacToeError(Exception):
    """Базовая ошибка клиента."""


class LedgerTransportError(ConnectionError):
    """Леджер недоступен или отверг запрос на транспортном уровне."""


class AccountNotFound(TicTacToeError, KeyError):
    def __init__(self, account: str):
        super().__init__(account)
        self.account = account

    def __str__(self) -> str:
        return f"account not found: {self.account}"


class DecodeError(TicTacToeError, ValueError):
    """Данные аккаунта повреждены или имеют неожиданный тип."""


class FundingError(TicTacToeError):
    """Не удалось пополнить плательщика комиссий."""


class SubmitError(TicTacToeError):
    """Команда не применена к леджеру."""


class TransportFailure(SubmitError):
    def __init__(self, title: str, cause: BaseException | None = None):
        super().__init__(f"{title}: transport failure: {cause}")
        self.title = title
        self.cause = cause


class NotConfirmed(SubmitError):
    def __init__(self, title: str, signature: str, status: TransactionStatus | None):
        super().__init__(f"{title}: transaction {signature} not confirmed (last status: {status})")
        self.title = title
        self.signature = signature
        self.status = status

    @property
    def program_rejected(self) -> bool:
        """Команда дошла до программы, но не была применена."""
        return self.status is not None and self.status.is_program_error


class CreateError(TicTacToeError):
    """Не удалось создать игру."""


class MoveError(TicTacToeError):
    """Ход отклонён локальной предварительной проверкой."""


class MatchmakingError(TicTacToeError):
    pass


class Disconnected(MatchmakingError):
    """Keep-alive собственной игры сломался до того, как нашёлся соперник."""
