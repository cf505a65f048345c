"""
Контракт клиента леджера: чтение аккаунтов, подписка на изменения,
отправка подписанных транзакций и проверка их статуса.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

from .keys import Keypair

AccountCallback = Callable[[bytes], None]

# Сбои сети: LedgerTransportError и всё, что реализация клиента не обернула
TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError)


@dataclass(frozen=True)
class Instruction:
    data: bytes
    accounts: tuple[str, ...]
    signers: tuple[str, ...] = ()


@dataclass
class Transaction:
    instructions: list[Instruction] = field(default_factory=list)
    fee_payer: str | None = None
    nonce: str = field(default_factory=lambda: uuid.uuid4().hex)

    def add(self, *instructions: Instruction) -> Transaction:
        self.instructions.extend(instructions)
        return self

    @property
    def required_signers(self) -> set[str]:
        required = {s for i in self.instructions for s in i.signers}
        if self.fee_payer:
            required.add(self.fee_payer)
        return required

    def message(self) -> bytes:
        body = {
            "fee_payer": self.fee_payer,
            "nonce": self.nonce,
            "instructions": [
                {"accounts": list(i.accounts), "data": i.data.hex()}
                for i in self.instructions
            ],
        }
        return json.dumps(body, sort_keys=True, separators=(",", ":")).encode()

    def sign(self, signers: Iterable[Keypair]) -> dict[str, str]:
        message = self.message()
        return {kp.public_key: kp.sign(message) for kp in signers}


class StatusKind(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class RejectionKind(Enum):
    PROGRAM_RUNTIME_ERROR = "program_runtime_error"
    MISSING_SIGNATURE = "missing_signature"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNKNOWN_SIGNATURE = "unknown_signature"


@dataclass(frozen=True)
class TransactionStatus:
    kind: StatusKind
    rejection: RejectionKind | None = None
    detail: str = ""

    @classmethod
    def pending(cls) -> TransactionStatus:
        return cls(StatusKind.PENDING)

    @classmethod
    def confirmed(cls) -> TransactionStatus:
        return cls(StatusKind.CONFIRMED)

    @classmethod
    def rejected(cls, rejection: RejectionKind, detail: str = "") -> TransactionStatus:
        return cls(StatusKind.REJECTED, rejection, detail)

    @property
    def is_program_error(self) -> bool:
        return self.kind is StatusKind.REJECTED and self.rejection is RejectionKind.PROGRAM_RUNTIME_ERROR

    def __str__(self) -> str:
        if self.kind is StatusKind.REJECTED:
            return f"rejected({self.rejection.value}: {self.detail})"
        return self.kind.value


class LedgerClient(ABC):
    """
    Клиент внешнего леджера.

    Порядок доставки уведомлений не гарантирован. Ошибки сети реализация
    должна поднимать как LedgerTransportError; необёрнутые OSError и таймауты
    вызывающие тоже считают транспортным сбоем. Отсутствующий аккаунт
    поднимается как AccountNotFound.
    """

    @abstractmethod
    async def read_account(self, account: str) -> bytes:
        ...

    @abstractmethod
    def subscribe(self, account: str, callback: AccountCallback) -> int:
        """Вызывать callback(raw) при каждом изменении аккаунта."""

    @abstractmethod
    def unsubscribe(self, handle: int) -> None:
        ...

    @abstractmethod
    async def submit(self, transaction: Transaction, signers: Iterable[Keypair]) -> str:
        """Подписать и отправить транзакцию, вернуть её сигнатуру."""

    @abstractmethod
    async def get_status(self, signature: str) -> TransactionStatus:
        ...

    @abstractmethod
    async def get_balance(self, account: str) -> int:
        ...

    @abstractmethod
    async def fund(self, account: str, amount: int) -> None:
        ...
