"""
Леджер в памяти процесса: аккаунты, балансы, исполнение программы игры
и асинхронная доставка уведомлений. Используется devnet-сервисом и тестами.
"""
import asyncio
import itertools
import logging
import time
from collections import defaultdict
from typing import Callable, Iterable

from .constants import TRANSACTION_FEE
from .errors import AccountNotFound, LedgerTransportError
from .keys import Keypair
from .ledger import (
    AccountCallback,
    LedgerClient,
    RejectionKind,
    Transaction,
    TransactionStatus,
)
from .program import ProgramError, process_instruction

logger = logging.getLogger(__name__)


class LocalLedger(LedgerClient):
    def __init__(
        self,
        fee: int = TRANSACTION_FEE,
        pending_polls: int = 0,
        clock: Callable[[], float] = time.time,
        units_per_second: int = 10,
    ):
        self.fee = fee
        # Часы леджера: слот каждой транзакции строго больше предыдущего
        self.clock = clock
        self.units_per_second = units_per_second
        self.slot = 0
        # Сколько первых опросов статуса каждой транзакции вернут Pending
        self.pending_polls = pending_polls
        # Внесение сбоев
        self.offline = False
        self.fail_funding = False
        self.transaction_count = 0
        self._accounts: dict[str, bytes] = {}
        self._balances: dict[str, int] = defaultdict(int)
        self._statuses: dict[str, TransactionStatus] = {}
        self._polls: dict[str, int] = defaultdict(int)
        self._subscriptions: dict[int, tuple[str, AccountCallback]] = {}
        self._handles = itertools.count(1)
        self._held: list[tuple[AccountCallback, bytes]] | None = None

    def _check_online(self) -> None:
        if self.offline:
            raise LedgerTransportError("ledger unreachable")

    async def read_account(self, account: str) -> bytes:
        self._check_online()
        data = self._accounts.get(account)
        if data is None:
            raise AccountNotFound(account)
        return data

    def subscribe(self, account: str, callback: AccountCallback) -> int:
        handle = next(self._handles)
        self._subscriptions[handle] = (account, callback)
        return handle

    def unsubscribe(self, handle: int) -> None:
        self._subscriptions.pop(handle, None)

    async def submit(self, transaction: Transaction, signers: Iterable[Keypair]) -> str:
        self._check_online()
        signatures = transaction.sign(signers)
        if not signatures:
            raise LedgerTransportError("transaction is not signed")
        signature = signatures.get(transaction.fee_payer or "") or next(iter(signatures.values()))
        self._statuses[signature] = self._execute(transaction, signatures)
        return signature

    def _execute(self, transaction: Transaction, signatures: dict[str, str]) -> TransactionStatus:
        missing = transaction.required_signers - signatures.keys()
        if missing:
            return TransactionStatus.rejected(RejectionKind.MISSING_SIGNATURE, ", ".join(sorted(missing)))
        payer = transaction.fee_payer or next(iter(signatures))
        if self._balances[payer] < self.fee:
            return TransactionStatus.rejected(RejectionKind.INSUFFICIENT_FUNDS, payer)
        # Комиссия списывается и с неудачных транзакций
        self._balances[payer] -= self.fee

        self.slot = max(int(self.clock() * self.units_per_second), self.slot + 1)
        working = dict(self._accounts)
        changed: dict[str, bytes] = {}
        try:
            for instruction in transaction.instructions:
                updates = process_instruction(instruction, working, self.slot)
                working.update(updates)
                changed.update(updates)
        except ProgramError as e:
            logger.info("Ledger: program error: %s", e)
            return TransactionStatus.rejected(RejectionKind.PROGRAM_RUNTIME_ERROR, str(e))

        self.transaction_count += 1
        for account, data in changed.items():
            if self._accounts.get(account) != data:
                self._accounts[account] = data
                self._notify(account, data)
        return TransactionStatus.confirmed()

    def _notify(self, account: str, data: bytes) -> None:
        for subscribed, callback in list(self._subscriptions.values()):
            if subscribed != account:
                continue
            if self._held is not None:
                self._held.append((callback, data))
            else:
                asyncio.get_running_loop().call_soon(callback, data)

    async def get_status(self, signature: str) -> TransactionStatus:
        self._check_online()
        status = self._statuses.get(signature)
        if status is None:
            return TransactionStatus.rejected(RejectionKind.UNKNOWN_SIGNATURE, signature)
        self._polls[signature] += 1
        if self._polls[signature] <= self.pending_polls:
            return TransactionStatus.pending()
        return status

    async def get_balance(self, account: str) -> int:
        self._check_online()
        return self._balances[account]

    async def fund(self, account: str, amount: int) -> None:
        self._check_online()
        if self.fail_funding:
            raise LedgerTransportError(f"funding {account} failed")
        self._balances[account] += amount

    def set_balance(self, account: str, amount: int) -> None:
        self._balances[account] = amount

    def hold_notifications(self) -> None:
        """Копить уведомления вместо доставки."""
        if self._held is None:
            self._held = []

    def release_notifications(self, reverse: bool = False) -> int:
        """Доставить накопленные уведомления; при reverse в обратном порядке."""
        held, self._held = self._held or [], None
        if reverse:
            held.reverse()
        loop = asyncio.get_running_loop()
        for callback, data in held:
            loop.call_soon(callback, data)
        return len(held)
