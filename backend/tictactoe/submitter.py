"""
Отправка команд в леджер с ограниченным ожиданием подтверждения.
Мягкий отказ: ошибка программы считается успехом, если вызывающий это разрешил.
"""
import asyncio
import logging
import time
from typing import Callable, Iterable

from .config import Config, get_config
from .errors import FundingError, NotConfirmed, TransportFailure
from .fee_payer import FeePayerManager
from .keys import Keypair
from .ledger import TRANSPORT_ERRORS, Instruction, LedgerClient, StatusKind, Transaction, TransactionStatus

logger = logging.getLogger(__name__)

TransactionListener = Callable[[str, dict], None]


class TransactionSubmitter:
    def __init__(
        self,
        ledger: LedgerClient,
        config: Config | None = None,
        fee_payer: FeePayerManager | None = None,
    ):
        self.ledger = ledger
        self.config = config or get_config()
        self.fee_payer = fee_payer or FeePayerManager(ledger, self.config)
        self._listeners: dict[TransactionListener, None] = {}

    def on_transaction(self, listener: TransactionListener) -> None:
        self._listeners[listener] = None

    def remove_transaction_listener(self, listener: TransactionListener) -> None:
        self._listeners.pop(listener, None)

    async def submit(
        self,
        title: str,
        instructions: Iterable[Instruction],
        signers: Iterable[Keypair],
        soft_failure_allowed: bool = False,
    ) -> None:
        """
        Отправить команду и дождаться подтверждения.
        TransportFailure: сеть или пополнение плательщика (плательщик сброшен),
        NotConfirmed: отказ или исчерпан бюджет опросов.
        """
        when = time.time()
        try:
            payer = await self.fee_payer.acquire()
        except FundingError as e:
            logger.warning("Submit %s: fee payer unavailable: %s", title, e)
            raise TransportFailure(title, e) from e

        transaction = Transaction(fee_payer=payer.public_key).add(*instructions)
        try:
            signature = await self.ledger.submit(transaction, [payer, *signers])
        except TRANSPORT_ERRORS as e:
            # Возможно, леджер перезапущен: плательщика больше нет
            self.fee_payer.invalidate()
            logger.warning("Submit %s: transport failure: %s", title, e)
            raise TransportFailure(title, e) from e

        status = await self._await_confirmation(title, signature)
        if status.kind is StatusKind.CONFIRMED:
            logger.info("Submit %s: confirmed %s", title, signature[:16])
        elif status.is_program_error and soft_failure_allowed:
            logger.info("Submit %s: not applied by program (%s), ignoring", title, status.detail)
        else:
            logger.warning("Submit %s: not confirmed: %s", title, status)
            raise NotConfirmed(title, signature, status)
        self._notify(title, when, payer, signature, transaction)

    async def _await_confirmation(self, title: str, signature: str) -> TransactionStatus:
        status = TransactionStatus.pending()
        for attempt in range(1, self.config.confirm_attempts + 1):
            try:
                status = await self.ledger.get_status(signature)
            except TRANSPORT_ERRORS as e:
                logger.warning("Submit %s: status poll #%d failed: %s", title, attempt, e)
            else:
                if status.kind is not StatusKind.PENDING:
                    return status
            if attempt < self.config.confirm_attempts:
                await asyncio.sleep(self.config.confirm_poll_interval)
        return status

    def _notify(
        self,
        title: str,
        when: float,
        payer: Keypair,
        signature: str,
        transaction: Transaction,
    ) -> None:
        if not self._listeners:
            return
        body = {
            "time": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(when)),
            "from": payer.public_key,
            "signature": signature,
            "instructions": [
                {"keys": list(i.accounts), "data": "0x" + i.data.hex()}
                for i in transaction.instructions
            ],
        }
        for listener in list(self._listeners):
            listener(title, body)
