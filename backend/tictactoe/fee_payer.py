"""
Плательщик комиссий: один закэшированный пополненный аккаунт на процесс.
Пополняется до верхней отметки, отбрасывается при подозрении на устаревание.
"""
import asyncio
import logging

from .config import Config, get_config
from .errors import FundingError
from .keys import Keypair
from .ledger import TRANSPORT_ERRORS, LedgerClient

logger = logging.getLogger(__name__)


class FeePayerManager:
    def __init__(self, ledger: LedgerClient, config: Config | None = None):
        self.ledger = ledger
        self.config = config or get_config()
        self._payer: Keypair | None = None

    @property
    def cached(self) -> Keypair | None:
        return self._payer

    def invalidate(self) -> None:
        if self._payer is not None:
            logger.info("FeePayer: invalidating %s", self._payer.public_key[:8])
        self._payer = None

    async def acquire(self) -> Keypair:
        """
        Вернуть пополненного плательщика. Новый аккаунт создаётся, если кэш пуст;
        баланс ниже нижней отметки пополняется до верхней.
        При неудаче кэш сбрасывается и поднимается FundingError.
        """
        payer = self._payer
        try:
            if payer is None:
                payer = Keypair.generate()
                logger.info("FeePayer: allocating %s", payer.public_key[:8])
                await self._top_up(payer, 0)
            else:
                balance = await self.ledger.get_balance(payer.public_key)
                if balance < self.config.fee_payer_low_watermark:
                    await self._top_up(payer, balance)
        except (FundingError, *TRANSPORT_ERRORS) as e:
            self._payer = None
            if isinstance(e, FundingError):
                raise
            raise FundingError(str(e)) from e
        self._payer = payer
        return payer

    async def _top_up(self, payer: Keypair, balance: int) -> None:
        target = self.config.fee_payer_high_watermark
        logger.info("FeePayer: topping up %s from %d to %d", payer.public_key[:8], balance, target)
        await self.ledger.fund(payer.public_key, target - balance)
        for _ in range(self.config.funding_attempts):
            if await self.ledger.get_balance(payer.public_key) >= target:
                return
            await asyncio.sleep(self.config.funding_poll_interval)
        raise FundingError(f"balance of {payer.public_key} did not reach {target}")
