"""Конфигурация клиента и devnet-сервиса."""
import os
from dataclasses import dataclass, field
from functools import lru_cache


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


@dataclass(frozen=True)
class Config:
    # Подтверждение транзакций
    confirm_poll_interval: float = 0.5
    confirm_attempts: int = 5
    # Плательщик комиссий
    fee_payer_low_watermark: int = 100
    fee_payer_high_watermark: int = 1000
    funding_poll_interval: float = 0.2
    funding_attempts: int = 5
    # Keep-alive и живость соперника
    keep_alive_period: float = 2.0
    keep_alive_failure_threshold: int = 3
    keep_alive_units_per_second: int = 10
    liveness_threshold: int = 100
    # Матчмейкинг
    poll_interval: float = 0.5
    debug: bool = False
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])


@lru_cache
def get_config() -> Config:
    return Config(
        confirm_poll_interval=_env_float("TTT_CONFIRM_POLL_INTERVAL", 0.5),
        confirm_attempts=_env_int("TTT_CONFIRM_ATTEMPTS", 5),
        fee_payer_low_watermark=_env_int("TTT_FEE_PAYER_LOW", 100),
        fee_payer_high_watermark=_env_int("TTT_FEE_PAYER_HIGH", 1000),
        funding_poll_interval=_env_float("TTT_FUNDING_POLL_INTERVAL", 0.2),
        funding_attempts=_env_int("TTT_FUNDING_ATTEMPTS", 5),
        keep_alive_period=_env_float("TTT_KEEP_ALIVE_PERIOD", 2.0),
        keep_alive_failure_threshold=_env_int("TTT_KEEP_ALIVE_FAILURES", 3),
        keep_alive_units_per_second=_env_int("TTT_KEEP_ALIVE_UNITS_PER_SECOND", 10),
        liveness_threshold=_env_int("TTT_LIVENESS_THRESHOLD", 100),
        poll_interval=_env_float("TTT_POLL_INTERVAL", 0.5),
        debug=os.environ.get("DEBUG", "0").lower() in ("1", "true", "yes"),
        allowed_origins=os.environ.get("ALLOWED_ORIGINS", "*").split(","),
    )
