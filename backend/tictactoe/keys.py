"""
Ключи игроков и подписи транзакций.
Публичный ключ: sha256 от секрета. Подпись: HMAC-SHA256 сообщения.
"""
import hashlib
import hmac
import secrets
from dataclasses import dataclass, field

from .constants import KEY_SIZE


@dataclass(frozen=True)
class Keypair:
    secret: bytes = field(repr=False)

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(secrets.token_bytes(KEY_SIZE))

    @property
    def public_key(self) -> str:
        return hashlib.sha256(self.secret).hexdigest()

    def sign(self, message: bytes) -> str:
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()


def is_valid_key(key: str) -> bool:
    """Ключ состоит из 64 hex-символов."""
    if len(key) != KEY_SIZE * 2:
        return False
    try:
        bytes.fromhex(key)
    except ValueError:
        return False
    return True
