from typing import Optional

from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from app.core.fernet_crypto import decrypt_field, encrypt_field


class EncryptedString(TypeDecorator):
    """Transparent encryption/decryption for string fields using Fernet."""

    impl = LargeBinary
    cache_ok = True

    def __init__(self, *, secret: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._secret = secret

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return bytes(encrypt_field(str(value), secret=self._secret))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decrypt_field(value, secret=self._secret)


__all__ = ["EncryptedString"]
