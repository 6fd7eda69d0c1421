"""Password-based envelope encryption for stored documents.

An envelope is ``salt || iv || tag || ciphertext`` with fixed-width header
fields. The layout is persisted on disk, so the constants below must never
change: existing envelopes have to stay decryptable.
"""

from __future__ import annotations

import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.core.errors import IntegrityError

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt_to_envelope(plaintext: bytes, passphrase: str) -> bytes:
    if not passphrase:
        raise ValueError("Envelope passphrase must not be empty")
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(passphrase, salt)
    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(iv, bytes(plaintext), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return salt + iv + tag + ciphertext


def decrypt_from_envelope(envelope: bytes, passphrase: str) -> bytes:
    if len(envelope) < HEADER_LENGTH:
        raise IntegrityError("Envelope is truncated")
    salt = envelope[:SALT_LENGTH]
    iv = envelope[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = envelope[SALT_LENGTH + IV_LENGTH : HEADER_LENGTH]
    ciphertext = envelope[HEADER_LENGTH:]
    key = _derive_key(passphrase, salt)
    try:
        return AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise IntegrityError("Envelope authentication failed") from exc


def plaintext_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


__all__ = [
    "HEADER_LENGTH",
    "IV_LENGTH",
    "SALT_LENGTH",
    "TAG_LENGTH",
    "decrypt_from_envelope",
    "encrypt_to_envelope",
    "plaintext_hash",
]
