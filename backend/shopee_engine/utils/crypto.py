"""At-rest protection for partner keys and shop tokens.

Stored form::

    ENC:v1:<base64(nonce | AES-GCM ciphertext+tag)>

The AES-256 key is derived from ``SECRET_KEY`` with HKDF-SHA256. Values
without the prefix are treated as plaintext so rows written before
encryption was switched on stay readable. If ``SECRET_KEY`` changes, old
blobs no longer decrypt; ``decrypt`` then returns the blob untouched and
callers detect that with :func:`is_encrypted`.
"""

from __future__ import annotations

import base64
import binascii
import os
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from shopee_engine.config import settings
from shopee_engine.utils.logger import logger

PREFIX = "ENC:v1:"
NONCE_BYTES = 12
KEY_BYTES = 32
HKDF_INFO = b"shopee-engine/secrets-at-rest"


@lru_cache(maxsize=4)
def _derive_key(secret: str) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=None,
        info=HKDF_INFO,
    ).derive(secret.encode("utf-8"))


def _cipher() -> AESGCM:
    return AESGCM(_derive_key(settings.secret_key))


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(PREFIX)


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    if plaintext is None:
        return None
    nonce = os.urandom(NONCE_BYTES)
    sealed = _cipher().encrypt(nonce, str(plaintext).encode("utf-8"), None)
    return PREFIX + base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(value: Optional[str]) -> Optional[str]:
    if not is_encrypted(value):
        return value

    try:
        raw = base64.b64decode(value[len(PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        logger.error("[crypto] Stored secret is not valid base64; leaving it encrypted")
        return value
    if len(raw) <= NONCE_BYTES:
        return value

    try:
        plain = _cipher().decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], None)
    except InvalidTag:
        logger.error("[crypto] Stored secret failed authentication; was SECRET_KEY rotated?")
        return value
    return plain.decode("utf-8")
