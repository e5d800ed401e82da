from __future__ import annotations

import hashlib
import hmac
from typing import Union

from .constants import DIGEST_SIZE


def digest(data: bytes) -> bytes:
    """Return the 20-byte SHA-1 fingerprint stored ahead of the payload."""
    return hashlib.sha1(data).digest()


def digests_equal(a: bytes, b: bytes) -> bool:
    # Constant time; a length mismatch is simply unequal.
    return hmac.compare_digest(a, b)


def derive_key(secret: Union[bytes, str]) -> bytes:
    """Normalize an arbitrary-length secret to a 32-byte AES key (SHA-256)."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hashlib.sha256(secret).digest()


def split_digest(payload: bytes) -> tuple[bytes, bytes]:
    return payload[:DIGEST_SIZE], payload[DIGEST_SIZE:]
