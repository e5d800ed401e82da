"""AES-256-CBC stage backed by PyCryptodomex.

The key is the SHA-256 of the caller's secret and the IV is the fixed
``FIXED_IV`` constant, so identical (secret, plaintext) pairs always produce
identical ciphertext.
"""

from __future__ import annotations

from typing import Union

from Cryptodome.Cipher import AES
from Cryptodome.Util.Padding import pad, unpad

from .constants import BLOCK_SIZE, FIXED_IV, KEY_SIZE
from .errors import CipherError
from .hashutil import derive_key


class CipherContext:
    def __init__(self, key: bytes, iv: bytes = FIXED_IV):
        if len(key) != KEY_SIZE:
            raise ValueError("Key must be 32 bytes for AES-256")
        if len(iv) != BLOCK_SIZE:
            raise ValueError("IV must be 16 bytes")
        self.key = key
        self.iv = iv

    @classmethod
    def from_secret(cls, secret: Union[bytes, str]) -> "CipherContext":
        return cls(derive_key(secret))

    def _new(self):
        # CBC cipher objects are stateful; one per operation.
        return AES.new(self.key, AES.MODE_CBC, iv=self.iv)

    def encrypt(self, plaintext: bytes) -> bytes:
        try:
            return self._new().encrypt(pad(plaintext, BLOCK_SIZE, style="pkcs7"))
        except ValueError as e:
            raise CipherError("Encrypt failed") from e

    def decrypt(self, ciphertext: bytes) -> bytes:
        if not ciphertext or len(ciphertext) % BLOCK_SIZE:
            raise CipherError("Decrypt failed")
        try:
            return unpad(self._new().decrypt(ciphertext), BLOCK_SIZE, style="pkcs7")
        except ValueError as e:
            raise CipherError("Decrypt failed") from e
