"""AES-256-GCM encryption of the stored account list.

The 32-byte key is generated on first use from os.urandom and kept, Base64
encoded, in the same key-value store under ``ENCRYPTION_KEY_STORAGE_KEY``.
Tokens are urlsafe Base64 of ``nonce (12 bytes) + ciphertext + tag``.
"""
from __future__ import annotations

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

ENCRYPTION_KEY_STORAGE_KEY = "onetime_authenticator_encryption_key"
KEY_BYTES = 32
NONCE_BYTES = 12


class DecryptionError(Exception):
    """The token is malformed or was not produced with this key."""


def generate_encryption_key() -> bytes:
    return os.urandom(KEY_BYTES)


class VaultCipher:
    def __init__(self, kv_store, key: Optional[bytes] = None):
        self.kv_store = kv_store
        self._key = key

    def _load_key(self) -> bytes:
        if self._key is not None:
            return self._key
        stored = self.kv_store.get_string(ENCRYPTION_KEY_STORAGE_KEY)
        if stored:
            key = base64.urlsafe_b64decode(stored)
        else:
            key = generate_encryption_key()
            self.kv_store.set_string(
                ENCRYPTION_KEY_STORAGE_KEY, base64.urlsafe_b64encode(key).decode("ascii")
            )
        if len(key) != KEY_BYTES:
            raise ValueError("AES-256-GCM key must be 32 bytes")
        self._key = key
        return key

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        ct = AESGCM(self._load_key()).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.urlsafe_b64encode(nonce + ct).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            raw = base64.urlsafe_b64decode(token.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise DecryptionError("token is not Base64") from exc
        if len(raw) <= NONCE_BYTES:
            raise DecryptionError("token is too short")
        nonce, ct = raw[:NONCE_BYTES], raw[NONCE_BYTES:]
        try:
            plaintext = AESGCM(self._load_key()).decrypt(nonce, ct, None)
        except InvalidTag as exc:
            raise DecryptionError("token failed authentication") from exc
        return plaintext.decode("utf-8")
