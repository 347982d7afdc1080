"""Persistence for authenticator accounts: key-value stores, AES-GCM, account collection."""

from .account_store import AccountNotFound, AccountStore, DuplicateAccount, VaultUnreadable
from .crypto import DecryptionError, VaultCipher
from .kv_store import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore

__all__ = [
    "AccountNotFound",
    "AccountStore",
    "DecryptionError",
    "DuplicateAccount",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqliteKeyValueStore",
    "VaultCipher",
    "VaultUnreadable",
]
