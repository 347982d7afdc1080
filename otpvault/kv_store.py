"""Key-value stores backing the account vault.

The vault only needs ``get_string`` / ``set_string``; anything offering those
two methods can stand in (a platform keychain, a test double, ...).
"""
from __future__ import annotations

import os
import sqlite3
import threading
from typing import Dict, Optional, Protocol

from .setup_database import DATABASE_FILE, setup_database


class KeyValueStore(Protocol):
    def get_string(self, key: str) -> Optional[str]:
        ...

    def set_string(self, key: str, value: str) -> None:
        ...


class MemoryKeyValueStore:
    """Process-local store; used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_string(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_string(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


class SqliteKeyValueStore:
    """Strings kept in the ``kv_store`` table of a sqlite file.

    A connection is opened per call, so one instance can be shared between
    threads.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or os.environ.get("ONETIME_DB", DATABASE_FILE)
        setup_database(self.path)

    def get_db_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def get_string(self, key: str) -> Optional[str]:
        conn = self.get_db_connection()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return row["value"] if row else None

    def set_string(self, key: str, value: str) -> None:
        conn = self.get_db_connection()
        try:
            conn.execute(
                """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                  updated_at = CURRENT_TIMESTAMP""",
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()
