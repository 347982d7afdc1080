"""The account collection, persisted as one value in a key-value store.

Every change is read whole list -> modify -> write whole list. The store
holds a lock around each cycle so writers in one process never interleave;
separate processes sharing one database must coordinate themselves.
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from otpcore.credential import Credential
from otpcore.exceptions import OTPError

from .crypto import DecryptionError, VaultCipher

logger = logging.getLogger(__name__)

ACCOUNTS_STORAGE_KEY = "onetime_authenticator_accounts"
ENCRYPTED_STORAGE_ENABLED_KEY = "encrypted_storage_enabled"
BACKUP_VERSION = "1.0.0"


class AccountNotFound(LookupError):
    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__(f"Account {credential_id} not found")


class DuplicateAccount(ValueError):
    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__(f"Account {credential_id} already exists")


class VaultUnreadable(RuntimeError):
    """Stored accounts exist but cannot be decoded, so they must not be overwritten."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Stored accounts cannot be read ({reason}); refusing to overwrite them")


def _load_records(data: str) -> list:
    items = json.loads(data)
    if not isinstance(items, list):
        raise ValueError("stored accounts are not a list")
    return items


class AccountStore:
    def __init__(self, kv_store, cipher: Optional[VaultCipher] = None):
        self.kv_store = kv_store
        self.cipher = cipher or VaultCipher(kv_store)
        self._lock = threading.RLock()

    # --- encryption flag ---------------------------------------------------
    def is_encrypted_storage_enabled(self) -> bool:
        return self.kv_store.get_string(ENCRYPTED_STORAGE_ENABLED_KEY) == "true"

    def set_encrypted_storage(self, enabled: bool) -> None:
        """Switch storage format and rewrite the collection in the new one."""
        with self._lock:
            accounts = self._read_accounts()
            self.kv_store.set_string(ENCRYPTED_STORAGE_ENABLED_KEY, "true" if enabled else "false")
            self.save_accounts(accounts)
            logger.info("Encrypted storage %s", "enabled" if enabled else "disabled")

    # --- whole collection --------------------------------------------------
    def _load(self, strict: bool) -> List[Credential]:
        data = self.kv_store.get_string(ACCOUNTS_STORAGE_KEY)
        if not data:
            return []
        try:
            if self.is_encrypted_storage_enabled():
                data = self.cipher.decrypt(data)
            items = _load_records(data)
        except (DecryptionError, ValueError) as exc:
            if strict:
                raise VaultUnreadable(str(exc)) from exc
            logger.exception("Failed to read stored accounts")
            return []

        accounts: List[Credential] = []
        for index, item in enumerate(items):
            try:
                accounts.append(Credential.from_dict(item))
            except (OTPError, ValueError, TypeError, AttributeError) as exc:
                if strict:
                    raise VaultUnreadable(f"stored account {index} is invalid: {exc}") from exc
                logger.warning("Skipping unreadable stored account %d: %s", index, exc)
        return accounts

    def get_accounts(self) -> List[Credential]:
        """Every readable stored account, for display.

        Undecodable data reads as an empty list and invalid records are
        skipped. Writes go through ``_read_accounts`` instead.
        """
        return self._load(strict=False)

    def _read_accounts(self) -> List[Credential]:
        """The full stored collection; raises ``VaultUnreadable`` rather than lose data."""
        return self._load(strict=True)

    def save_accounts(self, accounts: List[Credential]) -> None:
        data = json.dumps([account.to_dict() for account in accounts or []])
        with self._lock:
            if self.is_encrypted_storage_enabled():
                data = self.cipher.encrypt(data)
            self.kv_store.set_string(ACCOUNTS_STORAGE_KEY, data)

    # --- single records ----------------------------------------------------
    def get_account(self, credential_id: str) -> Credential:
        for account in self.get_accounts():
            if account.id == credential_id:
                return account
        raise AccountNotFound(credential_id)

    def add_account(self, credential: Credential) -> Credential:
        with self._lock:
            accounts = self._read_accounts()
            if any(account.id == credential.id for account in accounts):
                raise DuplicateAccount(credential.id)
            self.save_accounts(accounts + [credential])
        logger.info("Added account %s (%s)", credential.id, credential.label)
        return credential

    def add_accounts(self, credentials: List[Credential]) -> List[Credential]:
        with self._lock:
            for credential in credentials:
                self.add_account(credential)
        return credentials

    def update_account(self, credential: Credential) -> Credential:
        with self._lock:
            accounts = self._read_accounts()
            for index, account in enumerate(accounts):
                if account.id == credential.id:
                    accounts[index] = credential
                    self.save_accounts(accounts)
                    return credential
        raise AccountNotFound(credential.id)

    def delete_account(self, credential_id: str) -> None:
        with self._lock:
            accounts = self._read_accounts()
            remaining = [account for account in accounts if account.id != credential_id]
            if len(remaining) == len(accounts):
                raise AccountNotFound(credential_id)
            self.save_accounts(remaining)
        logger.info("Deleted account %s", credential_id)

    def advance_counter(self, credential_id: str) -> Credential:
        """Move a HOTP account to its next counter value."""
        with self._lock:
            account = self.get_account(credential_id)
            if account.otp_type != "hotp":
                raise ValueError(f"Account {credential_id} is not a HOTP account")
            return self.update_account(account.replace(counter=account.counter + 1))

    # --- backups -----------------------------------------------------------
    def export_accounts(self) -> str:
        return json.dumps(
            {
                "accounts": [account.to_dict() for account in self.get_accounts()],
                "exportedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                "version": BACKUP_VERSION,
            }
        )

    def import_accounts(self, backup_data: str, replace: bool = True) -> int:
        """Load a backup made by ``export_accounts``; returns how many accounts were kept.

        Entries that do not validate are dropped. With ``replace`` the backup
        becomes the whole collection (also over unreadable stored data), otherwise
        its accounts are merged in by id.
        """
        try:
            data = json.loads(backup_data)
        except ValueError:
            logger.warning("Backup is not valid JSON")
            return 0
        items = data.get("accounts") if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.warning("Backup has no account list")
            return 0

        imported: List[Credential] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                imported.append(Credential.from_dict({**item, "id": item.get("id") or uuid.uuid4().hex}))
            except (OTPError, ValueError, TypeError) as exc:
                logger.warning("Skipping invalid account in backup: %s", exc)
        if not imported:
            logger.warning("Backup holds no valid accounts")
            return 0

        with self._lock:
            by_id = {} if replace else {account.id: account for account in self._read_accounts()}
            for account in imported:
                by_id[account.id] = account
            self.save_accounts(list(by_id.values()))
        logger.info("Imported %d of %d accounts", len(imported), len(items))
        return len(imported)
