import json
import sqlite3

import pytest

from otpcore.credential import new_credential
from otpvault import (
    AccountNotFound,
    AccountStore,
    DecryptionError,
    DuplicateAccount,
    MemoryKeyValueStore,
    SqliteKeyValueStore,
    VaultCipher,
    VaultUnreadable,
)
from otpvault.account_store import ACCOUNTS_STORAGE_KEY, ENCRYPTED_STORAGE_ENABLED_KEY


def _account(name="alice", **kwargs):
    return new_credential(name, "JBSWY3DPEHPK3PXP", issuer="Example", **kwargs)


def test_empty_store(store):
    assert store.get_accounts() == []
    assert store.is_encrypted_storage_enabled() is False


def test_add_and_get(store):
    account = store.add_account(_account())
    assert store.get_accounts() == [account]
    assert store.get_account(account.id) == account


def test_duplicate_id_is_rejected(store):
    account = store.add_account(_account())
    with pytest.raises(DuplicateAccount):
        store.add_account(account)
    assert len(store.get_accounts()) == 1


def test_update(store):
    account = store.add_account(_account())
    store.update_account(account.replace(name="alice2"))
    assert store.get_account(account.id).name == "alice2"


def test_update_and_delete_missing_account(store):
    missing = _account()
    with pytest.raises(AccountNotFound):
        store.update_account(missing)
    with pytest.raises(AccountNotFound):
        store.delete_account(missing.id)
    with pytest.raises(AccountNotFound):
        store.get_account(missing.id)


def test_delete(store):
    keep = store.add_account(_account("keep"))
    gone = store.add_account(_account("gone"))
    store.delete_account(gone.id)
    assert store.get_accounts() == [keep]


def test_save_accounts_replaces_collection(store):
    store.add_account(_account("old"))
    fresh = [_account("a"), _account("b")]
    store.save_accounts(fresh)
    assert store.get_accounts() == fresh


def test_plain_storage_format(store, kv):
    account = store.add_account(_account())
    stored = json.loads(kv.get_string(ACCOUNTS_STORAGE_KEY))
    assert stored == [account.to_dict()]


def test_enabling_encryption_keeps_accounts(store, kv):
    account = store.add_account(_account())
    store.set_encrypted_storage(True)

    assert kv.get_string(ENCRYPTED_STORAGE_ENABLED_KEY) == "true"
    assert "JBSWY3DPEHPK3PXP" not in kv.get_string(ACCOUNTS_STORAGE_KEY)
    assert store.get_accounts() == [account]

    store.set_encrypted_storage(False)
    assert "JBSWY3DPEHPK3PXP" in kv.get_string(ACCOUNTS_STORAGE_KEY)
    assert store.get_accounts() == [account]


def test_tampered_ciphertext_reads_as_empty(store, kv):
    store.add_account(_account())
    store.set_encrypted_storage(True)
    token = kv.get_string(ACCOUNTS_STORAGE_KEY)
    flipped = "A" if token[20] != "A" else "B"
    kv.set_string(ACCOUNTS_STORAGE_KEY, token[:20] + flipped + token[21:])
    assert store.get_accounts() == []


def test_corrupt_plain_data_reads_as_empty(store, kv):
    kv.set_string(ACCOUNTS_STORAGE_KEY, "{not json")
    assert store.get_accounts() == []
    kv.set_string(ACCOUNTS_STORAGE_KEY, json.dumps({"not": "a list"}))
    assert store.get_accounts() == []


def test_cipher_rejects_foreign_tokens():
    kv = MemoryKeyValueStore()
    token = VaultCipher(kv).encrypt("secret data")
    assert VaultCipher(kv).decrypt(token) == "secret data"
    with pytest.raises(DecryptionError):
        VaultCipher(MemoryKeyValueStore()).decrypt(token)
    with pytest.raises(DecryptionError):
        VaultCipher(kv).decrypt("abc")


def test_advance_counter(store):
    account = store.add_account(_account(otp_type="hotp", counter=4))
    assert store.advance_counter(account.id).counter == 5
    assert store.get_account(account.id).counter == 5


def test_advance_counter_rejects_totp(store):
    account = store.add_account(_account())
    with pytest.raises(ValueError):
        store.advance_counter(account.id)


def test_export_import(store):
    accounts = store.add_accounts([_account("a"), _account("b")])
    backup = store.export_accounts()
    data = json.loads(backup)
    assert data["version"] == "1.0.0"
    assert data["exportedAt"].endswith("Z")

    other = AccountStore(MemoryKeyValueStore())
    other.add_account(_account("existing"))
    assert other.import_accounts(backup) == 2
    assert other.get_accounts() == accounts


def test_import_merge(store):
    existing = store.add_account(_account("existing"))
    backup = json.dumps({"accounts": [_account("new").to_dict()]})
    assert store.import_accounts(backup, replace=False) == 1
    assert [account.name for account in store.get_accounts()] == [existing.name, "new"]


def test_import_skips_invalid_entries_and_fills_ids(store):
    backup = json.dumps({
        "accounts": [
            {"name": "no id", "secret": "JBSWY3DPEHPK3PXP"},
            {"id": "x", "name": "bad secret", "secret": "1!"},
            "not an object",
        ]
    })
    assert store.import_accounts(backup) == 1
    (account,) = store.get_accounts()
    assert account.name == "no id"
    assert account.id


@pytest.mark.parametrize("backup", ["not json", "[]", '{"accounts": "x"}', '{"accounts": [{"id": "x"}]}'])
def test_import_rejects_unusable_backups(store, backup):
    existing = store.add_account(_account())
    assert store.import_accounts(backup) == 0
    assert store.get_accounts() == [existing]


def test_sqlite_store_persists(sqlite_store, db_path):
    account = sqlite_store.add_account(_account())
    sqlite_store.set_encrypted_storage(True)

    reopened = AccountStore(SqliteKeyValueStore(db_path))
    assert reopened.is_encrypted_storage_enabled()
    assert reopened.get_accounts() == [account]

    conn = sqlite3.connect(db_path)
    try:
        keys = {row[0] for row in conn.execute("SELECT key FROM kv_store")}
    finally:
        conn.close()
    assert ACCOUNTS_STORAGE_KEY in keys


def test_sqlite_store_uses_environment_path(tmp_path, monkeypatch):
    path = tmp_path / "env.db"
    monkeypatch.setenv("ONETIME_DB", str(path))
    kv = SqliteKeyValueStore()
    kv.set_string("k", "v1")
    kv.set_string("k", "v2")
    assert kv.get_string("k") == "v2"
    assert kv.get_string("missing") is None
    assert path.exists()


def _corrupt_second_record(kv):
    records = json.loads(kv.get_string(ACCOUNTS_STORAGE_KEY))
    records[1]["digits"] = 0
    kv.set_string(ACCOUNTS_STORAGE_KEY, json.dumps(records))


def test_invalid_record_blocks_writes(store, kv):
    alice = store.add_account(_account("alice"))
    store.add_account(_account("bob"))
    _corrupt_second_record(kv)
    before = kv.get_string(ACCOUNTS_STORAGE_KEY)

    assert store.get_accounts() == [alice]
    with pytest.raises(VaultUnreadable):
        store.add_account(_account("carol"))
    with pytest.raises(VaultUnreadable):
        store.delete_account(alice.id)
    with pytest.raises(VaultUnreadable):
        store.update_account(alice.replace(name="alice2"))
    with pytest.raises(VaultUnreadable):
        store.set_encrypted_storage(True)
    with pytest.raises(VaultUnreadable):
        store.import_accounts(json.dumps({"accounts": [_account("dave").to_dict()]}), replace=False)

    assert kv.get_string(ACCOUNTS_STORAGE_KEY) == before
    assert [record["name"] for record in json.loads(before)] == ["alice", "bob"]


def test_tampered_vault_is_not_overwritten(store, kv):
    account = store.add_account(_account())
    store.set_encrypted_storage(True)
    token = kv.get_string(ACCOUNTS_STORAGE_KEY)
    tampered = token[:20] + ("A" if token[20] != "A" else "B") + token[21:]
    kv.set_string(ACCOUNTS_STORAGE_KEY, tampered)

    with pytest.raises(VaultUnreadable):
        store.add_account(_account("carol"))
    assert kv.get_string(ACCOUNTS_STORAGE_KEY) == tampered

    # a full restore is still allowed
    backup = json.dumps({"accounts": [account.to_dict()]})
    assert store.import_accounts(backup) == 1
    assert store.get_accounts() == [account]
