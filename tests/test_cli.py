import json

import pytest

from otpcore import otp_cli
from otpcore.otp_cli import main
from otpvault import AccountStore, SqliteKeyValueStore

from .conftest import EXAMPLE_URI, RFC_SEEDS, b32


@pytest.fixture()
def run(db_path, capsys):
    def _run(*argv):
        code = main(["--db", db_path, *argv])
        out, err = capsys.readouterr()
        return code, out, err

    return _run


def _accounts(db_path):
    return AccountStore(SqliteKeyValueStore(db_path)).get_accounts()


def test_add_and_list(run, db_path):
    code, out, _ = run("add", EXAMPLE_URI)
    assert code == 0
    assert "Example:alice@example.com" in out

    (account,) = _accounts(db_path)
    code, out, _ = run("list")
    assert account.id[:8] in out
    assert "TOTP" in out


def test_list_empty(run):
    assert run("list")[1].strip() == "No accounts stored."


def test_add_rejects_bad_text(run, db_path):
    code, _, err = run("add", "not a url")
    assert code == 1
    assert "valid authentication URL" in err
    assert _accounts(db_path) == []


def test_new_generates_secret(run, db_path):
    code, out, _ = run("new", "--name", "bob", "--issuer", "Acme", "--digits", "8")
    assert code == 0
    (account,) = _accounts(db_path)
    assert account.digits == 8
    assert len(account.secret) == 32
    assert account.to_uri() in out


def test_new_rejects_invalid_digits(run):
    assert run("new", "--name", "bob", "--digits", "0")[0] == 1


def test_code_by_id_prefix(run, db_path, monkeypatch):
    monkeypatch.setattr(otp_cli.time, "time", lambda: 59)
    run("add", f"otpauth://totp/rfc?secret={b32(RFC_SEEDS['SHA1'])}&digits=8")
    (account,) = _accounts(db_path)
    code, out, _ = run("code", account.id[:6])
    assert code == 0
    assert "94287082" in out


def test_unknown_id(run):
    code, _, err = run("code", "nope")
    assert code == 1
    assert "No account matches" in err


def test_next_advances_hotp(run, db_path):
    run("add", f"otpauth://hotp/rfc?secret={b32(RFC_SEEDS['SHA1'])}")
    (account,) = _accounts(db_path)
    code, out, _ = run("next", account.id)
    assert code == 0
    assert "287082" in out
    assert _accounts(db_path)[0].counter == 1


def test_uri_and_remove(run, db_path):
    run("add", EXAMPLE_URI)
    (account,) = _accounts(db_path)
    assert run("uri", account.id)[1].strip() == account.to_uri()
    assert run("remove", account.id)[0] == 0
    assert _accounts(db_path) == []


def test_export_import(run, db_path, tmp_path):
    run("add", EXAMPLE_URI)
    code, out, _ = run("export")
    assert code == 0
    backup = tmp_path / "backup.json"
    backup.write_text(out, encoding="utf-8")
    assert len(json.loads(out)["accounts"]) == 1

    other_db = str(tmp_path / "other.db")
    assert main(["--db", other_db, "import", str(backup)]) == 0
    assert _accounts(other_db)[0].name == "alice@example.com"


def test_import_missing_file(run, tmp_path):
    code, _, err = run("import", str(tmp_path / "missing.json"))
    assert code == 1
    assert err.startswith("[!]")


def test_export_migration(run):
    run("add", EXAMPLE_URI)
    out = run("export", "--migration")[1]
    assert out.startswith("otpauth-migration://offline?data=")


def test_encryption_toggle(run, db_path):
    run("add", EXAMPLE_URI)
    assert run("encryption", "on")[0] == 0
    store = AccountStore(SqliteKeyValueStore(db_path))
    assert store.is_encrypted_storage_enabled()
    assert len(store.get_accounts()) == 1


def test_add_refused_on_unreadable_vault(run, db_path):
    from otpvault.account_store import ACCOUNTS_STORAGE_KEY

    SqliteKeyValueStore(db_path).set_string(ACCOUNTS_STORAGE_KEY, "[1]")
    code, _, err = run("add", EXAMPLE_URI)
    assert code == 1
    assert "refusing to overwrite" in err
    assert SqliteKeyValueStore(db_path).get_string(ACCOUNTS_STORAGE_KEY) == "[1]"
