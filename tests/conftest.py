import base64

import pytest

from otpvault import AccountStore, MemoryKeyValueStore, SqliteKeyValueStore

# RFC 6238 appendix B seeds
RFC_SEEDS = {
    "SHA1": b"12345678901234567890",
    "SHA256": b"12345678901234567890123456789012",
    "SHA512": b"1234567890123456789012345678901234567890123456789012345678901234",
}

EXAMPLE_URI = "otpauth://totp/Example:alice@example.com?secret=JBSWY3DPEHPK3PXP&issuer=Example"


def b32(raw: bytes) -> str:
    return base64.b32encode(raw).decode("ascii")


@pytest.fixture()
def kv():
    return MemoryKeyValueStore()


@pytest.fixture()
def store(kv):
    return AccountStore(kv)


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "vault" / "test.db")


@pytest.fixture()
def sqlite_store(db_path):
    return AccountStore(SqliteKeyValueStore(db_path))


@pytest.fixture()
def app(store):
    from otpserver import create_app

    app = create_app(store)
    app.config.update(TESTING=True)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()
