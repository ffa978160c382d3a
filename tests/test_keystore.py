from pathlib import Path

import pytest

from shellconf.config import ConfigRoot
from shellconf.errors import (
    ConfFileNotFoundError,
    CorruptValueError,
    InvalidNameError,
    KeyExistsError,
    KeyNotFoundError,
    ProtectedKeyError,
)
from shellconf.keystore import DEFAULT_PROTECTED_KEYS, KeyStore, ProtectedKeys, decode_value, encode_value


@pytest.fixture
def protected(config_root: ConfigRoot) -> ProtectedKeys:
    return ProtectedKeys(config_root.protected_file)

@pytest.fixture
def store(config_root: ConfigRoot, protected: ProtectedKeys) -> KeyStore:
    return KeyStore(config_root.key_file, protected)

def test_encode_decode():
    assert encode_value("secret") == "c2VjcmV0"
    assert decode_value("c2VjcmV0") == "secret"
    assert decode_value(encode_value("line1\nline2")) == "line1\nline2"
    with pytest.raises(CorruptValueError):
        decode_value("!!!")

def test_add_and_get(store: KeyStore):
    assert store.add("api key", "secret") == "API_KEY"
    assert store.path.read_text() == "API_KEY=c2VjcmV0\n"
    assert store.get("API_KEY") == "secret"
    assert store.keys() == ["API_KEY"]

def test_add_existing_key_fails(store: KeyStore):
    store.add("API_KEY", "one")
    before = store.path.read_bytes()
    with pytest.raises(KeyExistsError):
        store.add("api_key", "two")
    assert store.path.read_bytes() == before

def test_add_empty_key_fails(store: KeyStore):
    with pytest.raises(InvalidNameError):
        store.add("   ", "v")

def test_get_errors(store: KeyStore):
    with pytest.raises(ConfFileNotFoundError):
        store.get("API_KEY")
    store.add("OTHER", "v")
    with pytest.raises(KeyNotFoundError):
        store.get("API_KEY")

def test_multiline_value_stays_on_one_line(store: KeyStore):
    store.add("CERT", "line1\nline2\n")
    assert len(store.path.read_text().splitlines()) == 1
    assert store.get("CERT") == "line1\nline2\n"

def test_update(store: KeyStore):
    store.add("A", "1")
    store.add("B", "2")
    store.update("A", "10")
    assert store.as_dict() == {"A": "10", "B": "2"}
    assert store.keys() == ["A", "B"]
    with pytest.raises(KeyNotFoundError):
        store.update("C", "3")

def test_rename(store: KeyStore):
    store.add("A", "1")
    store.add("B", "2")
    assert store.rename("A", "new-name") == "NEW_NAME"
    assert store.get("NEW_NAME") == "1"
    assert not store.exists("A")
    with pytest.raises(KeyExistsError):
        store.rename("NEW_NAME", "B")
    with pytest.raises(KeyNotFoundError):
        store.rename("MISSING", "X")

def test_comments(store: KeyStore):
    store.add("db_pass", "hunter2", comment="database password")
    store.add("OTHER", "v")
    assert store.path.read_text().startswith("# database password\nDB_PASS=")
    assert store.comment_for("DB_PASS") == "database password"
    assert store.comment_for("OTHER") is None

    store.rename("DB_PASS", "DB_PASSWORD")
    assert store.comment_for("DB_PASSWORD") == "database password"

    store.remove("DB_PASSWORD")
    assert "database password" not in store.path.read_text()
    assert store.keys() == ["OTHER"]

def test_remove(store: KeyStore):
    store.add("A", "1")
    store.remove("A")
    assert store.path.read_text() == ""
    with pytest.raises(KeyNotFoundError):
        store.remove("A")

def test_search_is_literal_and_case_insensitive(store: KeyStore):
    store.add("API_KEY", "1")
    store.add("API_SECRET", "2")
    store.add("DB_HOST", "3")
    assert store.search("api") == ["API_KEY", "API_SECRET"]
    assert store.search("A.I") == []

def test_protected_builtin_key_is_untouchable(store: KeyStore):
    store.add("HOST", "127.0.0.1")
    before = store.path.read_bytes()

    with pytest.raises(ProtectedKeyError):
        store.remove("HOST")
    with pytest.raises(ProtectedKeyError):
        store.rename("HOST", "SERVER")
    with pytest.raises(ProtectedKeyError):
        store.update("HOST", "0.0.0.0")

    assert store.path.read_bytes() == before

def test_protected_user_key(store: KeyStore, protected: ProtectedKeys):
    store.add("MY_TOKEN", "abc")
    assert protected.add("MY_TOKEN") is True
    assert protected.add("MY_TOKEN") is False
    with pytest.raises(ProtectedKeyError):
        store.remove("MY_TOKEN")

    protected.remove("MY_TOKEN")
    store.remove("MY_TOKEN")
    assert not store.exists("MY_TOKEN")

def test_protected_list_and_remove_errors(protected: ProtectedKeys):
    protected.add("EXTRA")
    listed = protected.list()
    assert listed[: len(DEFAULT_PROTECTED_KEYS)] == list(DEFAULT_PROTECTED_KEYS)
    assert listed[-1] == "EXTRA"

    with pytest.raises(ProtectedKeyError):
        protected.remove("HOST")
    with pytest.raises(KeyNotFoundError):
        protected.remove("NEVER_ADDED")

def test_protected_sync_drops_stale_keys(config_root: ConfigRoot, protected: ProtectedKeys):
    plain = KeyStore(config_root.key_file)
    plain.add("KEEP", "1")
    protected.add("KEEP")
    protected.add("GONE")

    assert protected.sync(plain) == ["GONE"]
    assert protected.user_keys() == ["KEEP"]
    assert protected.sync(plain) == []

def test_unprotected_store_allows_everything(tmp_path: Path):
    store = KeyStore(tmp_path / "profile.conf")
    store.add("HOST", "x")
    store.remove("HOST")
    assert store.keys() == []

def test_value_with_commas_roundtrips(store: KeyStore):
    store.add("API_KEY", "s3cr3t,with,commas")
    assert store.get("API_KEY") == "s3cr3t,with,commas"
