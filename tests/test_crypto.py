from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from shellconf.config import ConfigRoot
from shellconf.crypto import (
    SHIELD_IV_NAME,
    SHIELD_KEY_NAME,
    Shield,
    decrypt,
    decrypt_file,
    decrypt_value,
    derive_key,
    encrypt,
    encrypt_file,
    encrypt_value,
    generate_random_key,
    generate_salt,
)
from shellconf.errors import DecryptionError, EncryptionError, ProtectedKeyError
from shellconf.keystore import KeyStore, ProtectedKeys

KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
IV_HEX = "0f0e0d0c0b0a09080706050403020100"


@settings(max_examples=100, deadline=None)
@given(value=st.text(max_size=256))
def test_value_roundtrip(value: str):
    token = encrypt_value(value, KEY_HEX, IV_HEX)
    assert "\n" not in token
    assert decrypt_value(token, KEY_HEX, IV_HEX) == value

def test_value_encryption_is_deterministic_for_key_and_iv():
    assert encrypt_value("secret", KEY_HEX, IV_HEX) == encrypt_value("secret", KEY_HEX, IV_HEX)
    assert encrypt_value("secret", KEY_HEX, IV_HEX) != encrypt_value("secret", generate_random_key(), IV_HEX)

def test_wrapped_base64_is_accepted():
    token = encrypt_value("a fairly long secret value that spans blocks", KEY_HEX, IV_HEX)
    wrapped = "\n".join(token[i:i + 16] for i in range(0, len(token), 16))
    assert decrypt_value(wrapped, KEY_HEX, IV_HEX) == "a fairly long secret value that spans blocks"

def test_bad_key_material():
    with pytest.raises(EncryptionError):
        encrypt_value("x", "abcd", IV_HEX)
    with pytest.raises(EncryptionError):
        encrypt_value("x", KEY_HEX, "zz" * 16)
    with pytest.raises(DecryptionError):
        decrypt_value("not base64!", KEY_HEX, IV_HEX)

def test_generate_random_key():
    assert len(generate_random_key()) == 64
    assert len(generate_random_key(16)) == 32
    assert generate_random_key() != generate_random_key()
    with pytest.raises(ValueError):
        generate_random_key(0)

@settings(max_examples=10, deadline=None)
@given(
    password=st.text(min_size=8, max_size=64),
    data=st.binary(min_size=1, max_size=1024)
)
def test_crypto_roundtrip(password: str, data: bytes):
    salt = generate_salt()
    key = derive_key(password, salt)

    encrypted = encrypt(data, key)
    assert encrypted != data

    decrypted = decrypt(encrypted, key)
    assert decrypted == data

def test_wrong_password_fails():
    salt = generate_salt()
    key1 = derive_key("correct_password", salt)
    key2 = derive_key("wrong_password", salt)

    data = b"secret_message"
    encrypted = encrypt(data, key1)

    with pytest.raises(DecryptionError):
        decrypt(encrypted, key2)

def test_file_roundtrip(tmp_path: Path):
    src = tmp_path / "key.conf"
    src.write_bytes(b"API_KEY=c2VjcmV0\n")

    encrypt_file(src, tmp_path / "key.conf.enc", "correct horse")
    assert (tmp_path / "key.conf.enc").read_bytes() != src.read_bytes()

    decrypt_file(tmp_path / "key.conf.enc", tmp_path / "restored.conf", "correct horse")
    assert (tmp_path / "restored.conf").read_bytes() == b"API_KEY=c2VjcmV0\n"

    with pytest.raises(DecryptionError):
        decrypt_file(tmp_path / "key.conf.enc", tmp_path / "bad.conf", "wrong horse")
    assert not (tmp_path / "bad.conf").exists()

def test_decrypt_file_rejects_foreign_files(tmp_path: Path):
    src = tmp_path / "plain.txt"
    src.write_text("hello")
    with pytest.raises(DecryptionError):
        decrypt_file(src, tmp_path / "out", "pw")

@pytest.fixture
def store(config_root: ConfigRoot) -> KeyStore:
    return KeyStore(config_root.key_file, ProtectedKeys(config_root.protected_file))

def test_shield_generates_protected_material(store: KeyStore):
    shield = Shield(store)
    token = shield.encrypt("hunter2")
    assert len(store.get(SHIELD_KEY_NAME)) == 64
    assert len(store.get(SHIELD_IV_NAME)) == 32
    assert shield.decrypt(token) == "hunter2"

    with pytest.raises(ProtectedKeyError):
        store.remove(SHIELD_KEY_NAME)

def test_shield_store_and_reveal(store: KeyStore):
    shield = Shield(store)
    assert shield.store_secret("db pass", "hunter2") == "DB_PASS"
    assert store.get("DB_PASS") != "hunter2"
    assert shield.reveal_secret("DB_PASS") == "hunter2"

def test_shield_decrypt_needs_material(store: KeyStore):
    with pytest.raises(DecryptionError):
        Shield(store).decrypt("AAAA")
    assert not store.exists(SHIELD_KEY_NAME)
