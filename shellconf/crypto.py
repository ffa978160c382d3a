"""
Encryption helpers for values and files kept by shellconf.

Values: AES-256-CBC with PKCS7 padding, hex key (64 chars) and IV (32 chars),
Base64 output, interchangeable with ``openssl enc -aes-256-cbc -base64 -K .. -iv ..``.
Files: Argon2id KDF from a password, AES-256-GCM.
"""
import base64
import binascii
import os
from pathlib import Path
from typing import Tuple, Type

from argon2.low_level import Type as Argon2Type, hash_secret_raw
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import CryptoError, DecryptionError, EncryptionError, KeyDerivationError, StorageError
from .keystore import KeyStore
from .utils import atomic_write_bytes

SALT_LEN = 32
NONCE_LEN = 12
KEY_LEN = 32
IV_LEN = 16
FILE_MAGIC = b"SHC1"

SHIELD_KEY_NAME = "SHELL_SHIELD_ENCRYPTION_KEY"
SHIELD_IV_NAME = "SHELL_SHIELD_ENCRYPTION_IV"


def generate_random_key(nbytes: int = KEY_LEN) -> str:
    """Return nbytes of secure randomness as a hex string."""
    if nbytes <= 0:
        raise ValueError("nbytes must be a positive integer")
    return os.urandom(nbytes).hex()

def generate_salt() -> bytes:
    """Generate 32 bytes of secure random salt."""
    return os.urandom(SALT_LEN)

def generate_nonce() -> bytes:
    """Generate 12 bytes of secure random nonce for AES-GCM."""
    return os.urandom(NONCE_LEN)

def derive_key(password: str, salt: bytes) -> bytes:
    """
    Derive a 32-byte key using Argon2id.
    Parameters: 64 MiB memory, 3 iterations, 4 lanes.
    """
    try:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=3,
            memory_cost=65536,  # 64 MiB
            parallelism=4,
            hash_len=KEY_LEN,
            type=Argon2Type.ID
        )
    except Exception as e:
        raise KeyDerivationError(f"Failed to derive key: {e}") from e

def _parse_key_iv(key_hex: str, iv_hex: str, error: Type[CryptoError]) -> Tuple[bytes, bytes]:
    if len(key_hex) != KEY_LEN * 2:
        raise error("Encryption key must be 64 hex characters (32 bytes).")
    if len(iv_hex) != IV_LEN * 2:
        raise error("Initialization vector must be 32 hex characters (16 bytes).")
    try:
        return bytes.fromhex(key_hex), bytes.fromhex(iv_hex)
    except ValueError as e:
        raise error(f"Key and IV must be hexadecimal: {e}") from e

def encrypt_value(value: str, key_hex: str, iv_hex: str) -> str:
    """Encrypt text with AES-256-CBC and return Base64 ciphertext."""
    key, iv = _parse_key_iv(key_hex, iv_hex, EncryptionError)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    data = padder.update(value.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(data) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode("ascii")

def decrypt_value(token: str, key_hex: str, iv_hex: str) -> str:
    """Reverse encrypt_value. Wrapped Base64 (as openssl prints it) is accepted."""
    key, iv = _parse_key_iv(key_hex, iv_hex, DecryptionError)
    try:
        ciphertext = base64.b64decode("".join(token.split()), validate=True)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
    except (ValueError, binascii.Error, UnicodeDecodeError) as e:
        raise DecryptionError("Decryption failed. Invalid key or corrupted data.") from e

def encrypt(data: bytes, key: bytes) -> bytes:
    """
    Encrypt data using AES-256-GCM.
    Returns: nonce (12 bytes) + ciphertext + tag (16 bytes implicitly via AESGCM)
    """
    if len(key) != KEY_LEN:
        raise EncryptionError("Invalid key length for AES-256-GCM.")
    nonce = generate_nonce()
    return nonce + AESGCM(key).encrypt(nonce, data, None)

def decrypt(payload: bytes, key: bytes) -> bytes:
    """
    Decrypt data using AES-256-GCM.
    Payload expected format: nonce (12 bytes) + ciphertext (includes tag)
    """
    if len(payload) < NONCE_LEN + 16:  # Minimum length: nonce + tag
        raise DecryptionError("Payload too short.")
    if len(key) != KEY_LEN:
        raise DecryptionError("Invalid key length.")

    nonce = payload[:NONCE_LEN]
    ciphertext = payload[NONCE_LEN:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except Exception as e:
        raise DecryptionError("Decryption failed. Invalid key or corrupted data.") from e

def _read_bytes(path: Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise StorageError(f"Could not read file: {path}: {e}") from e

def encrypt_file(src: Path, dst: Path, password: str) -> Path:
    """Encrypt a file with a password. Layout: magic + salt + nonce + ciphertext."""
    salt = generate_salt()
    payload = FILE_MAGIC + salt + encrypt(_read_bytes(src), derive_key(password, salt))
    atomic_write_bytes(Path(dst), payload)
    return Path(dst)

def decrypt_file(src: Path, dst: Path, password: str) -> Path:
    """Reverse encrypt_file."""
    payload = _read_bytes(src)
    header_len = len(FILE_MAGIC) + SALT_LEN
    if not payload.startswith(FILE_MAGIC) or len(payload) < header_len:
        raise DecryptionError(f"{src} is not a shellconf encrypted file.")
    salt = payload[len(FILE_MAGIC):header_len]
    data = decrypt(payload[header_len:], derive_key(password, salt))
    atomic_write_bytes(Path(dst), data)
    return Path(dst)


class Shield:
    """
    Value encryption keyed from the key store.

    The key and IV live in the store under SHELL_SHIELD_ENCRYPTION_KEY and
    SHELL_SHIELD_ENCRYPTION_IV (both built-in protected keys). They are
    generated on the first encryption; decryption never creates them.
    """

    def __init__(self, store: KeyStore):
        self.store = store

    def _material(self, create: bool) -> Tuple[str, str]:
        for name, nbytes in ((SHIELD_KEY_NAME, KEY_LEN), (SHIELD_IV_NAME, IV_LEN)):
            if not self.store.exists(name):
                if not create:
                    raise DecryptionError(f"'{name}' is not configured.")
                self.store.add(name, generate_random_key(nbytes))
        return self.store.get(SHIELD_KEY_NAME), self.store.get(SHIELD_IV_NAME)

    def encrypt(self, value: str) -> str:
        key_hex, iv_hex = self._material(create=True)
        return encrypt_value(value, key_hex, iv_hex)

    def decrypt(self, token: str) -> str:
        key_hex, iv_hex = self._material(create=False)
        return decrypt_value(token, key_hex, iv_hex)

    def store_secret(self, key: str, value: str) -> str:
        """Add key to the store with its value encrypted. Returns the stored key name."""
        return self.store.add(key, self.encrypt(value))

    def reveal_secret(self, key: str) -> str:
        return self.decrypt(self.store.get(key))
