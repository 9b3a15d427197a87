"""
Password-based stream encryption for backup payloads.

Encrypted payload layout:
    bytes 0-15   PBKDF2 salt
    bytes 16-31  AES initialization vector
    bytes 32-    AES-256-CBC ciphertext (PKCS7 padded)

The key is derived with PBKDF2-HMAC-SHA256 at 100,000 iterations. These
parameters are part of the archive format and must not change, or existing
archives become unreadable.

Both directions work in fixed-size chunks so memory use does not depend on
payload size.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from auditvault.backup.errors import BadParametersError, DecryptionError

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000
SALT_LENGTH = 16
IV_LENGTH = 16
KEY_LENGTH = 32  # AES-256
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH
CHUNK_SIZE = 64 * 1024

DECRYPTION_FAILED_MESSAGE = "Wrong password or corrupted file"


def derive_key(password: str, salt: bytes) -> bytes:
    """
    Derive the AES key for a password and salt.

    Args:
        password: User-supplied password.
        salt: 16-byte random salt stored in the payload header.

    Returns:
        32-byte key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt_file(source: Path, dest: Path, password: str) -> None:
    """
    Encrypt a file with a password.

    Args:
        source: Plaintext input file.
        dest: Output file (salt, IV, ciphertext).
        password: Non-empty password.

    Raises:
        BadParametersError: If the password is empty.
    """
    if not password:
        raise BadParametersError("A password is required to encrypt data")

    salt = secrets.token_bytes(SALT_LENGTH)
    iv = secrets.token_bytes(IV_LENGTH)
    key = derive_key(password, salt)

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()

    with open(source, "rb") as fin, open(dest, "wb") as fout:
        fout.write(salt)
        fout.write(iv)
        while chunk := fin.read(CHUNK_SIZE):
            fout.write(encryptor.update(padder.update(chunk)))
        fout.write(encryptor.update(padder.finalize()))
        fout.write(encryptor.finalize())

    logger.debug(f"Encrypted {source.name} -> {dest.name}")


def decrypt_file(source: Path, dest: Path, password: str) -> None:
    """
    Decrypt a file produced by encrypt_file().

    Any failure, whether a wrong password, a truncated file or damaged
    ciphertext, is reported as DecryptionError. A partially written output
    file is removed.

    Args:
        source: Encrypted input file.
        dest: Plaintext output file.
        password: Password used at encryption time.

    Raises:
        DecryptionError: If the payload cannot be decrypted.
    """
    try:
        with open(source, "rb") as fin, open(dest, "wb") as fout:
            header = fin.read(HEADER_LENGTH)
            if len(header) < HEADER_LENGTH:
                raise DecryptionError(DECRYPTION_FAILED_MESSAGE)

            salt, iv = header[:SALT_LENGTH], header[SALT_LENGTH:]
            key = derive_key(password or "", salt)

            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()

            while chunk := fin.read(CHUNK_SIZE):
                fout.write(unpadder.update(decryptor.update(chunk)))
            fout.write(unpadder.update(decryptor.finalize()))
            fout.write(unpadder.finalize())
    except DecryptionError:
        _remove_quietly(dest)
        raise
    except ValueError as e:
        # cryptography reports bad padding and non-block-aligned input as ValueError
        _remove_quietly(dest)
        raise DecryptionError(DECRYPTION_FAILED_MESSAGE) from e

    logger.debug(f"Decrypted {source.name} -> {dest.name}")


def _remove_quietly(path: Path) -> None:
    if os.path.exists(path):
        os.unlink(path)
