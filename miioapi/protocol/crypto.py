"""
Cryptographic primitives for the miIO protocol.

The protocol uses two primitives only:
- md5 digests, for key derivation and packet checksums
- AES-128-CBC with PKCS#7 padding, for payload encryption

Key material is derived from the 16-byte device token:
    key = md5(token)
    iv  = md5(key + token)
"""

from __future__ import annotations

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from miioapi.exceptions import ProtocolError

_BLOCK_SIZE_BITS = 128


def md5(data: bytes) -> bytes:
    """
    Return the 16-byte md5 digest of data.

    Args:
        data: Data to hash.

    Returns:
        md5 digest (16 bytes).
    """
    digest = hashes.Hash(hashes.MD5(), backend=default_backend())
    digest.update(data)
    return digest.finalize()


def derive_key_iv(token: bytes) -> tuple[bytes, bytes]:
    """
    Derive the AES key and IV from a device token.

    Args:
        token: 16-byte device token.

    Returns:
        Tuple of (key, iv), 16 bytes each.
    """
    key = md5(token)
    iv = md5(key + token)
    return key, iv


def encrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """
    Encrypt data with AES-128-CBC and PKCS#7 padding.

    Args:
        key: 16-byte encryption key.
        iv: 16-byte initialization vector.
        data: Plaintext of any length.

    Returns:
        Ciphertext, a multiple of 16 bytes long.
    """
    padder = padding.PKCS7(_BLOCK_SIZE_BITS).padder()
    padded = padder.update(data) + padder.finalize()

    cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
    encryptor = cipher.encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def decrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """
    Decrypt AES-128-CBC ciphertext and strip PKCS#7 padding.

    Args:
        key: 16-byte encryption key.
        iv: 16-byte initialization vector.
        data: Ciphertext (length = 16 * n).

    Returns:
        Decrypted plaintext.

    Raises:
        ProtocolError: If the ciphertext length or padding is invalid.
    """
    if not data or len(data) % (_BLOCK_SIZE_BITS // 8):
        raise ProtocolError(f"Invalid ciphertext length: {len(data)}")

    cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
    decryptor = cipher.decryptor()
    padded = decryptor.update(data) + decryptor.finalize()

    unpadder = padding.PKCS7(_BLOCK_SIZE_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise ProtocolError(f"Invalid payload padding: {e}") from e
