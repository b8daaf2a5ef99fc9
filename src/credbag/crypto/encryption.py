"""Hybrid encryption envelope for bag entries.

Every payload is sealed with a fresh AES-256-GCM data key; the data key is
wrapped with RSA-OAEP (SHA-256) under the configured public key. The sealed
blob layout is::

    [magic 2B "CB"][version 1B][wrapped key length 2B uint16 BE]
    [wrapped key][nonce 12B][payload + GCM tag 16B]

The header and wrapped key are bound into the GCM associated data, so any
change to the envelope fails authentication.
"""

import os
import struct
from pathlib import Path
from typing import Optional

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import DecryptionError
from .keys import load_public_key, read_private_key, unlock_private_key
from .memory import secure_buffer, secure_zero_memory

logger = structlog.get_logger(__name__)

MAGIC = b"CB"
VERSION = 1
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_SIZE = 32  # AES-256

_HEADER = struct.Struct("!2sBH")

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def encrypt(data: bytes, key: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """Encrypt data using AES-256-GCM.

    Args:
        data: The data to encrypt.
        key: 32-byte encryption key.
        associated_data: Optional data authenticated but not encrypted.

    Returns:
        The nonce followed by the ciphertext and authentication tag.
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(bytes(key)).encrypt(nonce, data, associated_data)
    logger.debug(
        "encrypted_data",
        data_size=len(data),
        has_associated_data=associated_data is not None,
    )
    return nonce + ciphertext


def decrypt(blob: bytes, key: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """Decrypt data sealed by :func:`encrypt`.

    Args:
        blob: Nonce, ciphertext and tag.
        key: 32-byte encryption key.
        associated_data: The associated data given at encryption time.

    Returns:
        The plaintext bytes.

    Raises:
        DecryptionError: If the blob is truncated or fails authentication.
    """
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionError(
            f"Ciphertext too short: {len(blob)} bytes (minimum {NONCE_SIZE + TAG_SIZE})"
        )
    try:
        plaintext = AESGCM(bytes(key)).decrypt(
            blob[:NONCE_SIZE], blob[NONCE_SIZE:], associated_data
        )
    except InvalidTag as e:
        raise DecryptionError("Ciphertext failed authentication") from e

    logger.debug(
        "decrypted_data",
        data_size=len(plaintext),
        has_associated_data=associated_data is not None,
    )
    return plaintext


class Crypt:
    """Hybrid RSA/AES-GCM envelope bound to one key pair.

    Only the public key is held in memory. The private key PEM stays locked
    and is unlocked inside each :meth:`decrypt` call, never beyond it.
    """

    def __init__(self, public_key: rsa.RSAPublicKey, private_key_path: Optional[Path] = None):
        self.public_key = public_key
        self.private_key_path = private_key_path

    @classmethod
    def from_files(cls, public_key_path: Path, private_key_path: Path) -> "Crypt":
        """Build an envelope from the configured key files."""
        return cls(load_public_key(public_key_path), Path(private_key_path))

    def encrypt(self, plaintext: bytes) -> bytes:
        """Seal a payload for the configured public key."""
        with secure_buffer(AESGCM.generate_key(bit_length=KEY_SIZE * 8)) as data_key:
            wrapped = self.public_key.encrypt(bytes(data_key), _OAEP)
            header = _HEADER.pack(MAGIC, VERSION, len(wrapped))
            sealed = encrypt(plaintext, data_key, header + wrapped)
        return header + wrapped + sealed

    def decrypt(self, ciphertext: bytes, passphrase: bytes) -> bytes:
        """Open a sealed payload.

        Args:
            ciphertext: Blob produced by :meth:`encrypt`.
            passphrase: Passphrase unlocking the private key.

        Returns:
            The plaintext bytes.

        Raises:
            AuthenticationError: If the private key cannot be unlocked.
            DecryptionError: If the envelope is malformed, tampered with or
                was sealed for another key pair.
        """
        if self.private_key_path is None:
            raise DecryptionError("No private key configured")

        private_key = unlock_private_key(read_private_key(self.private_key_path), passphrase)
        try:
            header, wrapped, sealed = self._split(ciphertext, private_key.key_size // 8)
            try:
                data_key = bytearray(private_key.decrypt(wrapped, _OAEP))
            except ValueError as e:
                raise DecryptionError("Data key could not be unwrapped") from e
            try:
                return decrypt(sealed, data_key, header + wrapped)
            finally:
                secure_zero_memory(data_key)
        finally:
            del private_key

    @staticmethod
    def _split(ciphertext: bytes, wrapped_size: int) -> tuple[bytes, bytes, bytes]:
        if len(ciphertext) < _HEADER.size:
            raise DecryptionError("Ciphertext too short for envelope header")
        header = ciphertext[: _HEADER.size]
        magic, version, wrapped_len = _HEADER.unpack(header)
        if magic != MAGIC or version != VERSION:
            raise DecryptionError("Unrecognized envelope format")
        if wrapped_len != wrapped_size:
            raise DecryptionError("Envelope was not sealed for this key pair")

        end = _HEADER.size + wrapped_len
        if len(ciphertext) < end + NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext truncated")
        return header, ciphertext[_HEADER.size : end], ciphertext[end:]
