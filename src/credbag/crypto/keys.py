"""RSA key pair loading and generation."""

import os
from pathlib import Path

import structlog
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..errors import AuthenticationError, KeyFileError

logger = structlog.get_logger(__name__)

DEFAULT_KEY_SIZE = 4096


def load_public_key(path: Path) -> rsa.RSAPublicKey:
    """Load the PEM public key used for encryption.

    Args:
        path: Path to a SubjectPublicKeyInfo PEM file.

    Returns:
        The RSA public key.

    Raises:
        KeyFileError: If the file is unreadable or not an RSA public key.
    """
    try:
        data = Path(path).read_bytes()
        key = serialization.load_pem_public_key(data)
    except OSError as e:
        raise KeyFileError(f"Cannot read public key {path}: {e}") from e
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyFileError(f"Invalid public key {path}: {e}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyFileError(f"Public key {path} is not an RSA key")

    logger.debug("loaded_public_key", path=str(path), key_size=key.key_size)
    return key


def read_private_key(path: Path) -> bytes:
    """Read the still-locked private key PEM from disk.

    Raises:
        AuthenticationError: If the file cannot be read.
    """
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise AuthenticationError(f"Cannot read private key {path}: {e}") from e


def unlock_private_key(pem: bytes, passphrase: bytes) -> rsa.RSAPrivateKey:
    """Unlock a passphrase-protected PKCS#8 private key.

    The key derivation and integrity check are those of the PEM encryption
    scheme, so a wrong passphrase and a corrupted file both fail here.

    Args:
        pem: Encrypted private key PEM.
        passphrase: Passphrase protecting the key.

    Returns:
        The unlocked RSA private key.

    Raises:
        AuthenticationError: If the key cannot be unlocked.
    """
    try:
        key = serialization.load_pem_private_key(pem, password=bytes(passphrase) or None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise AuthenticationError(
            "Cannot unlock private key: wrong passphrase or unreadable key file"
        ) from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise AuthenticationError("Private key is not an RSA key")
    return key


def generate_key_pair(
    public_path: Path,
    private_path: Path,
    passphrase: bytes,
    key_size: int = DEFAULT_KEY_SIZE,
    overwrite: bool = False,
) -> None:
    """Generate an RSA key pair and write it to disk.

    The private key is written as PKCS#8 PEM encrypted under ``passphrase``
    with mode 0600; the public key as SubjectPublicKeyInfo PEM.

    Args:
        public_path: Destination for the public key.
        private_path: Destination for the encrypted private key.
        passphrase: Non-empty passphrase protecting the private key.
        key_size: RSA modulus size in bits.
        overwrite: Replace existing key files instead of refusing.

    Raises:
        KeyFileError: If a file exists and ``overwrite`` is false, or on I/O failure.
        ValueError: If the passphrase is empty.
    """
    if not passphrase:
        raise ValueError("A non-empty passphrase is required")

    public_path = Path(public_path)
    private_path = Path(private_path)
    if not overwrite:
        for path in (public_path, private_path):
            if path.exists():
                raise KeyFileError(f"Refusing to overwrite existing key file {path}")

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(bytes(passphrase)),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    try:
        for path, data, mode in (
            (private_path, private_pem, 0o600),
            (public_path, public_pem, 0o644),
        ):
            os.makedirs(path.parent, mode=0o700, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(path, mode)
    except OSError as e:
        raise KeyFileError(f"Failed to write key pair: {e}") from e

    logger.info(
        "generated_key_pair",
        public_path=str(public_path),
        private_path=str(private_path),
        key_size=key_size,
    )
