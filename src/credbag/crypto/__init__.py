"""Cryptographic utilities for the credential bag."""

from .encryption import Crypt, decrypt, encrypt
from .keys import generate_key_pair, load_public_key, read_private_key, unlock_private_key
from .memory import secure_buffer, secure_zero_memory

__all__ = [
    # Encryption
    "Crypt",
    "encrypt",
    "decrypt",
    # Key management
    "generate_key_pair",
    "load_public_key",
    "read_private_key",
    "unlock_private_key",
    # Memory security
    "secure_buffer",
    "secure_zero_memory",
]
