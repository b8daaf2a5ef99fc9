"""Secure memory handling utilities."""

import ctypes
from contextlib import contextmanager
from typing import Iterator


def secure_zero_memory(data: bytearray) -> None:
    """Securely zero a mutable buffer holding sensitive data.

    Immutable ``bytes`` cannot be wiped in place; callers that need wiping
    must keep their secrets in a ``bytearray``.

    Args:
        data: The buffer to clear.
    """
    if not data:
        return
    try:
        buf = (ctypes.c_char * len(data)).from_buffer(data)
        ctypes.memset(ctypes.addressof(buf), 0, len(data))
    except (TypeError, ValueError):
        # Fallback: overwrite with zeros
        data[:] = bytes(len(data))


@contextmanager
def secure_buffer(initial: bytes = b"") -> Iterator[bytearray]:
    """Create a buffer that will be zeroed on exit.

    Args:
        initial: Optional initial content copied into the buffer.

    Yields:
        A bytearray that can be used to store sensitive material.
    """
    buf = bytearray(initial)
    try:
        yield buf
    finally:
        secure_zero_memory(buf)
