"""Ephemeral in-memory mounts of decrypted credentials."""

from .manager import EphemeralMount, cancel_on_signals, is_mounted, mount, unmount
from .memfs import MemoryFS, normalize_path

__all__ = [
    "EphemeralMount",
    "MemoryFS",
    "cancel_on_signals",
    "is_mounted",
    "mount",
    "normalize_path",
    "unmount",
]
