"""Persistent storage for encrypted credential entries."""

from pathlib import Path
from typing import Optional, Type

from ..errors import NotFoundError, StorageError
from .bag import DirectoryBag
from .base import CORRUPT_TYPE, BagEntry, BagStore, validate_name


def open_bag(path: Path, store_class: Optional[Type[BagStore]] = None) -> BagStore:
    """Open the bag at ``path``.

    Args:
        path: Location of the bag.
        store_class: Optional specific store class to use.

    Returns:
        BagStore: The opened bag.

    Raises:
        StorageError: If the bag cannot be opened.
    """
    if store_class is not None:
        return store_class(path)
    return DirectoryBag(path)


__all__ = [
    "CORRUPT_TYPE",
    "BagEntry",
    "BagStore",
    "DirectoryBag",
    "NotFoundError",
    "StorageError",
    "open_bag",
    "validate_name",
]
