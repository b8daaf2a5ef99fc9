"""Base interfaces and types for the credential bag."""

import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = structlog.get_logger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9@+_-][A-Za-z0-9._@+-]*$")

# Type reported by list() for entries that cannot be parsed
CORRUPT_TYPE = "(corrupt)"


def validate_name(name: str) -> str:
    """Check that an entry name is usable as a bag key.

    Raises:
        ValueError: If the name is empty, starts with a dot or holds
            characters outside ``[A-Za-z0-9._@+-]``.
    """
    if not NAME_PATTERN.match(name or ""):
        raise ValueError(
            f"Invalid entry name {name!r}: use letters, digits and ._@+- "
            "and do not start with a dot"
        )
    return name


class BagEntry(BaseModel):
    """One encrypted credential as persisted in the bag."""

    model_config = ConfigDict(
        frozen=True,
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    name: str
    type: str = Field(min_length=1)
    ciphertext: bytes
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return validate_name(value)


class BagStore(ABC):
    """Abstract base class for bag storage backends."""

    @abstractmethod
    def list(self, patterns: Sequence[str] = ()) -> dict[str, str]:
        """List entries whose name matches any of the glob patterns.

        Args:
            patterns: Glob-style name filters; empty matches every entry.

        Returns:
            Mapping of entry name to profile type, ordered by name.
            Entries that cannot be parsed are listed as ``CORRUPT_TYPE``.

        Raises:
            StorageError: If the bag cannot be read.
        """
        ...

    @abstractmethod
    def read(self, name: str, type: str) -> bytes:
        """Read the ciphertext stored under ``name``.

        Raises:
            NotFoundError: If no entry with that name and type exists.
            StorageError: If the entry cannot be read.
        """
        ...

    @abstractmethod
    def write(self, name: str, type: str, ciphertext: bytes) -> None:
        """Create or atomically replace the entry stored under ``name``.

        Raises:
            ValueError: If the name is not a valid entry name.
            StorageError: If the write fails; the prior entry is left intact.
        """
        ...

    def exists(self, name: str) -> bool:
        """Return whether an entry named ``name`` is stored."""
        return name in self.list([name])
