"""Directory-backed credential bag."""

import fnmatch
import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Sequence

import structlog
from pydantic import ValidationError

from ..errors import NotFoundError, StorageError
from .base import CORRUPT_TYPE, BagEntry, BagStore, validate_name

logger = structlog.get_logger(__name__)

MARKER_FILE = ".credbag"
ENTRY_SUFFIX = ".entry"
BAG_FORMAT = {"format": "credbag-bag", "version": 1}


class DirectoryBag(BagStore):
    """Bag storing one JSON file per entry inside a private directory.

    Each entry lives in ``<name>.entry`` and is replaced with a
    write-to-temp-then-rename, so readers never observe a torn write.
    """

    def __init__(self, path: Path):
        """Open the bag at ``path``, creating it on first use.

        Raises:
            StorageError: If the path is not a bag or is inaccessible.
        """
        self.path = Path(path)
        self._marker = self.path / MARKER_FILE
        try:
            if not self.path.exists():
                os.makedirs(self.path, mode=0o700, exist_ok=True)
            if not self.path.is_dir():
                raise StorageError(f"Bag path {self.path} is not a directory")

            if self._marker.exists():
                self._check_marker()
            elif any(self.path.iterdir()):
                raise StorageError(
                    f"{self.path} is not empty and is not a credential bag"
                )
            else:
                self._marker.write_text(json.dumps(BAG_FORMAT))
                os.chmod(self._marker, 0o600)
                logger.info("created_bag", path=str(self.path))
        except OSError as e:
            raise StorageError(f"Cannot open bag {self.path}: {e}") from e

    def _check_marker(self) -> None:
        try:
            data = json.loads(self._marker.read_text())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(f"Corrupt bag marker in {self.path}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Corrupt bag marker in {self.path}")
        if data.get("format") != BAG_FORMAT["format"]:
            raise StorageError(f"{self.path} is not a credential bag")
        if data.get("version") != BAG_FORMAT["version"]:
            raise StorageError(
                f"Unsupported bag version {data.get('version')} in {self.path}"
            )

    def _entry_path(self, name: str) -> Path:
        return self.path / f"{name}{ENTRY_SUFFIX}"

    def _load(self, path: Path) -> BagEntry:
        try:
            return BagEntry.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            raise
        except OSError as e:
            raise StorageError(f"Cannot read bag entry {path.name}: {e}") from e
        except ValidationError as e:
            raise StorageError(f"Corrupt bag entry {path.name}: {e}") from e

    def list(self, patterns: Sequence[str] = ()) -> dict[str, str]:
        """List stored entries, optionally filtered by name globs."""
        logger.debug("listing_entries", patterns=list(patterns))
        try:
            paths = sorted(self.path.glob(f"*{ENTRY_SUFFIX}"))
        except OSError as e:
            raise StorageError(f"Cannot list bag {self.path}: {e}") from e

        entries = {}
        for path in paths:
            name = path.name[: -len(ENTRY_SUFFIX)]
            if patterns and not any(fnmatch.fnmatchcase(name, p) for p in patterns):
                continue
            try:
                entries[name] = self._load(path).type
            except FileNotFoundError:
                # Removed between glob and read
                continue
            except StorageError as e:
                logger.debug("corrupt_entry", name=name, error=str(e))
                entries[name] = CORRUPT_TYPE
        return entries

    def read(self, name: str, type: str) -> bytes:
        """Read the ciphertext of an entry."""
        try:
            path = self._entry_path(validate_name(name))
            entry = self._load(path)
        except (FileNotFoundError, ValueError) as e:
            raise NotFoundError(f"No entry named '{name}'") from e
        if entry.name != name:
            raise StorageError(
                f"Corrupt bag entry {path.name}: it holds entry '{entry.name}'"
            )
        if entry.type != type:
            raise NotFoundError(f"No entry named '{name}' of type '{type}'")
        logger.debug("read_entry", name=name, type=type, size=len(entry.ciphertext))
        return entry.ciphertext

    def write(self, name: str, type: str, ciphertext: bytes) -> None:
        """Create or atomically replace an entry."""
        path = self._entry_path(validate_name(name))
        now = datetime.now(UTC)
        created_at = now
        try:
            created_at = self._load(path).created_at
        except (FileNotFoundError, StorageError):
            pass

        entry = BagEntry(
            name=name,
            type=type,
            ciphertext=ciphertext,
            created_at=created_at,
            updated_at=now,
        )
        data = entry.model_dump_json(indent=2).encode()

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{name}.", suffix=".tmp", dir=self.path
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise StorageError(f"Failed to write entry '{name}': {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.warning("stale_temp_file", path=tmp_path)

        logger.info("wrote_entry", name=name, type=type, size=len(ciphertext))
