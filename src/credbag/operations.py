"""Bag-level operations: add, list, show, mount, verify and rotate.

An :class:`Invocation` ties together the configuration, the bag, the crypt
envelope and the passphrase for one run of the tool. Batch operations yield
one :class:`EntryResult` per matched entry so callers can report progress;
capability mismatches come back as skipped results rather than errors.
"""

from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Callable, Iterator, Optional, Sequence

import structlog

from .config import Config
from .crypto import Crypt, secure_zero_memory
from .errors import (
    DecryptionError,
    IssuerError,
    ProfileFormatError,
    RotationPersistError,
    StorageError,
    UnknownTypeError,
)
from .mount import mount
from .profiles import Capabilities, Profile, Prompter, Registry, registry
from .storage import CORRUPT_TYPE, BagStore, open_bag

logger = structlog.get_logger(__name__)

# Errors that abort a single entry; anything else aborts the whole batch.
ENTRY_ERRORS = (
    DecryptionError,
    IssuerError,
    ProfileFormatError,
    RotationPersistError,
    StorageError,
    UnknownTypeError,
)

VERBS = {"mount": "mounted", "verify": "verified", "rotate": "rotated"}


class Status(str, Enum):
    """Outcome of processing one bag entry."""

    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"
    STALE = "stale"


@dataclass
class EntryResult:
    """What happened to one entry during a batch operation."""

    name: str
    type: str
    status: Status
    message: str = ""
    profile: Optional[Profile] = None

    @property
    def failed(self) -> bool:
        return self.status in (Status.FAILED, Status.STALE)


class PassphraseCache:
    """Ask for the private key passphrase at most once per invocation.

    The passphrase lives only in this object's memory and is wiped by
    :meth:`clear`; it is never logged or written anywhere.
    """

    def __init__(self, prompt: Callable[[], str]):
        self._prompt = prompt
        self._value: Optional[bytearray] = None

    @property
    def requested(self) -> bool:
        return self._value is not None

    def get(self) -> bytes:
        if self._value is None:
            self._value = bytearray(self._prompt().encode())
        return bytes(self._value)

    def clear(self) -> None:
        if self._value is not None:
            secure_zero_memory(self._value)
            self._value = None


@dataclass(frozen=True)
class TypeInfo:
    name: str
    description: str
    capabilities: Capabilities


class Invocation:
    """State shared by the operations of one run.

    The bag and the crypt envelope are opened on first use, so commands
    that need neither do not fail on a missing bag or key file.
    """

    def __init__(
        self,
        config: Config,
        passphrase: PassphraseCache,
        bag: Optional[BagStore] = None,
        crypt: Optional[Crypt] = None,
        profiles: Registry = registry,
    ):
        self.config = config
        self.passphrase = passphrase
        self.profiles = profiles
        if bag is not None:
            self.__dict__["bag"] = bag
        if crypt is not None:
            self.__dict__["crypt"] = crypt

    @cached_property
    def bag(self) -> BagStore:
        return open_bag(self.config.bag_path)

    @cached_property
    def crypt(self) -> Crypt:
        return Crypt.from_files(self.config.public_key, self.config.private_key)

    def types(self) -> list[TypeInfo]:
        """Describe every registered profile type."""
        return [
            TypeInfo(name, self.profiles.describe(name), self.profiles.get(name).capabilities)
            for name in self.profiles.list()
        ]

    def list_entries(self, patterns: Sequence[str] = ()) -> dict[str, str]:
        """Return the name -> type mapping of entries matching ``patterns``."""
        return self.bag.list(patterns)

    def add(
        self,
        type_name: str,
        prompter: Prompter,
        confirm_overwrite: Optional[Callable[[str], bool]] = None,
    ) -> EntryResult:
        """Prompt for a new profile, encrypt it and store it in the bag.

        Raises:
            UnknownTypeError: If ``type_name`` is not registered.
            KeyFileError: If the public key cannot be loaded.
            ValueError: If the entered values are invalid.
            StorageError: If the entry cannot be written.
        """
        profile = self.profiles.new(type_name)
        crypt = self.crypt
        bag = self.bag

        profile.prompt(prompter)
        if bag.exists(profile.name) and confirm_overwrite is not None:
            if not confirm_overwrite(profile.name):
                return EntryResult(
                    profile.name, profile.type, Status.SKIPPED, "entry exists, not overwritten"
                )

        bag.write(profile.name, profile.type, crypt.encrypt(profile.serialize()))
        logger.info("added_profile", name=profile.name, type=profile.type)
        return EntryResult(profile.name, profile.type, Status.OK, "added", profile)

    def load(self, name: str, type_name: str, profile: Optional[Profile] = None) -> Profile:
        """Decrypt and deserialize one stored entry.

        Raises:
            UnknownTypeError, NotFoundError, StorageError, AuthenticationError,
            DecryptionError, ProfileFormatError
        """
        if profile is None:
            profile = self.profiles.new(type_name)
        ciphertext = self.bag.read(name, type_name)
        profile.deserialize(self.crypt.decrypt(ciphertext, self.passphrase.get()))
        if profile.name != name:
            raise ProfileFormatError(
                f"Entry '{name}' holds a profile named '{profile.name}'"
            )
        return profile

    def _batch(
        self,
        patterns: Sequence[str],
        capability: Optional[str],
        action: Callable[[Profile], EntryResult],
    ) -> Iterator[EntryResult]:
        for name, type_name in self.bag.list(patterns).items():
            if type_name == CORRUPT_TYPE:
                yield EntryResult(
                    name,
                    type_name,
                    Status.FAILED,
                    f"Bag entry '{name}' cannot be read or parsed",
                )
                continue

            try:
                profile = self.profiles.new(type_name)
            except UnknownTypeError as e:
                logger.debug("unknown_profile_type", name=name, type=type_name)
                yield EntryResult(name, type_name, Status.FAILED, str(e))
                continue

            if capability is not None and not getattr(profile.capabilities, capability):
                yield EntryResult(
                    name,
                    type_name,
                    Status.SKIPPED,
                    f"Profile '{name}' cannot be {VERBS[capability]} because it is of "
                    f"type {type_name}, which does not support {capability}. Skipping...",
                )
                continue

            try:
                yield action(self.load(name, type_name, profile))
            except ENTRY_ERRORS as e:
                logger.debug(
                    "entry_failed",
                    name=name,
                    type=type_name,
                    error_type=type(e).__name__,
                )
                status = Status.STALE if isinstance(e, RotationPersistError) else Status.FAILED
                yield EntryResult(name, type_name, status, str(e))

    def show(self, patterns: Sequence[str]) -> Iterator[EntryResult]:
        """Decrypt every matching entry."""
        return self._batch(
            patterns,
            None,
            lambda p: EntryResult(p.name, p.type, Status.OK, profile=p),
        )

    def verify(self, patterns: Sequence[str]) -> Iterator[EntryResult]:
        """Check every matching, verifiable entry with its issuer."""

        def _verify(profile: Profile) -> EntryResult:
            message, ok = profile.verify_credentials()
            logger.info("verified_profile", name=profile.name, type=profile.type, ok=ok)
            status = Status.OK if ok else Status.FAILED
            return EntryResult(profile.name, profile.type, status, message, profile)

        return self._batch(patterns, "verify", _verify)

    def rotate(self, patterns: Sequence[str]) -> Iterator[EntryResult]:
        """Rotate every matching, rotatable entry and store the new material.

        Once the issuer has handed out new credentials, a failure to
        persist them yields a ``STALE`` result instead of ``FAILED``.
        """

        def _rotate(profile: Profile) -> EntryResult:
            serialized = profile.rotate_credentials()
            try:
                self.bag.write(profile.name, profile.type, self.crypt.encrypt(serialized))
            except (StorageError, ValueError) as e:
                logger.error("rotation_not_persisted", name=profile.name, type=profile.type)
                raise RotationPersistError(profile.name, e) from e
            logger.info("rotated_profile", name=profile.name, type=profile.type)
            return EntryResult(profile.name, profile.type, Status.OK, "rotated")

        return self._batch(patterns, "rotate", _rotate)

    def collect_mount_files(
        self, patterns: Sequence[str]
    ) -> tuple[list[EntryResult], dict[str, bytes]]:
        """Render the mount snippets of every matching, mountable entry.

        Snippets landing on the same path are concatenated in listing order.
        """
        rendered: dict[str, bytearray] = {}

        def _render(profile: Profile) -> EntryResult:
            path, content = profile.mount_snippet()
            rendered.setdefault(path, bytearray()).extend(content)
            return EntryResult(profile.name, profile.type, Status.OK, path, profile)

        results = list(self._batch(patterns, "mount", _render))
        return results, {path: bytes(content) for path, content in rendered.items()}

    def mount_files(self, files: dict[str, bytes], timeout: Optional[int] = None) -> str:
        """Expose rendered files at the configured mountpoint until timeout.

        Raises:
            MountError: If the mount cannot be set up or torn down.
        """
        return mount(
            self.config.mountpoint,
            files,
            timeout or self.config.mount_timeout,
            debug=self.config.debug,
        )
