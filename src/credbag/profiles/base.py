"""Common contract shared by every credential profile type."""

import json
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Optional

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ..errors import ProfileFormatError
from ..storage.base import validate_name

logger = structlog.get_logger(__name__)

# (label, hide_input, default) -> value
Prompter = Callable[[str, bool, Optional[str]], str]


@dataclass(frozen=True)
class Capabilities:
    """Operations a profile type supports, fixed per type."""

    mount: bool = False
    verify: bool = False
    rotate: bool = False


@dataclass(frozen=True)
class PromptField:
    """A profile field collected interactively when a profile is added."""

    name: str
    label: str
    secret: bool = False
    default: Optional[str] = None
    loader: Optional[Callable[[str], str]] = None


class Profile(BaseModel):
    """A typed credential with its mount/verify/rotate behaviour.

    Subclasses declare their fields as pydantic fields with empty defaults
    (so a fresh instance is the empty lifecycle state) and set the class
    variables below.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    type_name: ClassVar[str]
    description: ClassVar[str]
    capabilities: ClassVar[Capabilities] = Capabilities()
    prompt_fields: ClassVar[tuple[PromptField, ...]] = ()
    secret_fields: ClassVar[frozenset[str]] = frozenset()

    name: str = ""

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return validate_name(value)

    @property
    def type(self) -> str:
        return self.type_name

    def prompt(self, prompter: Prompter) -> None:
        """Populate the profile interactively.

        Raises:
            ValueError: If the collected values are invalid; the profile is
                left unchanged.
        """
        values: dict[str, Any] = {"name": prompter("Name", False, None)}
        for field in self.prompt_fields:
            value = prompter(field.label, field.secret, field.default)
            if field.loader is not None:
                value = field.loader(value)
            values[field.name] = value
        self._populate(values)

    def _populate(self, values: dict[str, Any]) -> None:
        # Validate everything before touching self so a failure leaves no
        # partially-filled profile behind.
        loaded = type(self).model_validate(values)
        for field in type(self).model_fields:
            setattr(self, field, getattr(loaded, field))

    def serialize(self) -> bytes:
        """Encode the profile as a flat, self-describing JSON object."""
        payload = {"type": self.type_name, **self.model_dump(mode="json")}
        return json.dumps(payload, sort_keys=True).encode()

    def deserialize(self, data: bytes) -> None:
        """Populate the profile from bytes produced by :meth:`serialize`.

        Raises:
            ProfileFormatError: If the data is not a payload of this type.
        """
        try:
            payload = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProfileFormatError(f"Stored {self.type_name} profile is not valid JSON") from e
        if not isinstance(payload, dict):
            raise ProfileFormatError(f"Stored {self.type_name} profile is not an object")

        stored_type = payload.pop("type", None)
        if stored_type != self.type_name:
            raise ProfileFormatError(
                f"Stored profile has type {stored_type!r}, expected {self.type_name!r}"
            )
        try:
            self._populate(payload)
        except ValidationError as e:
            raise ProfileFormatError(f"Stored {self.type_name} profile is invalid: {e}") from e

    def display_fields(self) -> list[tuple[str, str]]:
        """Return (field, value) pairs for display, secrets included."""
        return [("type", self.type_name)] + [
            (field, str(getattr(self, field))) for field in type(self).model_fields
        ]

    def mount_snippet(self) -> tuple[str, bytes]:
        """Return the mount-relative path and content this profile contributes."""
        raise NotImplementedError(f"Profile type {self.type_name} does not support mount")

    def verify_credentials(self) -> tuple[str, bool]:
        """Check the credentials with the issuer and report (message, ok)."""
        raise NotImplementedError(f"Profile type {self.type_name} does not support verify")

    def rotate_credentials(self) -> bytes:
        """Obtain new credentials from the issuer and return them serialized."""
        raise NotImplementedError(f"Profile type {self.type_name} does not support rotate")

    def __repr__(self) -> str:
        fields = ", ".join(
            f"{field}={'***' if field in self.secret_fields else getattr(self, field)!r}"
            for field in type(self).model_fields
        )
        return f"{type(self).__name__}({fields})"

    def __str__(self) -> str:
        return "\n".join(f"{field}: {value}" for field, value in self.display_fields())
