"""Registry mapping type tags to profile implementations."""

from typing import Type

from ..errors import UnknownTypeError
from .base import Profile


class Registry:
    """Closed set of profile types, looked up by their type tag."""

    def __init__(self):
        self._types: dict[str, Type[Profile]] = {}

    def register(self, profile_class: Type[Profile]) -> Type[Profile]:
        """Register a profile class under its ``type_name``; usable as a decorator."""
        type_name = profile_class.type_name
        if type_name in self._types:
            raise ValueError(f"Profile type {type_name!r} is already registered")
        self._types[type_name] = profile_class
        return profile_class

    def get(self, type_name: str) -> Type[Profile]:
        try:
            return self._types[type_name]
        except KeyError:
            raise UnknownTypeError(f"Unknown profile type '{type_name}'") from None

    def list(self) -> list[str]:
        """Return the registered type tags, sorted."""
        return sorted(self._types)

    def describe(self, type_name: str) -> str:
        """Return the human-readable description of a type.

        Raises:
            UnknownTypeError: If the tag is not registered.
        """
        return self.get(type_name).description

    def new(self, type_name: str) -> Profile:
        """Create an empty profile of the given type.

        Raises:
            UnknownTypeError: If the tag is not registered.
        """
        return self.get(type_name)()


registry = Registry()
