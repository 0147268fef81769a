"""Decorator for building a lookup table of event classes."""

from __future__ import annotations

from typing import Any, Callable, TypeVar

CLASS_T = TypeVar("CLASS_T", bound=type)  # pylint: disable=invalid-name


class Registry(dict[str, Any]):
    """Maps a notification envelope key to the class that handles it."""

    def register(self, key: str | None = None) -> Callable[[CLASS_T], CLASS_T]:
        """Return decorator registering a class under `key` or its ENVELOPE_KEY."""

        def decorator(cls: CLASS_T) -> CLASS_T:
            name = key if key is not None else cls.ENVELOPE_KEY  # type: ignore[attr-defined]
            if name in self:
                raise ValueError(f"Duplicate registration for '{name}'")
            self[name] = cls
            return cls

        return decorator
