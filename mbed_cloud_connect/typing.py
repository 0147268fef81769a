"""Libraries for helping with typing API responses."""

from typing import Any, Type, TypeVar

from .exceptions import ApiException

T = TypeVar("T")


def cast_assert(t: Type[T], data: Any) -> T:
    """Return data if it has the expected type, used on API response fields."""
    if not isinstance(data, t):
        raise ApiException(
            f"Server returned malformed response: expected {t.__name__} "
            f"but was {type(data).__name__}"
        )
    return data
