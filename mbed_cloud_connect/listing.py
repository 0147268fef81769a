"""Options and responses shared by the paginated list endpoints."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, TypeVar

from .filters import encode_filter
from .typing import cast_assert

__all__ = [
    "ListOptions",
    "ListResponse",
    "Order",
]

T = TypeVar("T")

DATA = "data"


class Order(enum.StrEnum):
    """Sort order of a list request."""

    ASC = "ASC"
    DESC = "DESC"


@dataclass
class ListOptions:
    """Options for a list request.

    The `filter` uses the model field names, for example
    `{"state": {"$eq": "registered"}, "created_at": {"$gte": datetime(...)}}`.
    """

    limit: int | None = None
    order: Order | None = None
    after: str | None = None
    include: list[str] = field(default_factory=list)
    filter: dict[str, Any] | None = None

    def as_params(self, aliases: Mapping[str, str] | None = None) -> dict[str, str]:
        """Return the query parameters for the request."""
        params: dict[str, str] = {}
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.order is not None:
            params["order"] = str(self.order)
        if self.after is not None:
            params["after"] = self.after
        if self.include:
            params["include"] = ",".join(self.include)
        if self.filter:
            params["filter"] = encode_filter(self.filter, aliases or {})
        return params


@dataclass
class ListResponse(Generic[T]):
    """One page of results from a list request."""

    data: list[T] = field(default_factory=list)
    has_more: bool = False
    total_count: int | None = None
    after: str | None = None
    limit: int | None = None
    order: str | None = None

    @classmethod
    def parse(
        cls, raw_data: Mapping[str, Any], parse_item: Callable[[dict[str, Any]], T]
    ) -> ListResponse[T]:
        """Parse a list response, converting each record with `parse_item`."""
        items = cast_assert(list, raw_data.get(DATA, []))
        return cls(
            data=[parse_item(item) for item in items],
            has_more=bool(raw_data.get("has_more", False)),
            total_count=raw_data.get("total_count"),
            after=raw_data.get("after"),
            limit=raw_data.get("limit"),
            order=raw_data.get("order"),
        )

    def __iter__(self) -> Any:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)
