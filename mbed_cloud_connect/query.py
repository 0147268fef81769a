"""Saved device queries from the device directory."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from mashumaro import field_options
from mashumaro.types import SerializationStrategy

from .device import Device
from .filters import decode_filter, encode_filter
from .model import ApiDataClass, field_aliases

if TYPE_CHECKING:
    from .device_directory import DeviceDirectoryAPI

__all__ = ["Query"]

UPDATE_FIELDS = {"name", "description", "query"}


class DeviceFilterSerializationStrategy(SerializationStrategy):
    """Converts a device filter to and from the encoded query string."""

    def serialize(self, value: dict[str, Any]) -> str:
        return encode_filter(value, field_aliases(Device))

    def deserialize(self, value: str) -> dict[str, Any]:
        return decode_filter(value, field_aliases(Device))


@dataclass
class Query(ApiDataClass):
    """A named device filter stored by the service."""

    id: str | None = None
    name: str | None = None
    description: str | None = None

    filter: dict[str, Any] = field(
        metadata=field_options(
            alias="query",
            serialization_strategy=DeviceFilterSerializationStrategy(),
        ),
        default_factory=dict,
    )
    """The device filter, using `Device` field names.

    For example `{"state": {"$eq": "registered"}}`.
    """

    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    @property
    def create_body(self) -> dict[str, Any]:
        """Return the request body used to add this query."""
        return {k: v for k, v in self.raw_data.items() if k in UPDATE_FIELDS}

    @property
    def update_body(self) -> dict[str, Any]:
        """Return the request body used to update this query."""
        return self.create_body

    async def async_update(self, api: DeviceDirectoryAPI) -> Query:
        """Push local changes to the service, returning the updated query."""
        return await api.async_update_query(self)

    async def async_delete(self, api: DeviceDirectoryAPI) -> None:
        """Delete the query."""
        if not self.id:
            raise ValueError("Query has no id")
        await api.async_delete_query(self.id)
