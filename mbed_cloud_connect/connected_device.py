"""Connected devices and their resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from mashumaro import field_options

from .model import ApiDataClass

if TYPE_CHECKING:
    from .connect_api import ConnectAPI

__all__ = [
    "ConnectedDevice",
    "Resource",
    "normalize_path",
]


def normalize_path(path: str) -> str:
    """Return a resource path without a leading slash."""
    return path[1:] if path.startswith("/") else path


@dataclass
class Resource(ApiDataClass):
    """A resource exposed by a connected device, such as `3200/0/5500`."""

    path: str = field(metadata=field_options(alias="uri"))
    """Path of the resource, without a leading slash."""

    device_id: str | None = None

    type: str | None = field(metadata=field_options(alias="rt"), default=None)
    """Resource type."""

    content_type: str | None = field(metadata=field_options(alias="ct"), default=None)

    observable: bool = field(metadata=field_options(alias="obs"), default=False)
    """Whether the resource can be subscribed to."""

    def __post_init__(self) -> None:
        self.path = normalize_path(self.path)

    def _device_id(self) -> str:
        if not self.device_id:
            raise ValueError("Resource is not bound to a device")
        return self.device_id

    async def async_get_value(
        self, connect: ConnectAPI, cache_only: bool = False, no_response: bool = False
    ) -> Any:
        """Read the current value of the resource."""
        return await connect.async_get_resource_value(
            self._device_id(), self.path, cache_only, no_response
        )

    async def async_set_value(
        self, connect: ConnectAPI, value: str, no_response: bool = False
    ) -> Any:
        """Write a new value to the resource."""
        return await connect.async_set_resource_value(
            self._device_id(), self.path, value, no_response
        )

    async def async_execute(
        self,
        connect: ConnectAPI,
        function_name: str | None = None,
        no_response: bool = False,
    ) -> Any:
        """Execute the function bound to the resource."""
        return await connect.async_execute_resource(
            self._device_id(), self.path, function_name, no_response
        )

    async def async_subscribe(
        self,
        connect: ConnectAPI,
        notify_fn: Callable[[Any], Awaitable[None]] | None = None,
    ) -> Any:
        """Subscribe to value changes, delivered to `notify_fn`."""
        return await connect.async_add_resource_subscription(
            self._device_id(), self.path, notify_fn
        )

    async def async_unsubscribe(self, connect: ConnectAPI) -> Any:
        """Remove the subscription to this resource."""
        return await connect.async_delete_resource_subscription(
            self._device_id(), self.path
        )


@dataclass
class ConnectedDevice(ApiDataClass):
    """A device currently registered with the connect service."""

    id: str = field(metadata=field_options(alias="name"))
    type: str | None = None
    state: str | None = field(metadata=field_options(alias="status"), default=None)
    """Either `ACTIVE` or `STALE`."""

    queue_mode: bool = field(metadata=field_options(alias="q"), default=False)

    async def async_list_resources(self, connect: ConnectAPI) -> list[Resource]:
        """List the resources of the device."""
        return await connect.async_list_resources(self.id)

    async def async_list_subscriptions(self, connect: ConnectAPI) -> list[str]:
        """List the subscribed resource paths of the device."""
        return await connect.async_list_device_subscriptions(self.id)

    async def async_delete_subscriptions(self, connect: ConnectAPI) -> None:
        """Remove all subscriptions of the device."""
        await connect.async_delete_device_subscriptions(self.id)
