"""Client for the device directory: device records, saved queries and logs.

The device directory holds a record for every device known to the account,
whether or not it is currently connected. Unlike `ConnectAPI` it keeps no
local state.
"""

from __future__ import annotations

import logging

from .auth import AbstractAuth
from .device import Device, DeviceLog
from .diagnostics import DIRECTORY_DIAGNOSTICS as DIAGNOSTICS
from .listing import ListOptions, ListResponse
from .model import field_aliases
from .query import Query

__all__ = ["DeviceDirectoryAPI"]

_LOGGER = logging.getLogger(__name__)

DEVICES_URL = "v3/devices"
QUERIES_URL = "v3/device-queries"
DEVICE_LOGS_URL = "v3/device-events"


class DeviceDirectoryAPI:
    """Client library to manage devices in the device directory."""

    def __init__(self, auth: AbstractAuth) -> None:
        """Initialize the API and store the auth so we can make requests."""
        self._auth = auth

    async def async_list_devices(
        self, options: ListOptions | None = None
    ) -> ListResponse[Device]:
        """Return one page of devices matching the options."""
        params = (options or ListOptions()).as_params(field_aliases(Device))
        with DIAGNOSTICS.timer("list_devices"):
            data = await self._auth.get_json(DEVICES_URL, params=params)
        return ListResponse.parse(data, Device.parse)

    async def async_get_device(self, device_id: str) -> Device:
        """Return a specific device."""
        with DIAGNOSTICS.timer("get_device"):
            data = await self._auth.get_json(f"{DEVICES_URL}/{device_id}")
        return Device.parse(data)

    async def async_add_device(self, device: Device) -> Device:
        """Add a device to the directory, returning the created record."""
        _LOGGER.debug("Adding device %s", device.name)
        with DIAGNOSTICS.timer("add_device"):
            data = await self._auth.post_json(DEVICES_URL, json=device.create_body)
        return Device.parse(data)

    async def async_update_device(self, device: Device) -> Device:
        """Update the mutable fields of a device."""
        if not device.id:
            raise ValueError("Device has no id")
        with DIAGNOSTICS.timer("update_device"):
            data = await self._auth.put_json(
                f"{DEVICES_URL}/{device.id}", json=device.update_body
            )
        return Device.parse(data)

    async def async_delete_device(self, device_id: str) -> None:
        """Delete a device from the directory."""
        with DIAGNOSTICS.timer("delete_device"):
            await self._auth.delete(f"{DEVICES_URL}/{device_id}")

    async def async_list_queries(
        self, options: ListOptions | None = None
    ) -> ListResponse[Query]:
        """Return one page of saved queries."""
        params = (options or ListOptions()).as_params(field_aliases(Query))
        with DIAGNOSTICS.timer("list_queries"):
            data = await self._auth.get_json(QUERIES_URL, params=params)
        return ListResponse.parse(data, Query.parse)

    async def async_get_query(self, query_id: str) -> Query:
        """Return a specific saved query."""
        with DIAGNOSTICS.timer("get_query"):
            data = await self._auth.get_json(f"{QUERIES_URL}/{query_id}")
        return Query.parse(data)

    async def async_add_query(self, query: Query) -> Query:
        """Save a new query."""
        with DIAGNOSTICS.timer("add_query"):
            data = await self._auth.post_json(QUERIES_URL, json=query.create_body)
        return Query.parse(data)

    async def async_update_query(self, query: Query) -> Query:
        """Update the name, description or filter of a saved query."""
        if not query.id:
            raise ValueError("Query has no id")
        with DIAGNOSTICS.timer("update_query"):
            data = await self._auth.put_json(
                f"{QUERIES_URL}/{query.id}", json=query.update_body
            )
        return Query.parse(data)

    async def async_delete_query(self, query_id: str) -> None:
        """Delete a saved query."""
        with DIAGNOSTICS.timer("delete_query"):
            await self._auth.delete(f"{QUERIES_URL}/{query_id}")

    async def async_list_device_logs(
        self, options: ListOptions | None = None
    ) -> ListResponse[DeviceLog]:
        """Return one page of device log entries."""
        params = (options or ListOptions()).as_params(field_aliases(DeviceLog))
        with DIAGNOSTICS.timer("list_device_logs"):
            data = await self._auth.get_json(DEVICE_LOGS_URL, params=params)
        return ListResponse.parse(data, DeviceLog.parse)

    async def async_get_device_log(self, log_id: str) -> DeviceLog:
        """Return a specific device log entry."""
        with DIAGNOSTICS.timer("get_device_log"):
            data = await self._auth.get_json(f"{DEVICE_LOGS_URL}/{log_id}")
        return DeviceLog.parse(data)
