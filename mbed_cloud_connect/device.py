"""Devices and device logs from the device directory."""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from mashumaro import field_options

from .diagnostics import redact_data
from .model import ApiDataClass

if TYPE_CHECKING:
    from .connect_api import ConnectAPI
    from .connected_device import Resource
    from .device_directory import DeviceDirectoryAPI

__all__ = [
    "Device",
    "DeviceLog",
    "DeviceState",
    "DeploymentState",
    "Mechanism",
]


class DeviceState(enum.StrEnum):
    """Lifecycle state of a device in the directory."""

    UNENROLLED = "unenrolled"
    CLOUD_ENROLLING = "cloud_enrolling"
    BOOTSTRAPPED = "bootstrapped"
    REGISTERED = "registered"
    DEREGISTERED = "deregistered"


class DeploymentState(enum.StrEnum):
    """State of the device deployment."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Mechanism(enum.StrEnum):
    """Channel used to communicate with the device."""

    CONNECTOR = "connector"
    DIRECT = "direct"


# Fields the service accepts when a device is updated
UPDATE_FIELDS = {
    "name",
    "endpoint_name",
    "description",
    "auto_update",
    "custom_attributes",
    "ca_id",
    "device_key",
}

# Fields assigned by the service, never sent when a device is created
READ_ONLY_FIELDS = {
    "id",
    "account_id",
    "created_at",
    "updated_at",
    "manifest_timestamp",
    "trust_class",
}


@dataclass
class Device(ApiDataClass):
    """A device record in the device directory."""

    id: str | None = None
    """The ID of the device."""

    account_id: str | None = None
    """The owning account ID."""

    name: str | None = None
    """The name of the device."""

    alias: str | None = field(
        metadata=field_options(alias="endpoint_name"), default=None
    )
    """The endpoint name the device registers with."""

    description: str | None = None

    certificate_issuer_id: str | None = field(
        metadata=field_options(alias="ca_id"), default=None
    )
    """ID of the issuer of the certificate."""

    certificate_fingerprint: str | None = field(
        metadata=field_options(alias="device_key"), default=None
    )
    """Fingerprint of the device certificate."""

    auto_update: bool | None = None
    """Mark this device for auto firmware update."""

    custom_attributes: dict[str, str] = field(default_factory=dict)
    """Up to 5 custom JSON attributes."""

    state: str | None = None
    """One of the `DeviceState` values."""

    deployed_state: str | None = None
    """One of the `DeploymentState` values."""

    device_class: str | None = None
    device_execution_mode: int | None = None
    serial_number: str | None = None
    vendor_id: str | None = None

    mechanism: str | None = None
    """One of the `Mechanism` values."""

    mechanism_url: str | None = None
    """The address of the connector to use."""

    manifest_url: str | None = field(
        metadata=field_options(alias="manifest"), default=None
    )
    firmware_checksum: str | None = None
    last_deployment: str | None = field(
        metadata=field_options(alias="deployment"), default=None
    )
    trust_level: int | None = None
    trust_class: int | None = None

    connector_certificate_expiration: datetime.datetime | None = field(
        metadata=field_options(alias="connector_expiration_date"), default=None
    )
    bootstrap_certificate_expiration: datetime.datetime | None = field(
        metadata=field_options(alias="bootstrap_expiration_date"), default=None
    )
    bootstrapped_timestamp: datetime.datetime | None = None
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None
    manifest_timestamp: datetime.datetime | None = None

    @property
    def create_body(self) -> dict[str, Any]:
        """Return the request body used to add this device."""
        return {
            k: v for k, v in self.raw_data.items() if k not in READ_ONLY_FIELDS
        }

    @property
    def update_body(self) -> dict[str, Any]:
        """Return the request body used to update this device."""
        return {k: v for k, v in self.raw_data.items() if k in UPDATE_FIELDS}

    async def async_update(self, api: DeviceDirectoryAPI) -> Device:
        """Push local changes to the directory, returning the updated device."""
        return await api.async_update_device(self)

    async def async_delete(self, api: DeviceDirectoryAPI) -> None:
        """Delete this device from the directory."""
        await api.async_delete_device(self._require_id())

    async def async_list_resources(self, connect: ConnectAPI) -> list[Resource]:
        """List the resources of this device when it is connected."""
        return await connect.async_list_resources(self._require_id())

    async def async_list_subscriptions(self, connect: ConnectAPI) -> list[str]:
        """List the resource paths this device is subscribed to."""
        return await connect.async_list_device_subscriptions(self._require_id())

    async def async_delete_subscriptions(self, connect: ConnectAPI) -> None:
        """Remove all subscriptions of this device."""
        await connect.async_delete_device_subscriptions(self._require_id())

    def get_diagnostics(self) -> dict[str, Any]:
        return {"data": redact_data(self.raw_data)}

    def _require_id(self) -> str:
        if not self.id:
            raise ValueError("Device has no id")
        return self.id


@dataclass
class DeviceLog(ApiDataClass):
    """An entry from the device event log."""

    id: str
    """The ID of the log entry."""

    date_time: datetime.datetime | None = None
    """When the event happened."""

    device_id: str | None = None

    event_type: str | None = None
    """Type of the event, such as `update.device.device-created`."""

    description: str | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    state_change: bool | None = None
