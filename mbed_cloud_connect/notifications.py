"""Notification envelopes and the events they are dispatched as.

A notification envelope is the JSON document delivered by the service, either
pushed to a webhook or returned by a long-poll request. It may contain any
combination of resource value notifications, device lifecycle events and
responses to asynchronous resource requests:

```
{
    "notifications": [{"ep": "015bb66a...", "path": "/3200/0/5500", "payload": "MQ=="}],
    "registrations": [{"ep": "015bb66a...", "ept": "sensor", "resources": [...]}],
    "async-responses": [{"id": "9e5d...", "status": 200, "payload": "MQ=="}],
}
```

Each entry is parsed on its own so a malformed entry does not prevent the rest
of the envelope from being handled.
"""

from __future__ import annotations

import base64
import binascii
import enum
import json
import logging
import re
from abc import ABC
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from mashumaro import field_options

from .connected_device import Resource, normalize_path
from .diagnostics import NOTIFICATION_DIAGNOSTICS
from .exceptions import DecodeException
from .model import ApiDataClass, field_aliases
from .registry import Registry

__all__ = [
    "EventType",
    "NotificationEnvelope",
    "ResourceNotification",
    "AsyncResponse",
    "DeviceEvent",
    "ConnectEvent",
    "ResourceNotificationEvent",
    "RegistrationsEvent",
    "ReregistrationsEvent",
    "DeregistrationsEvent",
    "ExpiredEvent",
    "decode_payload",
    "decode_text",
]

_LOGGER = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
REGISTRATIONS = "registrations"
REG_UPDATES = "reg-updates"
DE_REGISTRATIONS = "de-registrations"
REGISTRATIONS_EXPIRED = "registrations-expired"
ASYNC_RESPONSES = "async-responses"

NUMBER_REGEXP = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")
INTEGER_REGEXP = re.compile(r"^-?\d+$")

DEVICE_EVENT_MAP = Registry()


class EventType(enum.StrEnum):
    """Names of the events emitted by the connect API."""

    NOTIFICATION = "notification"
    REGISTRATION = "registration"
    REREGISTRATION = "reregistration"
    DEREGISTRATION = "deregistration"
    EXPIRED = "expired"


def _to_number(text: str) -> int | float | None:
    if not NUMBER_REGEXP.match(text):
        return None
    if INTEGER_REGEXP.match(text):
        return int(text)
    return float(text)


def decode_payload(payload: str | None, content_type: str | None = None) -> Any:
    """Decode a base64 payload from a notification.

    JSON content types are parsed, numeric text becomes an int or float and
    anything else is returned as text. An empty payload decodes to None.
    """
    if not payload:
        return None
    try:
        text = base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as err:
        raise DecodeException(f"Invalid payload encoding: {err}") from err
    return decode_text(text, content_type)


def decode_text(text: str, content_type: str | None = None) -> Any:
    """Decode a resource value received as text."""
    if content_type and "json" in content_type:
        try:
            return json.loads(text)
        except ValueError as err:
            raise DecodeException(f"Invalid JSON payload: {err}") from err
    if (number := _to_number(text.strip())) is not None:
        return number
    return text


@dataclass
class NotificationEnvelope(ApiDataClass):
    """One batch of notifications, with each category kept as raw entries."""

    notifications: list[Any] = field(default_factory=list)
    registrations: list[Any] = field(default_factory=list)
    reg_updates: list[Any] = field(
        metadata=field_options(alias=REG_UPDATES), default_factory=list
    )
    de_registrations: list[Any] = field(
        metadata=field_options(alias=DE_REGISTRATIONS), default_factory=list
    )
    registrations_expired: list[Any] = field(
        metadata=field_options(alias=REGISTRATIONS_EXPIRED), default_factory=list
    )
    async_responses: list[Any] = field(
        metadata=field_options(alias=ASYNC_RESPONSES), default_factory=list
    )

    @classmethod
    def __pre_deserialize__(cls, d: dict[Any, Any]) -> dict[Any, Any]:
        """Treat a null or malformed category the same as a missing one.

        Categories are independent, so a malformed category must not prevent
        the rest of the envelope from being dispatched.
        """
        categories = {f.name for f in fields(cls)} | set(field_aliases(cls).values())
        result = {}
        for key, value in d.items():
            if value is None:
                continue
            if key in categories and not isinstance(value, list):
                NOTIFICATION_DIAGNOSTICS.increment("malformed_category")
                _LOGGER.info("Skipping malformed %s category: %s", key, value)
                continue
            result[key] = value
        return result

    def device_events(self) -> dict[str, list[Any]]:
        """Return the device lifecycle categories keyed by envelope key."""
        return {
            REGISTRATIONS: self.registrations,
            REG_UPDATES: self.reg_updates,
            DE_REGISTRATIONS: self.de_registrations,
            REGISTRATIONS_EXPIRED: self.registrations_expired,
        }

    @property
    def is_empty(self) -> bool:
        """Return True when the envelope carries nothing to dispatch."""
        return not (
            self.notifications
            or self.async_responses
            or any(self.device_events().values())
        )


@dataclass
class ResourceNotification(ApiDataClass):
    """A new value pushed for a subscribed resource."""

    device_id: str = field(metadata=field_options(alias="ep"))
    path: str
    payload: str | None = None
    """Base64 encoded value."""

    content_type: str | None = field(metadata=field_options(alias="ct"), default=None)
    max_age: int | None = field(metadata=field_options(alias="max-age"), default=None)

    def __post_init__(self) -> None:
        self.path = normalize_path(self.path)

    def decoded_payload(self) -> Any:
        return decode_payload(self.payload, self.content_type)


@dataclass
class AsyncResponse(ApiDataClass):
    """The deferred result of an asynchronous resource request."""

    id: str
    status: int | None = None
    """HTTP style status code, for example 200."""

    content_type: str | None = field(metadata=field_options(alias="ct"), default=None)
    payload: str | None = None
    """Base64 encoded response data."""

    max_age: int | None = field(metadata=field_options(alias="max-age"), default=None)
    """Seconds the value remains valid in the service cache."""

    error: str | None = None

    @property
    def is_error(self) -> bool:
        """Return True if the device reported a failure."""
        return self.error is not None or (
            self.status is not None and self.status >= 400
        )

    def decoded_payload(self) -> Any:
        return decode_payload(self.payload, self.content_type)


@dataclass
class DeviceEvent(ApiDataClass):
    """A device registering, updating, deregistering or expiring."""

    device_id: str = field(metadata=field_options(alias="ep"))
    device_type: str | None = field(metadata=field_options(alias="ept"), default=None)
    queue_mode: bool = field(metadata=field_options(alias="q"), default=False)
    resources: list[Resource] = field(default_factory=list)

    @classmethod
    def __pre_deserialize__(cls, d: dict[Any, Any]) -> dict[Any, Any]:
        """Accept the long-form field names used by some deliveries."""
        d = dict(d)
        for long_name, alias in (("id", "ep"), ("type", "ept"), ("queueMode", "q")):
            if long_name in d and alias not in d:
                d[alias] = d.pop(long_name)
        return d

    def __post_init__(self) -> None:
        for resource in self.resources:
            resource.device_id = self.device_id


class ConnectEvent(ABC):
    """Base class of every event emitted by the connect API.

    `NAME` is the tag listeners are registered against.
    """

    NAME: ClassVar[EventType]


@dataclass
class ResourceNotificationEvent(ConnectEvent):
    """A resource value changed."""

    NAME: ClassVar[EventType] = EventType.NOTIFICATION

    device_id: str
    path: str
    payload: Any
    """The decoded value."""

    content_type: str | None = None


@dataclass
class DeviceEventsEvent(ConnectEvent):
    """Base class for events carrying one envelope category of device events."""

    ENVELOPE_KEY: ClassVar[str]

    devices: list[DeviceEvent]
    raw_data: list[Any]
    """The entries exactly as delivered."""


@DEVICE_EVENT_MAP.register()
@dataclass
class RegistrationsEvent(DeviceEventsEvent):
    """New devices registered, with their resources."""

    NAME: ClassVar[EventType] = EventType.REGISTRATION
    ENVELOPE_KEY: ClassVar[str] = REGISTRATIONS


@DEVICE_EVENT_MAP.register()
@dataclass
class ReregistrationsEvent(DeviceEventsEvent):
    """Devices updated their registration."""

    NAME: ClassVar[EventType] = EventType.REREGISTRATION
    ENVELOPE_KEY: ClassVar[str] = REG_UPDATES


@DEVICE_EVENT_MAP.register()
@dataclass
class DeregistrationsEvent(DeviceEventsEvent):
    """Devices were removed in a controlled manner."""

    NAME: ClassVar[EventType] = EventType.DEREGISTRATION
    ENVELOPE_KEY: ClassVar[str] = DE_REGISTRATIONS


@DEVICE_EVENT_MAP.register()
@dataclass
class ExpiredEvent(DeviceEventsEvent):
    """Devices were removed because their registration expired."""

    NAME: ClassVar[EventType] = EventType.EXPIRED
    ENVELOPE_KEY: ClassVar[str] = REGISTRATIONS_EXPIRED


def build_device_events_event(
    envelope_key: str, entries: list[Any]
) -> DeviceEventsEvent:
    """Create the event for one device lifecycle category.

    Deregistrations and expirations may be delivered as bare device ids.
    Entries that cannot be parsed are logged and left out of `devices` but
    are still present in `raw_data`.
    """
    cls = DEVICE_EVENT_MAP[envelope_key]
    devices = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"ep": entry}
        try:
            devices.append(DeviceEvent.parse(entry))
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.debug("Failed to parse %s entry %s: %s", envelope_key, entry, err)
    return cls(devices=devices, raw_data=list(entries))  # type: ignore[no-any-return]
