"""Webhook and pre-subscription records of the connect service."""

from __future__ import annotations

from dataclasses import dataclass, field

from mashumaro import field_options

from .model import ApiDataClass

__all__ = ["Webhook", "Presubscription"]


@dataclass
class Webhook(ApiDataClass):
    """A callback url the service pushes notification envelopes to."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    """Headers sent by the service with every delivery."""


@dataclass
class Presubscription(ApiDataClass):
    """Subscription applied automatically to matching devices as they register.

    The `device_id` may end with a `*` wildcard, and `resource_paths` accept
    wildcards to subscribe to several resources at once.
    """

    device_id: str | None = field(
        metadata=field_options(alias="endpoint-name"), default=None
    )
    device_type: str | None = field(
        metadata=field_options(alias="endpoint-type"), default=None
    )
    resource_paths: list[str] = field(
        metadata=field_options(alias="resource-path"), default_factory=list
    )
