"""Account metrics of the connect service."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field

from mashumaro import field_options

from .exceptions import ConfigurationException
from .filters import encode_value
from .model import ApiDataClass

__all__ = ["Metric", "MetricsOptions"]

DEFAULT_INTERVAL = "1d"


@dataclass
class Metric(ApiDataClass):
    """Counters for one interval of time."""

    id: str
    timestamp: datetime.datetime | None = None
    """Start of the interval."""

    transactions: int = 0
    successful_api_calls: int = field(
        metadata=field_options(alias="device_server_rest_api_success"), default=0
    )
    failed_api_calls: int = field(
        metadata=field_options(alias="device_server_rest_api_error"), default=0
    )
    successful_handshakes: int = field(
        metadata=field_options(alias="handshakes_successful"), default=0
    )
    pending_bootstraps: int = field(
        metadata=field_options(alias="bootstraps_pending"), default=0
    )
    successful_bootstraps: int = field(
        metadata=field_options(alias="bootstraps_successful"), default=0
    )
    failed_bootstraps: int = field(
        metadata=field_options(alias="bootstraps_failed"), default=0
    )
    registrations: int = field(
        metadata=field_options(alias="full_registrations"), default=0
    )
    updated_registrations: int = field(
        metadata=field_options(alias="registration_updates"), default=0
    )
    expired_registrations: int = 0
    deleted_registrations: int = 0


@dataclass
class MetricsOptions:
    """Selects the metrics to list.

    Either `start` and `end`, or a relative `period` such as `"7d"`, must be
    given. The `include` names are the API metric names, for example
    `"transactions"` or `"full_registrations"`.
    """

    include: list[str] = field(default_factory=list)
    start: datetime.datetime | None = None
    end: datetime.datetime | None = None
    period: str | None = None
    interval: str = DEFAULT_INTERVAL
    limit: int | None = None
    after: str | None = None

    def as_params(self) -> dict[str, str]:
        """Return the query parameters for the request."""
        has_range = self.start is not None or self.end is not None
        if has_range and self.period is not None:
            raise ConfigurationException("Use either start/end or period, not both")
        if has_range and (self.start is None or self.end is None):
            raise ConfigurationException("Both start and end are required")
        if not has_range and self.period is None:
            raise ConfigurationException("One of start/end or period is required")
        params = {"interval": self.interval}
        if self.include:
            params["include"] = ",".join(self.include)
        if self.start is not None and self.end is not None:
            params["start"] = encode_value(self.start)
            params["end"] = encode_value(self.end)
        if self.period is not None:
            params["period"] = self.period
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.after is not None:
            params["after"] = self.after
        return params
