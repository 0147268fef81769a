"""Library for exceptions raised by the device management API clients."""

from __future__ import annotations

from typing import Any


class CloudException(Exception):
    """Base class for all client exceptions."""


class ApiException(CloudException):
    """Raised during problems talking to the API."""


class AuthException(ApiException):
    """Raised due to auth problems talking to the API."""


class ApiForbiddenException(ApiException):
    """Raised when the API key does not have access to the resource."""


class NotFoundException(ApiException):
    """Raised when the API returns a not found response."""


class AlreadyActiveException(CloudException):
    """Raised when starting a notification channel that is already active."""


class DecodeException(CloudException):
    """Raised when a notification payload could not be decoded."""


class ConfigurationException(CloudException):
    """Raised due to misconfiguration problems."""


class AsyncResponseException(CloudException):
    """Raised when a device answered an asynchronous request with an error."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        payload: Any = None,
    ) -> None:
        """Initialize AsyncResponseException."""
        super().__init__(message)
        self.status = status
        self.payload = payload
