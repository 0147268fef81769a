"""Authentication library used to talk to the device management service.

This library is a thin wrapper around an `aiohttp.ClientSession` that handles
authentication and error mapping when talking to the API. Users may use the
bundled `ApiKeyAuth`, or implement `AbstractAuth` themselves to provide the
credential in some other way (for example read from a secrets store, or
rotated in the background).

The implementation is responsible for managing the lifecycle of the
credential. The `aiohttp.ClientSession` is owned by the caller.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from asyncio import TimeoutError
from typing import Any
from http import HTTPStatus

import aiohttp
from aiohttp.client_exceptions import ClientError
from mashumaro.mixins.json import DataClassJSONMixin

from .exceptions import (
    ApiException,
    AuthException,
    ApiForbiddenException,
    NotFoundException,
)

_LOGGER = logging.getLogger(__name__)

__all__ = ["AbstractAuth", "ApiKeyAuth", "ApiEnv"]

AUTHORIZATION_HEADER = "Authorization"
CONTENT_TYPE_TEXT = "text/plain"


class ApiEnv(enum.Enum):
    """Known hosts of the device management service."""

    PROD = "https://api.us-east-1.mbedcloud.com"

    @property
    def host(self) -> str:
        """API host url."""
        return str(self.value)


def get_api_host(env: str | None) -> str:
    """Return the API host for a named environment or an explicit url."""
    if env is None or env == "prod":
        return ApiEnv.PROD.host
    if env.startswith("http://") or env.startswith("https://"):
        return env.rstrip("/")
    raise ValueError("Invalid ApiEnv: %s" % env)


@dataclass
class Error(DataClassJSONMixin):
    """Error details from the API response."""

    code: int | None = None
    type: str | None = None
    message: str | None = None
    request_id: str | None = None
    fields: list[dict[str, Any]] = field(default_factory=list)

    def __str__(self) -> str:
        """Return a string representation of the error details."""
        error_message = ""
        if self.type:
            error_message += self.type
        if self.code:
            if error_message:
                error_message += f" ({self.code})"
            else:
                error_message += str(self.code)
        if self.message:
            if error_message:
                error_message += ": "
            error_message += self.message
        if self.fields:
            error_message += f"\nError fields: ({self.fields})"
        return error_message


class AbstractAuth(ABC):
    """Abstract class to make authenticated requests."""

    def __init__(self, websession: aiohttp.ClientSession, host: str):
        """Initialize the AbstractAuth."""
        self._websession = websession
        self._host = host

    @property
    def host(self) -> str:
        """Return the host requests are sent to."""
        return self._host

    @abstractmethod
    async def async_get_access_token(self) -> str:
        """Return a valid access token or API key."""

    async def request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> aiohttp.ClientResponse:
        """Make a request."""
        headers = kwargs.get("headers")

        if headers is None:
            headers = {}
        else:
            headers = dict(headers)
            del kwargs["headers"]
        if AUTHORIZATION_HEADER not in headers:
            try:
                access_token = await self.async_get_access_token()
            except TimeoutError as err:
                raise ApiException(f"Timeout requesting API token: {err}") from err
            except ClientError as err:
                raise AuthException(f"Access token failure: {err}") from err
            headers[AUTHORIZATION_HEADER] = f"Bearer {access_token}"
        if not (url.startswith("http://") or url.startswith("https://")):
            url = f"{self._host}/{url}"
        _LOGGER.debug("request[%s]=%s", method, url)
        if method in ("post", "put") and "json" in kwargs:
            _LOGGER.debug("request[%s json]=%s", method, kwargs["json"])
        try:
            return await self._request(method, url, headers=headers, **kwargs)
        except (ClientError, TimeoutError) as err:
            raise ApiException(f"Error connecting to API: {err}") from err

    async def _request(
        self, method: str, url: str, headers: dict[str, str], **kwargs: Any
    ) -> aiohttp.ClientResponse:
        return await self._websession.request(method, url, **kwargs, headers=headers)

    async def get(self, url: str, **kwargs: Any) -> aiohttp.ClientResponse:
        """Make a get request."""
        response = await self.request("get", url, **kwargs)
        return await AbstractAuth._raise_for_status(response)

    async def get_json(self, url: str, **kwargs: Any) -> dict[str, Any]:
        """Make a get request and return json response."""
        resp = await self.get(url, **kwargs)
        result = await self._json(resp)
        if not isinstance(result, dict):
            raise ApiException("Server returned malformed response: %s" % result)
        return result

    async def get_json_list(self, url: str, **kwargs: Any) -> list[Any]:
        """Make a get request and return a json list response."""
        resp = await self.get(url, **kwargs)
        result = await self._json(resp)
        if not isinstance(result, list):
            raise ApiException("Server returned malformed response: %s" % result)
        return result

    async def post(self, url: str, **kwargs: Any) -> aiohttp.ClientResponse:
        """Make a post request."""
        response = await self.request("post", url, **kwargs)
        return await AbstractAuth._raise_for_status(response)

    async def post_json(self, url: str, **kwargs: Any) -> dict[str, Any]:
        """Make a post request and return a json response."""
        resp = await self.post(url, **kwargs)
        result = await self._json(resp)
        if not isinstance(result, dict):
            raise ApiException("Server returned malformed response: %s" % result)
        return result

    async def put(self, url: str, **kwargs: Any) -> aiohttp.ClientResponse:
        """Make a put request."""
        response = await self.request("put", url, **kwargs)
        return await AbstractAuth._raise_for_status(response)

    async def put_json(self, url: str, **kwargs: Any) -> dict[str, Any]:
        """Make a put request and return a json response."""
        resp = await self.put(url, **kwargs)
        result = await self._json(resp)
        if not isinstance(result, dict):
            raise ApiException("Server returned malformed response: %s" % result)
        return result

    async def delete(self, url: str, **kwargs: Any) -> aiohttp.ClientResponse:
        """Make a delete request."""
        response = await self.request("delete", url, **kwargs)
        return await AbstractAuth._raise_for_status(response)

    @staticmethod
    async def _json(resp: aiohttp.ClientResponse) -> Any:
        try:
            result = await resp.json()
        except (ClientError, ValueError) as err:
            raise ApiException("Server returned malformed response") from err
        _LOGGER.debug("response=%s", result)
        return result

    @classmethod
    async def _raise_for_status(
        cls, resp: aiohttp.ClientResponse
    ) -> aiohttp.ClientResponse:
        """Raise exceptions on failure methods."""
        error_detail = await cls._error_detail(resp)
        try:
            resp.raise_for_status()
        except aiohttp.ClientResponseError as err:
            error_message = f"{err.message} response from API ({resp.status})"
            if error_detail:
                error_message += f": {error_detail}"
            if err.status == HTTPStatus.FORBIDDEN:
                raise ApiForbiddenException(error_message)
            if err.status == HTTPStatus.UNAUTHORIZED:
                raise AuthException(error_message)
            if err.status == HTTPStatus.NOT_FOUND:
                raise NotFoundException(error_message)
            raise ApiException(error_message) from err
        except aiohttp.ClientError as err:
            raise ApiException(f"Error from API: {err}") from err
        return resp

    @classmethod
    async def _error_detail(cls, resp: aiohttp.ClientResponse) -> Error | None:
        """Returns an error message string from the API response."""
        if resp.status < 400:
            return None
        try:
            result = await resp.text()
        except ClientError:
            return None
        try:
            return Error.from_json(result)
        except (LookupError, ValueError, TypeError, AttributeError):
            return None


class ApiKeyAuth(AbstractAuth):
    """Authenticate requests with a static API key."""

    def __init__(
        self,
        websession: aiohttp.ClientSession,
        api_key: str,
        host: str = ApiEnv.PROD.host,
    ) -> None:
        """Initialize ApiKeyAuth."""
        super().__init__(websession, host)
        self._api_key = api_key

    async def async_get_access_token(self) -> str:
        """Return the API key."""
        return self._api_key
