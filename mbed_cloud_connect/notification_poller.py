"""Long-poll loop feeding notification envelopes to the connect API."""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Awaitable, Callable

from aiohttp.client_exceptions import ClientError

from .auth import AbstractAuth
from .diagnostics import POLLER_DIAGNOSTICS as DIAGNOSTICS
from .exceptions import ApiException, CloudException
from .notifications import AsyncResponse, NotificationEnvelope

__all__ = [
    "NotificationOptions",
    "NotificationPoller",
    "DEFAULT_POLL_INTERVAL",
]

_LOGGER = logging.getLogger(__name__)

PULL_URL = "v2/notification/pull"

DEFAULT_POLL_INTERVAL = datetime.timedelta(milliseconds=500)

RequestCallback = Callable[
    [list[AsyncResponse], Exception | None], Awaitable[None]
]


@dataclass
class NotificationOptions:
    """Options for long polling."""

    interval: datetime.timedelta = DEFAULT_POLL_INTERVAL
    """Delay between the end of one poll request and the start of the next."""

    request_callback: RequestCallback | None = None
    """Invoked after every poll with the async responses received, or the error."""


class NotificationPoller:
    """Repeatedly pulls notification envelopes until stopped.

    Only one poll request is in flight at a time: the next request is issued
    `interval` after the previous one finished, whether it succeeded or not.
    """

    def __init__(
        self,
        auth: AbstractAuth,
        callback: Callable[[NotificationEnvelope], Awaitable[None]],
        options: NotificationOptions | None = None,
    ) -> None:
        """Initialize NotificationPoller."""
        self._auth = auth
        self._callback = callback
        self._options = options or NotificationOptions()
        self._background_task: asyncio.Task | None = None

    def start(self) -> None:
        """Start the background poll task."""
        if self.running:
            raise CloudException("Poller already running")
        DIAGNOSTICS.increment("start")
        self._background_task = asyncio.create_task(self._run_task())

    @property
    def running(self) -> bool:
        """Return True while the poll task is alive."""
        return self._background_task is not None and not self._background_task.done()

    def stop(self) -> None:
        """Cancel the poll task, including any poll request in flight."""
        _LOGGER.debug("Stopping notification poller")
        DIAGNOSTICS.increment("stop")
        if self._background_task:
            self._background_task.cancel()

    async def async_wait_stopped(self) -> None:
        """Wait for a stopped task to finish unwinding."""
        task = self._background_task
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_task(self) -> None:
        try:
            await self._run()
        except asyncio.CancelledError:
            _LOGGER.debug("Notification poll loop cancelled")
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.info("Uncaught error in notification poll loop: %s", err)
            DIAGNOSTICS.increment("uncaught_exception")

    async def _run(self) -> None:
        """Run the poll loop."""
        interval = self._options.interval.total_seconds()
        while True:
            envelope: NotificationEnvelope | None = None
            error: Exception | None = None
            try:
                envelope = await self._poll()
            except CloudException as err:
                _LOGGER.debug("Error polling for notifications: %s", err)
                DIAGNOSTICS.increment("poll_error")
                error = err
            if envelope is not None and not envelope.is_empty:
                # Let a started envelope finish even if the loop is cancelled
                await asyncio.shield(self._callback(envelope))
            await self._report(envelope, error)
            await asyncio.sleep(interval)

    async def _poll(self) -> NotificationEnvelope | None:
        """Issue one long-poll request."""
        DIAGNOSTICS.increment("poll")
        with DIAGNOSTICS.timer("poll_request"):
            resp = await self._auth.get(PULL_URL)
        if resp.status == HTTPStatus.NO_CONTENT:
            DIAGNOSTICS.increment("poll_empty")
            return None
        try:
            data = await resp.json()
        except (ClientError, ValueError) as err:
            raise ApiException("Server returned malformed notifications") from err
        if not isinstance(data, dict):
            raise ApiException("Server returned malformed notifications: %s" % data)
        _LOGGER.debug("Received notifications %s", data)
        try:
            return NotificationEnvelope.parse(data)
        except Exception as err:  # pylint: disable=broad-except
            raise ApiException(f"Unable to parse notifications: {err}") from err

    async def _report(
        self, envelope: NotificationEnvelope | None, error: Exception | None
    ) -> None:
        if self._options.request_callback is None:
            return
        async_responses: list[AsyncResponse] = []
        if envelope is not None:
            for entry in envelope.async_responses:
                try:
                    async_responses.append(AsyncResponse.parse(entry))
                except Exception as err:  # pylint: disable=broad-except
                    _LOGGER.debug("Skipping async response %s: %s", entry, err)
        try:
            await self._options.request_callback(async_responses, error)
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.info("Uncaught error in request callback: %s", err)
            DIAGNOSTICS.increment("request_callback_exception")
