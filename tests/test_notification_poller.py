from __future__ import annotations

import datetime
from typing import Any, Awaitable, Callable
from unittest.mock import AsyncMock

import aiohttp
import pytest

from mbed_cloud_connect import diagnostics
from mbed_cloud_connect.auth import AbstractAuth
from mbed_cloud_connect.exceptions import ApiException, CloudException
from mbed_cloud_connect.notification_poller import (
    DEFAULT_POLL_INTERVAL,
    NotificationOptions,
    NotificationPoller,
)
from mbed_cloud_connect.notifications import AsyncResponse, NotificationEnvelope

from .conftest import ConnectHandler, b64, wait_for

INTERVAL = datetime.timedelta(milliseconds=10)


class RequestRecorder:
    """Records the results reported after each poll."""

    def __init__(self) -> None:
        self.results: list[tuple[list[AsyncResponse], Exception | None]] = []

    async def async_report(
        self, async_responses: list[AsyncResponse], error: Exception | None
    ) -> None:
        self.results.append((async_responses, error))

    @property
    def errors(self) -> list[Exception]:
        return [error for _, error in self.results if error is not None]


@pytest.fixture(name="make_poller")
def mock_make_poller(
    auth_client: Callable[[], Awaitable[AbstractAuth]],
) -> Callable[..., Awaitable[NotificationPoller]]:
    async def _make_poller(
        callback: Any, request_callback: Any = None
    ) -> NotificationPoller:
        return NotificationPoller(
            await auth_client(),
            callback,
            NotificationOptions(interval=INTERVAL, request_callback=request_callback),
        )

    return _make_poller


def test_default_interval() -> None:
    assert NotificationOptions().interval == DEFAULT_POLL_INTERVAL
    assert DEFAULT_POLL_INTERVAL == datetime.timedelta(milliseconds=500)


async def test_poll_dispatches_envelope(
    connect_handler: ConnectHandler,
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    callback = AsyncMock()
    poller = await make_poller(callback)
    connect_handler.pull_queue.append(
        {"notifications": [{"ep": "dev1", "path": "/1/0/1", "payload": b64("1")}]}
    )

    poller.start()
    assert poller.running
    await wait_for(lambda: callback.await_count == 1)

    envelope = callback.await_args.args[0]
    assert isinstance(envelope, NotificationEnvelope)
    assert envelope.notifications == [
        {"ep": "dev1", "path": "/1/0/1", "payload": b64("1")}
    ]

    poller.stop()
    await poller.async_wait_stopped()
    assert not poller.running


async def test_empty_poll(
    connect_handler: ConnectHandler,
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    callback = AsyncMock()
    recorder = RequestRecorder()
    poller = await make_poller(callback, recorder.async_report)

    poller.start()
    await wait_for(lambda: len(recorder.results) >= 2)
    poller.stop()
    await poller.async_wait_stopped()

    assert not callback.called
    assert recorder.results[0] == ([], None)
    assert diagnostics.get_diagnostics()["poller"]["poll_empty"] >= 2


async def test_poll_error_does_not_stop_loop(
    connect_handler: ConnectHandler,
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    callback = AsyncMock()
    recorder = RequestRecorder()
    poller = await make_poller(callback, recorder.async_report)
    connect_handler.pull_queue.extend(
        [
            aiohttp.web.Response(status=500),
            aiohttp.web.Response(text="not-json", content_type="application/json"),
            {"registrations": [{"ep": "dev1"}]},
        ]
    )

    poller.start()
    await wait_for(lambda: callback.await_count == 1)
    poller.stop()
    await poller.async_wait_stopped()

    assert len(recorder.errors) == 2
    assert all(isinstance(error, ApiException) for error in recorder.errors)
    assert diagnostics.get_diagnostics()["poller"]["poll_error"] == 2


async def test_async_responses_reported(
    connect_handler: ConnectHandler,
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    recorder = RequestRecorder()
    poller = await make_poller(AsyncMock(), recorder.async_report)
    connect_handler.pull_queue.append(
        {
            "async-responses": [
                {"id": "async-id-1", "status": 200, "payload": b64("1")},
                {"status": 200},
            ]
        }
    )

    poller.start()
    await wait_for(lambda: len(recorder.results) >= 1)
    poller.stop()
    await poller.async_wait_stopped()

    async_responses, error = recorder.results[0]
    assert error is None
    assert [response.id for response in async_responses] == ["async-id-1"]


async def test_request_callback_failure(
    connect_handler: ConnectHandler,
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    request_callback = AsyncMock(side_effect=ValueError("callback failure"))
    poller = await make_poller(AsyncMock(), request_callback)

    poller.start()
    await wait_for(lambda: request_callback.await_count >= 2)
    assert poller.running
    poller.stop()
    await poller.async_wait_stopped()

    assert (
        diagnostics.get_diagnostics()["poller"]["request_callback_exception"] >= 2
    )


async def test_one_poll_in_flight(
    connect_handler: ConnectHandler,
    auth_client: Callable[[], Awaitable[AbstractAuth]],
) -> None:
    connect_handler.pull_delay = 0.03
    poller = NotificationPoller(
        await auth_client(),
        AsyncMock(),
        NotificationOptions(interval=datetime.timedelta(0)),
    )

    poller.start()
    await wait_for(lambda: connect_handler.pull_count >= 4)
    poller.stop()
    await poller.async_wait_stopped()

    assert connect_handler.max_pulls_in_flight == 1


async def test_start_twice(
    connect_handler: ConnectHandler,
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    poller = await make_poller(AsyncMock())
    poller.start()

    with pytest.raises(CloudException):
        poller.start()

    poller.stop()
    await poller.async_wait_stopped()


async def test_wait_stopped_before_start(
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    poller = await make_poller(AsyncMock())
    assert not poller.running
    await poller.async_wait_stopped()


async def test_empty_envelope_not_dispatched(
    connect_handler: ConnectHandler,
    make_poller: Callable[..., Awaitable[NotificationPoller]],
) -> None:
    callback = AsyncMock()
    recorder = RequestRecorder()
    poller = await make_poller(callback, recorder.async_report)
    connect_handler.pull_queue.append({"notifications": [], "async-responses": None})

    poller.start()
    await wait_for(lambda: len(recorder.results) >= 1)
    poller.stop()
    await poller.async_wait_stopped()

    assert not callback.called
    assert recorder.results[0] == ([], None)
