"""Fixtures and libraries shared by tests."""

from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC
from typing import (
    Any,
    Awaitable,
    Callable,
    Generator,
    Optional,
    cast,
)

import aiohttp
import pytest
from aiohttp.test_utils import TestClient, TestServer

from mbed_cloud_connect import diagnostics
from mbed_cloud_connect.auth import AbstractAuth
from mbed_cloud_connect.connect_api import ConnectAPI
from mbed_cloud_connect.device_directory import DeviceDirectoryAPI

FAKE_TOKEN = "some-token"
DEVICE_ID = "015bb66a92a30000000000010010006d"

_LOGGER = logging.getLogger(__name__)


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s:%(filename)s:%(lineno)s %(message)s",  # noqa: E501
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if config.getoption("verbose") > 0:
        logging.getLogger().setLevel(logging.DEBUG)


def b64(value: str) -> str:
    """Encode a payload the way the service does."""
    return base64.b64encode(value.encode()).decode()


async def wait_for(predicate: Callable[[], bool], attempts: int = 200) -> None:
    """Yield to the event loop until the predicate is true."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("Condition was never met")


@pytest.fixture(name="app")
def mock_app() -> Generator[aiohttp.web.Application, None, None]:
    yield aiohttp.web.Application()


@pytest.fixture(name="server")
def mock_server(
    app: aiohttp.web.Application,
    aiohttp_server: Callable[[aiohttp.web.Application], Awaitable[TestServer]],
) -> Callable[[], Awaitable[TestServer]]:
    async def _make_server() -> TestServer:
        server = await aiohttp_server(app)
        server.skip_url_asserts = True
        assert isinstance(server, TestServer)
        return server

    return _make_server


@pytest.fixture(name="client")
def mock_client(
    server: Callable[[], Awaitable[TestServer]],
    aiohttp_client: Callable[[TestServer], Awaitable[TestClient]],
) -> Callable[[], Awaitable[TestClient]]:
    # Cache the value so that it can be mutated by a test
    cached_client: Optional[TestClient] = None

    async def _make_client() -> TestClient:
        nonlocal cached_client
        if not cached_client:
            cached_client = await aiohttp_client(await server())
            assert isinstance(cached_client, TestClient)
        return cached_client

    return _make_client


class FakeAuth(AbstractAuth):
    def __init__(self, test_client: TestClient, path_prefix: str = "") -> None:
        super().__init__(cast(aiohttp.ClientSession, test_client), path_prefix)

    async def async_get_access_token(self) -> str:
        return FAKE_TOKEN


@pytest.fixture(name="auth_client")
def mock_auth_client(
    app: aiohttp.web.Application, client: Any
) -> Callable[[str], Awaitable[AbstractAuth]]:
    async def _make_auth(path_prefix: str = "") -> AbstractAuth:
        return FakeAuth(await client(), path_prefix)

    return _make_auth


@pytest.fixture(name="connect")
async def connect_fixture(
    auth_client: Callable[[], Awaitable[AbstractAuth]],
) -> ConnectAPI:
    """Fixture to provide a connect API client.

    Handler fixtures must be requested before this one since the router is
    frozen once the server starts.
    """
    return ConnectAPI(await auth_client())


@pytest.fixture(name="directory")
async def directory_fixture(
    auth_client: Callable[[], Awaitable[AbstractAuth]],
) -> DeviceDirectoryAPI:
    """Fixture to provide a device directory API client."""
    return DeviceDirectoryAPI(await auth_client())


class Recorder:
    request: Optional[Any] = None
    requests: list[tuple[str, str]]

    def __init__(self) -> None:
        self.requests = []


# Function type that returns a response for a given request
ResponseForPathFunc = Callable[[aiohttp.web.Request], Any]


class JsonHandler(ABC):
    """Request handler that replays mocks."""

    def __init__(
        self, recorder: Recorder, response_for_path: ResponseForPathFunc
    ) -> None:
        """Initialize Handler."""
        self.token: str = FAKE_TOKEN
        self.recorder = recorder
        self.response_for_path = response_for_path

    async def handler(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        _LOGGER.debug("Request: %s", request)
        assert request.headers["Authorization"] == "Bearer %s" % self.token
        s = await request.text()
        self.recorder.request = await request.json() if s else {}
        self.recorder.requests.append((request.method, request.path_qs))
        data = self.response_for_path(request)
        if data is None:
            raise aiohttp.web.HTTPNotFound()
        if isinstance(data, aiohttp.web.Response):
            return data
        return aiohttp.web.json_response(data)


class ConnectHandler:
    """Fake connect service: endpoints, subscriptions and notification channels."""

    def __init__(self, app: aiohttp.web.Application, recorder: Recorder) -> None:
        """Initialize ConnectHandler."""
        self.recorder = recorder
        self.webhook: dict[str, Any] | None = None
        self.devices: list[dict[str, Any]] = []
        self.resources: dict[str, list[dict[str, Any]]] = {}
        self.values: dict[tuple[str, str], str] = {}
        self.subscriptions: dict[str, set[str]] = {}
        self.presubscriptions: list[dict[str, Any]] = []
        self.metrics: list[dict[str, Any]] = []
        self.async_ids: list[str] = []
        self.pull_queue: list[Any] = []
        self.pull_delay = 0.0
        self.pull_count = 0
        self.pulls_in_flight = 0
        self.max_pulls_in_flight = 0
        self.bodies: list[str] = []

        app.router.add_route("*", "/v2/notification/callback", self.handle_callback)
        app.router.add_route("*", "/v2/notification/pull", self.handle_pull)
        app.router.add_get("/v2/endpoints", self.handle_devices)
        app.router.add_get("/v2/endpoints/{device_id}", self.handle_resources)
        app.router.add_route(
            "*", "/v2/endpoints/{device_id}/{path:.+}", self.handle_resource
        )
        app.router.add_route("*", "/v2/subscriptions", self.handle_presubscriptions)
        app.router.add_route(
            "*", "/v2/subscriptions/{device_id}", self.handle_device_subscriptions
        )
        app.router.add_route(
            "*", "/v2/subscriptions/{device_id}/{path:.+}", self.handle_subscription
        )
        app.router.add_get("/v3/metrics", self.handle_metrics)

    def add_device(self, device_id: str = DEVICE_ID, device_type: str = "sensor") -> str:
        self.devices.append(
            {"name": device_id, "type": device_type, "status": "ACTIVE", "q": False}
        )
        self.resources[device_id] = [
            {"uri": "/3200/0/5500", "rt": "button", "ct": "text/plain", "obs": True},
            {"uri": "/3201/0/5850", "obs": False},
        ]
        return device_id

    def _check_auth(self, request: aiohttp.web.Request) -> None:
        assert request.headers["Authorization"] == f"Bearer {FAKE_TOKEN}"
        self.recorder.requests.append((request.method, request.path_qs))

    async def handle_callback(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        self._check_auth(request)
        if request.method == "PUT":
            self.webhook = await request.json()
            return aiohttp.web.Response(status=204)
        if self.webhook is None:
            raise aiohttp.web.HTTPNotFound()
        if request.method == "DELETE":
            self.webhook = None
            self.subscriptions.clear()
            return aiohttp.web.Response(status=204)
        return aiohttp.web.json_response(self.webhook)

    async def handle_pull(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        self._check_auth(request)
        if request.method == "DELETE":
            return aiohttp.web.Response(status=204)
        self.pull_count += 1
        self.pulls_in_flight += 1
        self.max_pulls_in_flight = max(self.max_pulls_in_flight, self.pulls_in_flight)
        try:
            if self.pull_delay:
                await asyncio.sleep(self.pull_delay)
            if not self.pull_queue:
                return aiohttp.web.Response(status=204)
            reply = self.pull_queue.pop(0)
            if isinstance(reply, aiohttp.web.Response):
                return reply
            return aiohttp.web.json_response(reply)
        finally:
            self.pulls_in_flight -= 1

    async def handle_devices(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        self._check_auth(request)
        device_type = request.query.get("type")
        return aiohttp.web.json_response(
            [d for d in self.devices if device_type in (None, d["type"])]
        )

    async def handle_resources(
        self, request: aiohttp.web.Request
    ) -> aiohttp.web.Response:
        self._check_auth(request)
        device_id = request.match_info["device_id"]
        if device_id not in self.resources:
            raise aiohttp.web.HTTPNotFound()
        return aiohttp.web.json_response(self.resources[device_id])

    async def handle_resource(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        """Answer from `values` when present, otherwise with a new async id."""
        self._check_auth(request)
        self.bodies.append(await request.text())
        device_id = request.match_info["device_id"]
        path = request.match_info["path"]
        if device_id not in self.resources:
            raise aiohttp.web.HTTPNotFound()
        if (value := self.values.get((device_id, path))) is not None:
            return aiohttp.web.Response(text=value, content_type="text/plain")
        async_id = f"async-id-{len(self.async_ids) + 1}"
        self.async_ids.append(async_id)
        return aiohttp.web.json_response({"async-response-id": async_id}, status=202)

    async def handle_presubscriptions(
        self, request: aiohttp.web.Request
    ) -> aiohttp.web.Response:
        self._check_auth(request)
        if request.method == "PUT":
            self.presubscriptions = await request.json()
            return aiohttp.web.Response(status=204)
        if request.method == "DELETE":
            self.subscriptions.clear()
            return aiohttp.web.Response(status=204)
        return aiohttp.web.json_response(self.presubscriptions)

    async def handle_device_subscriptions(
        self, request: aiohttp.web.Request
    ) -> aiohttp.web.Response:
        self._check_auth(request)
        device_id = request.match_info["device_id"]
        if request.method == "DELETE":
            self.subscriptions.pop(device_id, None)
            return aiohttp.web.Response(status=204)
        paths = sorted(self.subscriptions.get(device_id, set()))
        return aiohttp.web.Response(
            text="\n".join(f"/{path}" for path in paths), content_type="text/uri-list"
        )

    async def handle_subscription(
        self, request: aiohttp.web.Request
    ) -> aiohttp.web.Response:
        self._check_auth(request)
        device_id = request.match_info["device_id"]
        path = request.match_info["path"]
        if device_id not in self.resources:
            raise aiohttp.web.HTTPNotFound()
        subscribed = self.subscriptions.setdefault(device_id, set())
        if request.method == "PUT":
            subscribed.add(path)
            return aiohttp.web.Response(status=204)
        if path not in subscribed:
            raise aiohttp.web.HTTPNotFound()
        if request.method == "DELETE":
            subscribed.remove(path)
        return aiohttp.web.Response(status=204)

    async def handle_metrics(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        self._check_auth(request)
        return aiohttp.web.json_response(
            {"object": "list", "has_more": False, "data": self.metrics}
        )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture(name="connect_handler")
def mock_connect_handler(
    app: aiohttp.web.Application, recorder: Recorder
) -> ConnectHandler:
    return ConnectHandler(app, recorder)


@pytest.fixture(autouse=True)
def reset_diagnostics() -> Generator[None, None, None]:
    yield
    diagnostics.reset()


def assert_diagnostics(actual: dict[str, Any], expected: dict[str, Any]) -> None:
    """Helper method for stripping timing based diagnostics."""

    def scrub_dict(data: dict[str, Any]) -> dict[str, Any]:
        drop_keys = []
        for k1, v1 in data.items():
            if k1.endswith("_sum"):
                drop_keys.append(k1)
        for k in drop_keys:
            del data[k]
        return data

    actual = scrub_dict(actual)

    for k1, v1 in actual.items():
        if isinstance(v1, dict):
            actual[k1] = scrub_dict(v1)

    assert actual == expected


class EventCallback:
    """A callback that can be used in tests for assertions."""

    def __init__(self) -> None:
        """Initialize EventCallback."""
        self.invoked: bool = False
        self.messages: list[Any] = []

    async def async_handle_event(self, event: Any) -> None:
        self.invoked = True
        self.messages.append(event)


class DirectoryHandler:
    """Fake device directory holding devices, queries and log entries."""

    def __init__(self, app: aiohttp.web.Application, recorder: Recorder) -> None:
        """Initialize DirectoryHandler."""
        self.json_handler = JsonHandler(recorder, self.get_response)
        self.recorder = recorder
        self.collections: dict[str, dict[str, dict[str, Any]]] = {
            "devices": {},
            "device-queries": {},
            "device-events": {},
        }
        for name in self.collections:
            app.router.add_route("*", f"/v3/{name}", self.json_handler.handler)
            app.router.add_route(
                "*", f"/v3/{name}/{{item_id}}", self.json_handler.handler
            )

    def add(self, collection: str, item: dict[str, Any]) -> str:
        """Add a record to a collection, returning its id."""
        items = self.collections[collection]
        item_id = item.get("id") or f"{collection}-{len(items) + 1}"
        items[item_id] = {**item, "id": item_id}
        return item_id

    def get_response(self, request: aiohttp.web.Request) -> Any:
        """Return the directory API response."""
        collection = request.path.split("/")[2]
        items = self.collections[collection]
        item_id = request.match_info.get("item_id")
        if item_id is None:
            if request.method == "POST":
                item_id = self.add(collection, self.recorder.request)
                return aiohttp.web.json_response(items[item_id], status=201)
            assert request.method == "GET"
            return {
                "object": "list",
                "data": list(items.values()),
                "has_more": False,
                "total_count": len(items),
            }
        if item_id not in items:
            return None
        if request.method == "PUT":
            items[item_id].update(self.recorder.request)
        elif request.method == "DELETE":
            del items[item_id]
            return aiohttp.web.Response(status=204)
        return items[item_id]


@pytest.fixture(name="directory_handler")
def mock_directory_handler(
    app: aiohttp.web.Application, recorder: Recorder
) -> DirectoryHandler:
    return DirectoryHandler(app, recorder)
