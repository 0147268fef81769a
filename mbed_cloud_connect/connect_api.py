"""Client for the connect API: connected devices, resources and notifications.

Most resource operations are answered by the device asynchronously. The
service replies to the request with an async id and later delivers the result
inside a notification envelope, either pushed to a registered webhook or
returned from a long-poll request. A notification channel must therefore be
running for those operations to produce a value:

```
    connect = ConnectAPI(ApiKeyAuth(websession, api_key))
    await connect.async_start_notifications()
    value = await connect.async_get_resource_value(device_id, "3200/0/5500")
    ...
    await connect.async_stop_notifications()
```

When using a webhook instead, the application receives the envelopes itself
and must pass each one to `async_notify`, after setting
`handle_notifications = True`.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections.abc import Mapping
from http import HTTPStatus
from typing import Any, Awaitable, Callable, NamedTuple

import aiohttp

from .auth import AbstractAuth, CONTENT_TYPE_TEXT
from .connected_device import ConnectedDevice, Resource, normalize_path
from .diagnostics import (
    CONNECT_DIAGNOSTICS as DIAGNOSTICS,
    NOTIFICATION_DIAGNOSTICS,
)
from .exceptions import (
    AlreadyActiveException,
    ApiException,
    AsyncResponseException,
    CloudException,
    DecodeException,
    NotFoundException,
)
from .listing import ListResponse
from .metric import Metric, MetricsOptions
from .notification_poller import (
    PULL_URL,
    NotificationOptions,
    NotificationPoller,
)
from .notifications import (
    AsyncResponse,
    ConnectEvent,
    EventType,
    NotificationEnvelope,
    ResourceNotification,
    ResourceNotificationEvent,
    build_device_events_event,
    decode_text,
)
from .webhook import Presubscription, Webhook

__all__ = [
    "ConnectAPI",
    "ChannelState",
]

_LOGGER = logging.getLogger(__name__)

ENDPOINTS_URL = "v2/endpoints"
SUBSCRIPTIONS_URL = "v2/subscriptions"
CALLBACK_URL = "v2/notification/callback"
METRICS_URL = "v3/metrics"

ASYNC_ID_KEYS = ("async-response-id", "asyncId")

NotifyCallback = Callable[[Any], Awaitable[None]]
EventCallback = Callable[[ConnectEvent], Awaitable[None]]


class _Call(NamedTuple):
    """A callback to invoke once an envelope has been processed."""

    target: Callable[[Any], Awaitable[None]]
    arg: Any
    error_key: str
    name: str


class ChannelState(enum.Enum):
    """State of the long-poll notification channel."""

    STOPPED = "stopped"
    STARTING = "starting"
    POLLING = "polling"
    STOPPING = "stopping"


def _bool_param(value: bool) -> str:
    return "true" if value else "false"


class ConnectAPI:
    """Client for connected devices, their resources and notifications."""

    def __init__(
        self,
        auth: AbstractAuth,
        reject_pending_on_stop: bool = False,
    ) -> None:
        """Initialize ConnectAPI.

        Requests waiting on an async response are left pending when the
        notification channel stops, unless `reject_pending_on_stop` is set in
        which case they fail with a `CloudException`.
        """
        self._auth = auth
        self._reject_pending_on_stop = reject_pending_on_stop
        self.handle_notifications = False
        """Wait for async responses instead of returning the bare async id."""

        self._state = ChannelState.STOPPED
        self._poller: NotificationPoller | None = None
        self._dispatch_lock = asyncio.Lock()
        self._deliveries: set[asyncio.Task[None]] = set()
        self._last_delivery: asyncio.Task[None] | None = None
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._subscriptions: dict[tuple[str, str], NotifyCallback | None] = {}
        self._listeners: dict[EventType, list[EventCallback]] = {
            event_type: [] for event_type in EventType
        }

    @property
    def channel_state(self) -> ChannelState:
        """Return the state of the long-poll channel."""
        return self._state

    @property
    def pending_request_ids(self) -> list[str]:
        """Return the async ids still waiting for a response."""
        return list(self._pending)

    def add_listener(
        self, event_type: EventType, target: EventCallback
    ) -> Callable[[], None]:
        """Register a callback for one type of event.

        The return value is a callable that will unregister the callback.
        """
        self._listeners[event_type].append(target)

        def remove_listener() -> None:
            """Remove the listener."""
            self._listeners[event_type].remove(target)

        return remove_listener

    async def async_notify(
        self, data: Mapping[str, Any] | NotificationEnvelope
    ) -> None:
        """Dispatch one notification envelope.

        Must be called by the application for every envelope delivered to its
        webhook. Envelopes are processed one at a time. Failures handling a
        single entry are logged and do not affect the other entries.

        Pending requests are completed before any callback runs, so a
        callback may itself wait on a resource request answered by a later
        envelope. This returns once the callbacks for this envelope finished.
        """
        delivery = await self._async_dispatch(data)
        await asyncio.shield(delivery)

    async def _async_receive(self, envelope: NotificationEnvelope) -> None:
        """Dispatch a polled envelope without waiting for its callbacks."""
        await self._async_dispatch(envelope)

    async def _async_dispatch(
        self, data: Mapping[str, Any] | NotificationEnvelope
    ) -> asyncio.Task[None]:
        """Process an envelope and schedule its callbacks."""
        if isinstance(data, NotificationEnvelope):
            envelope = data
        else:
            try:
                envelope = NotificationEnvelope.parse(data)
            except Exception as err:  # pylint: disable=broad-except
                NOTIFICATION_DIAGNOSTICS.increment("malformed_envelope")
                raise DecodeException(
                    f"Malformed notification envelope: {err}"
                ) from err

        async with self._dispatch_lock:
            NOTIFICATION_DIAGNOSTICS.increment("envelope")
            calls: list[_Call] = []
            for entry in envelope.notifications:
                calls.extend(self._handle_notification(entry))
            for envelope_key, entries in envelope.device_events().items():
                if entries:
                    calls.extend(
                        self._emit(build_device_events_event(envelope_key, entries))
                    )
            for entry in envelope.async_responses:
                self._handle_async_response(entry)
            return self._schedule_delivery(calls)

    def _handle_notification(self, entry: Any) -> list[_Call]:
        try:
            notification = ResourceNotification.parse(entry)
            payload = notification.decoded_payload()
        except Exception as err:  # pylint: disable=broad-except
            NOTIFICATION_DIAGNOSTICS.increment("malformed_notification")
            _LOGGER.info("Skipping malformed notification %s: %s", entry, err)
            return []

        calls: list[_Call] = []
        key = (notification.device_id, notification.path)
        if notify_fn := self._subscriptions.get(key):
            calls.append(
                _Call(notify_fn, payload, "notify_fn_exception", f"subscription {key}")
            )
        calls.extend(
            self._emit(
                ResourceNotificationEvent(
                    device_id=notification.device_id,
                    path=notification.path,
                    payload=payload,
                    content_type=notification.content_type,
                )
            )
        )
        return calls

    def _handle_async_response(self, entry: Any) -> None:
        try:
            response = AsyncResponse.parse(entry)
        except Exception as err:  # pylint: disable=broad-except
            NOTIFICATION_DIAGNOSTICS.increment("malformed_async_response")
            _LOGGER.info("Malformed async response %s: %s", entry, err)
            if isinstance(entry, Mapping) and (
                future := self._pending.pop(str(entry.get("id")), None)
            ):
                if not future.done():
                    future.set_exception(
                        DecodeException(f"Malformed async response: {err}")
                    )
            return

        future = self._pending.pop(response.id, None)
        if future is None:
            NOTIFICATION_DIAGNOSTICS.increment("async_response_unknown")
            _LOGGER.debug("Dropping async response with unknown id %s", response.id)
            return
        if future.done():
            return
        NOTIFICATION_DIAGNOSTICS.increment("async_response")

        if response.is_error:
            try:
                payload = response.decoded_payload()
            except DecodeException:
                payload = response.payload
            future.set_exception(
                AsyncResponseException(
                    f"Request {response.id} failed ({response.status}): "
                    f"{response.error or payload}",
                    status=response.status,
                    payload=payload,
                )
            )
            return
        try:
            future.set_result(response.decoded_payload())
        except DecodeException as err:
            future.set_exception(err)

    def _emit(self, event: ConnectEvent) -> list[_Call]:
        NOTIFICATION_DIAGNOSTICS.increment(f"emit.{event.NAME}")
        return [
            _Call(listener, event, "listener_exception", f"{event.NAME} listener")
            for listener in self._listeners[event.NAME]
        ]

    def _schedule_delivery(self, calls: list[_Call]) -> asyncio.Task[None]:
        """Run callbacks in a task, after those of earlier envelopes."""
        task = asyncio.create_task(self._async_deliver(self._last_delivery, calls))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        self._last_delivery = task
        return task

    async def _async_deliver(
        self, previous: asyncio.Task[None] | None, calls: list[_Call]
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        for call in calls:
            try:
                await call.target(call.arg)
            except Exception:  # pylint: disable=broad-except
                NOTIFICATION_DIAGNOSTICS.increment(call.error_key)
                _LOGGER.exception("Uncaught error in %s", call.name)

    async def async_start_notifications(
        self, options: NotificationOptions | None = None
    ) -> None:
        """Begin long polling for notifications.

        Raises `AlreadyActiveException` if long polling is already running or
        a webhook is registered with the service.
        """
        if self._state != ChannelState.STOPPED:
            raise AlreadyActiveException(
                f"Notification channel is already {self._state.value}"
            )
        _LOGGER.debug("Starting notification channel")
        DIAGNOSTICS.increment("start_notifications")
        self._state = ChannelState.STARTING
        try:
            if await self.async_get_webhook() is not None:
                raise AlreadyActiveException(
                    "A webhook is registered; delete it before long polling"
                )
            self._poller = NotificationPoller(
                self._auth, self._async_receive, options
            )
            self._poller.start()
        except BaseException:
            self._state = ChannelState.STOPPED
            raise
        self._state = ChannelState.POLLING
        self.handle_notifications = True

    async def async_stop_notifications(self) -> None:
        """Stop long polling for notifications.

        Does nothing unless long polling is running. `handle_notifications`
        is not changed.
        """
        if self._state != ChannelState.POLLING:
            return
        _LOGGER.debug("Stopping notification channel")
        DIAGNOSTICS.increment("stop_notifications")
        self._state = ChannelState.STOPPING
        try:
            if self._poller:
                self._poller.stop()
                await self._poller.async_wait_stopped()
                self._poller = None
            try:
                await self._auth.delete(PULL_URL)
            except NotFoundException:
                _LOGGER.debug("Long-poll channel was already removed")
        finally:
            self._state = ChannelState.STOPPED
            if self._reject_pending_on_stop:
                self._reject_pending()

    def _reject_pending(self) -> None:
        pending, self._pending = self._pending, {}
        for async_id, future in pending.items():
            if not future.done():
                future.set_exception(
                    CloudException(f"Notification channel stopped before {async_id}")
                )

    async def async_get_webhook(self) -> Webhook | None:
        """Return the registered webhook, or None."""
        try:
            data = await self._auth.get_json(CALLBACK_URL)
        except NotFoundException:
            return None
        return Webhook.parse(data)

    async def async_update_webhook(
        self, url: str, headers: dict[str, str] | None = None
    ) -> None:
        """Register the url notifications are pushed to, replacing any other."""
        webhook = Webhook(url=url, headers=headers or {})
        await self._auth.put(CALLBACK_URL, json=webhook.raw_data)

    async def async_delete_webhook(self) -> None:
        """Delete the registered webhook.

        Raises `NotFoundException` when there is none. The service drops every
        resource subscription along with the webhook.
        """
        await self._auth.delete(CALLBACK_URL)
        self._subscriptions.clear()

    async def async_list_presubscriptions(self) -> list[Presubscription]:
        """Return the pre-subscriptions."""
        data = await self._auth.get_json_list(SUBSCRIPTIONS_URL)
        return [Presubscription.parse(item) for item in data]

    async def async_update_presubscriptions(
        self, presubscriptions: list[Presubscription]
    ) -> None:
        """Replace the pre-subscriptions. An empty list removes them all."""
        await self._auth.put(
            SUBSCRIPTIONS_URL, json=[item.raw_data for item in presubscriptions]
        )

    async def async_delete_presubscriptions(self) -> None:
        """Remove all pre-subscriptions."""
        await self.async_update_presubscriptions([])

    async def async_delete_subscriptions(self) -> None:
        """Remove every resource subscription of every device."""
        await self._auth.delete(SUBSCRIPTIONS_URL)
        self._subscriptions.clear()

    async def async_list_connected_devices(
        self, device_type: str | None = None
    ) -> list[ConnectedDevice]:
        """List connected devices, optionally of one device type."""
        params = {"type": device_type} if device_type else {}
        data = await self._auth.get_json_list(ENDPOINTS_URL, params=params)
        return [ConnectedDevice.parse(item) for item in data]

    async def async_list_resources(self, device_id: str) -> list[Resource]:
        """List the resources of a connected device."""
        data = await self._auth.get_json_list(f"{ENDPOINTS_URL}/{device_id}")
        resources = [Resource.parse(item) for item in data]
        for resource in resources:
            resource.device_id = device_id
        return resources

    async def async_list_device_subscriptions(self, device_id: str) -> list[str]:
        """Return the subscribed resource paths of a device."""
        resp = await self._auth.get(f"{SUBSCRIPTIONS_URL}/{device_id}")
        text = await resp.text()
        paths = [line.strip() for line in text.splitlines()]
        return [normalize_path(path) for path in paths if path]

    async def async_delete_device_subscriptions(self, device_id: str) -> None:
        """Remove all resource subscriptions of a device."""
        await self._auth.delete(f"{SUBSCRIPTIONS_URL}/{device_id}")
        for key in [key for key in self._subscriptions if key[0] == device_id]:
            del self._subscriptions[key]

    async def async_get_resource_value(
        self,
        device_id: str,
        path: str,
        cache_only: bool = False,
        no_response: bool = False,
    ) -> Any:
        """Read the value of a resource.

        Returns the value, or the async id when not handling notifications.
        """
        params = {}
        if cache_only:
            params["cacheOnly"] = _bool_param(cache_only)
        if no_response:
            params["noResp"] = _bool_param(no_response)
        with DIAGNOSTICS.timer("get_resource_value"):
            resp = await self._auth.get(
                self._resource_url(device_id, path), params=params
            )
            return await self._async_resource_result(resp)

    async def async_set_resource_value(
        self, device_id: str, path: str, value: str, no_response: bool = False
    ) -> Any:
        """Write the value of a resource.

        Returns the device response, or the async id when not handling
        notifications.
        """
        params = {"noResp": _bool_param(no_response)} if no_response else {}
        with DIAGNOSTICS.timer("set_resource_value"):
            resp = await self._auth.put(
                self._resource_url(device_id, path),
                params=params,
                data=str(value),
                headers={"Content-Type": CONTENT_TYPE_TEXT},
            )
            return await self._async_resource_result(resp)

    async def async_execute_resource(
        self,
        device_id: str,
        path: str,
        function_name: str | None = None,
        no_response: bool = False,
    ) -> Any:
        """Execute the function of a resource."""
        params = {"noResp": _bool_param(no_response)} if no_response else {}
        with DIAGNOSTICS.timer("execute_resource"):
            resp = await self._auth.post(
                self._resource_url(device_id, path),
                params=params,
                data=function_name,
                headers={"Content-Type": CONTENT_TYPE_TEXT},
            )
            return await self._async_resource_result(resp)

    async def async_delete_resource(
        self, device_id: str, path: str, no_response: bool = False
    ) -> Any:
        """Delete a resource."""
        params = {"noResp": _bool_param(no_response)} if no_response else {}
        with DIAGNOSTICS.timer("delete_resource"):
            resp = await self._auth.delete(
                self._resource_url(device_id, path), params=params
            )
            return await self._async_resource_result(resp)

    async def async_get_resource_subscription(self, device_id: str, path: str) -> bool:
        """Return True if the resource is subscribed to."""
        try:
            await self._auth.get(self._subscription_url(device_id, path))
        except NotFoundException:
            return False
        return True

    async def async_add_resource_subscription(
        self,
        device_id: str,
        path: str,
        notify_fn: NotifyCallback | None = None,
    ) -> Any:
        """Subscribe to a resource, calling `notify_fn` with each new value."""
        key = (device_id, normalize_path(path))
        self._subscriptions[key] = notify_fn
        try:
            resp = await self._auth.put(self._subscription_url(device_id, path))
        except ApiException:
            if self._subscriptions.get(key) is notify_fn:
                del self._subscriptions[key]
            raise
        return await self._async_resource_result(resp)

    async def async_delete_resource_subscription(
        self, device_id: str, path: str
    ) -> Any:
        """Remove the subscription to a resource."""
        self._subscriptions.pop((device_id, normalize_path(path)), None)
        resp = await self._auth.delete(self._subscription_url(device_id, path))
        return await self._async_resource_result(resp)

    async def async_list_metrics(self, options: MetricsOptions) -> list[Metric]:
        """List account metrics for a time range."""
        data = await self._auth.get_json(METRICS_URL, params=options.as_params())
        return ListResponse.parse(data, Metric.parse).data

    def get_diagnostics(self) -> dict[str, Any]:
        """Return the channel state and counters for this client."""
        return {
            "channel_state": self._state.value,
            "handle_notifications": self.handle_notifications,
            "pending_requests": len(self._pending),
            "subscriptions": len(self._subscriptions),
            **DIAGNOSTICS.as_dict(),
        }

    @staticmethod
    def _resource_url(device_id: str, path: str) -> str:
        return f"{ENDPOINTS_URL}/{device_id}/{normalize_path(path)}"

    @staticmethod
    def _subscription_url(device_id: str, path: str) -> str:
        return f"{SUBSCRIPTIONS_URL}/{device_id}/{normalize_path(path)}"

    async def _async_resource_result(self, resp: aiohttp.ClientResponse) -> Any:
        """Return the result of a resource request.

        A reply carrying an async id either waits for the matching async
        response or returns the id, depending on `handle_notifications`.
        """
        if resp.status == HTTPStatus.NO_CONTENT:
            return None
        try:
            text = await resp.text()
        except (aiohttp.ClientError, ValueError) as err:
            raise ApiException("Server returned malformed response") from err
        if not text:
            return None
        if "json" in resp.content_type:
            try:
                data = json.loads(text)
            except ValueError as err:
                raise ApiException("Server returned malformed response") from err
            if isinstance(data, dict) and (async_id := _async_id(data)):
                return await self._async_wait_for_response(async_id)
            return data
        return decode_text(text, resp.content_type)

    async def _async_wait_for_response(self, async_id: str) -> Any:
        if not self.handle_notifications:
            return async_id
        _LOGGER.debug("Waiting for async response %s", async_id)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[async_id] = future
        try:
            return await future
        finally:
            if self._pending.get(async_id) is future:
                del self._pending[async_id]


def _async_id(data: dict[str, Any]) -> str | None:
    for key in ASYNC_ID_KEYS:
        if value := data.get(key):
            return str(value)
    return None
