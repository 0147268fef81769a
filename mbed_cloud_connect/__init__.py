"""Library for the Pelion Device Management connect and device directory APIs.

The primary components in this library are:
- `auth`: Use `ApiKeyAuth`, or implement `AbstractAuth` to provide credentials.
- `connect_api`: Reads and writes resources on connected devices, manages
  subscriptions and dispatches notifications from long polling or a webhook.
- `notifications`: The events emitted to listeners registered on `ConnectAPI`.
- `device_directory`: Device records, saved device queries and device logs.
- `diagnostics`: Counters for debugging.

Example usage:
```
    auth = ApiKeyAuth(websession, API_KEY)
    connect = ConnectAPI(auth)

    async def registered(event: RegistrationsEvent) -> None:
        for device in event.devices:
            print(f"Device registered: {device.device_id}")

    remove = connect.add_listener(EventType.REGISTRATION, registered)
    await connect.async_start_notifications()

    for device in await connect.async_list_connected_devices():
        value = await connect.async_get_resource_value(device.id, "3200/0/5500")
        print(f"Button presses on {device.id}: {value}")

    await connect.async_stop_notifications()
    remove()
```
"""

__all__ = [
    "auth",
    "connect_api",
    "connected_device",
    "device",
    "device_directory",
    "diagnostics",
    "exceptions",
    "filters",
    "listing",
    "metric",
    "notification_poller",
    "notifications",
    "query",
    "webhook",
]
