"""Test BLE connection channel selection, writes and notifications."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bleak_retry_connector import BleakClientWithServiceCache

from jimu.discovery import DiscoveredDevice
from jimu.exceptions import BLEConnectionError, TransportError
from jimu.protocol import encode
from jimu.transport import BLEConnection

VENDOR_SERVICE = "49535343-fe7d-4ae5-8fa9-9fafd205e455"
VENDOR_NOTIFY = "49535343-1e4d-4bd9-ba61-23c647249616"
VENDOR_WRITE = "49535343-8841-43f4-a8d4-ecbe34729bb3"
VENDOR_WRITE_ALT = "49535343-6daa-4d02-abf6-19569aca69fe"
GENERIC_SERVICE = "0000ffe0-0000-1000-8000-00805f9b34fb"
GENERIC_NOTIFY_WRITE = "0000ffe1-0000-1000-8000-00805f9b34fb"


def _char(uuid: str, *properties: str):
    return SimpleNamespace(uuid=uuid, properties=list(properties))


def _client(services) -> MagicMock:
    client = MagicMock()
    client.is_connected = True
    client.services = services
    client.start_notify = AsyncMock()
    client.stop_notify = AsyncMock()
    client.write_gatt_char = AsyncMock()
    client.disconnect = AsyncMock()
    return client


def _default_services():
    vendor = SimpleNamespace(uuid=VENDOR_SERVICE, characteristics=[
        _char(VENDOR_NOTIFY, "notify"),
        _char(VENDOR_WRITE_ALT, "write"),
        _char(VENDOR_WRITE, "write", "write-without-response"),
    ])
    generic = SimpleNamespace(uuid=GENERIC_SERVICE, characteristics=[
        _char(GENERIC_NOTIFY_WRITE, "notify", "write"),
    ])
    return [generic, vendor]


def _ble_device():
    return SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="JIMU2-1234")


async def _connected(client: MagicMock, **kwargs) -> BLEConnection:
    conn = BLEConnection(ble_device=_ble_device(), **kwargs)
    with patch("jimu.transport.connection.establish_connection", AsyncMock(return_value=client)):
        await conn.connect()
    return conn


@pytest.mark.asyncio
async def test_connect_uses_retry_connector():
    client = _client(_default_services())
    conn = BLEConnection(ble_device=_ble_device(), max_attempts=2)

    with patch("jimu.transport.connection.establish_connection", AsyncMock(return_value=client)) as establish:
        await conn.connect()

    kwargs = establish.await_args.kwargs
    assert kwargs["client_class"] is BleakClientWithServiceCache
    assert kwargs["max_attempts"] == 2
    assert kwargs["disconnected_callback"] == conn._disconnected_callback
    assert conn.is_connected


@pytest.mark.asyncio
async def test_notify_scoped_to_vendor_service():
    client = _client(_default_services())
    conn = await _connected(client)

    subscribed = [c.args[0].uuid for c in client.start_notify.await_args_list]
    assert subscribed == [VENDOR_NOTIFY]
    assert [c.uuid for c in conn._notify_characteristics] == [VENDOR_NOTIFY]


@pytest.mark.asyncio
async def test_write_order_preferred_then_scoped_then_all():
    client = _client(_default_services())
    conn = await _connected(client)

    assert [c.uuid for c in conn._write_characteristics] == [
        VENDOR_WRITE,
        VENDOR_WRITE_ALT,
        GENERIC_NOTIFY_WRITE,
    ]


@pytest.mark.asyncio
async def test_without_vendor_service_uses_all_channels():
    services = [SimpleNamespace(uuid=GENERIC_SERVICE, characteristics=[
        _char(GENERIC_NOTIFY_WRITE, "notify", "write"),
    ])]
    client = _client(services)
    conn = await _connected(client)

    assert [c.uuid for c in conn._notify_characteristics] == [GENERIC_NOTIFY_WRITE]
    assert [c.uuid for c in conn._write_characteristics] == [GENERIC_NOTIFY_WRITE]


@pytest.mark.asyncio
async def test_missing_notify_channel_fails_and_releases():
    services = [SimpleNamespace(uuid=GENERIC_SERVICE, characteristics=[
        _char(GENERIC_NOTIFY_WRITE, "write"),
    ])]
    client = _client(services)
    conn = BLEConnection(ble_device=_ble_device())

    with patch("jimu.transport.connection.establish_connection", AsyncMock(return_value=client)):
        with pytest.raises(BLEConnectionError, match="Missing write/notify"):
            await conn.connect()

    client.disconnect.assert_awaited_once()
    assert not conn.is_connected


@pytest.mark.asyncio
async def test_no_subscription_succeeds():
    client = _client(_default_services())
    client.start_notify.side_effect = RuntimeError("not permitted")
    conn = BLEConnection(ble_device=_ble_device())

    with patch("jimu.transport.connection.establish_connection", AsyncMock(return_value=client)):
        with pytest.raises(BLEConnectionError, match="subscribe"):
            await conn.connect()


@pytest.mark.asyncio
async def test_connect_error_wrapped():
    conn = BLEConnection(ble_device=_ble_device())
    with patch("jimu.transport.connection.establish_connection", AsyncMock(side_effect=OSError("adapter off"))):
        with pytest.raises(BLEConnectionError, match="adapter off"):
            await conn.connect()


@pytest.mark.asyncio
async def test_send_frames_payload_without_response():
    client = _client(_default_services())
    conn = await _connected(client)

    await conn.send(b"\x08\x00")

    char, data = client.write_gatt_char.await_args.args
    assert char.uuid == VENDOR_WRITE
    assert data == encode(b"\x08\x00")
    assert client.write_gatt_char.await_args.kwargs["response"] is False


@pytest.mark.asyncio
async def test_send_falls_back_to_next_channel():
    client = _client(_default_services())
    client.write_gatt_char.side_effect = [OSError("busy"), None]
    conn = await _connected(client)

    await conn.send(b"\x03\x00")

    calls = client.write_gatt_char.await_args_list
    assert [c.args[0].uuid for c in calls] == [VENDOR_WRITE, VENDOR_WRITE_ALT]
    assert calls[1].kwargs["response"] is True


@pytest.mark.asyncio
async def test_send_all_channels_fail():
    client = _client(_default_services())
    client.write_gatt_char.side_effect = OSError("busy")
    conn = await _connected(client)

    with pytest.raises(TransportError, match="All 3 write channel"):
        await conn.send(b"\x03\x00")
    assert conn.is_connected


@pytest.mark.asyncio
async def test_send_requires_connection():
    conn = BLEConnection(ble_device=_ble_device())
    with pytest.raises(BLEConnectionError, match="Not connected"):
        await conn.send(b"\x03\x00")


@pytest.mark.asyncio
async def test_notifications_reassembled_into_frames():
    frames = []
    client = _client(_default_services())
    conn = await _connected(client, on_frame=frames.append)

    stream = encode(b"\x03\x00") + encode(b"\x27\x01\x00\x4E\x20")
    conn._notification_callback(None, bytearray(stream[:5]))
    conn._notification_callback(None, bytearray(stream[5:]))

    assert [f.opcode for f in frames] == [0x03, 0x27]


@pytest.mark.asyncio
async def test_link_drop_notifies_owner():
    dropped = []
    client = _client(_default_services())
    conn = await _connected(client, on_disconnect=lambda: dropped.append(True))
    conn.assembler.feed(encode(b"\x03\x00")[:4])

    conn._disconnected_callback(client)

    assert dropped == [True]
    assert conn.assembler.buffered == 0
    assert not conn.is_connected


@pytest.mark.asyncio
async def test_explicit_disconnect_is_quiet_and_idempotent():
    dropped = []
    client = _client(_default_services())
    conn = await _connected(client, on_disconnect=lambda: dropped.append(True))

    await conn.disconnect()
    conn._disconnected_callback(client)
    await conn.disconnect()

    assert dropped == []
    client.stop_notify.assert_awaited_once()
    client.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_resolves_target_by_name():
    wanted = _ble_device()
    other = SimpleNamespace(address="11:22:33:44:55:66", name="JIMU2-0001")
    candidates = [
        DiscoveredDevice(other.address, other.name, other),
        DiscoveredDevice(wanted.address, wanted.name, wanted),
    ]
    client = _client(_default_services())
    conn = BLEConnection(address="jimu2-1234")

    with patch("jimu.transport.connection.discover_devices", AsyncMock(return_value=candidates)), \
            patch("jimu.transport.connection.establish_connection", AsyncMock(return_value=client)) as establish:
        await conn.connect()

    assert establish.await_args.kwargs["device"] is wanted


@pytest.mark.asyncio
async def test_no_device_found():
    conn = BLEConnection()
    with patch("jimu.transport.connection.discover_devices", AsyncMock(return_value=[])):
        with pytest.raises(BLEConnectionError, match="No devices matching 'jimu'"):
            await conn.connect()
