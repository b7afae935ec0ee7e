"""BLE connection management."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from bleak import BleakClient
from bleak_retry_connector import BleakClientWithServiceCache, establish_connection

from ..discovery import discover_devices
from ..exceptions import BLEConnectionError, BLETimeoutError, ProtocolError, TransportError
from ..protocol import PREFERRED_WRITE_UUIDS, VENDOR_SERVICE_PREFIX, DecodedFrame, FrameAssembler, encode
from ..protocol.commands import NAME_SUBSTRING

if TYPE_CHECKING:
    from bleak.backends.characteristic import BleakGATTCharacteristic
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)

_WRITE_PROPERTIES = ("write", "write-without-response")


def _normalize_uuid(uuid: str) -> str:
    return uuid.replace("-", "").lower()


def _is_writable(characteristic: BleakGATTCharacteristic) -> bool:
    return any(prop in characteristic.properties for prop in _WRITE_PROPERTIES)


class BLEConnection:
    """Manages the BLE link to a JIMU brick.

    Features:
    - Automatic retry logic with bleak-retry-connector
    - Service caching for faster reconnections
    - Subscribes to every notify channel and reassembles frames from them
    - Write fallback across every writable channel, preferred UUIDs first
    """

    def __init__(
            self,
            address: str | None = None,
            ble_device: BLEDevice | None = None,
            name_substring: str = NAME_SUBSTRING,
            timeout: float = 10.0,
            max_attempts: int = 4,
            use_services_cache: bool = True,
            vendor_service_prefix: str | None = VENDOR_SERVICE_PREFIX,
            preferred_write_uuids: Sequence[str] = PREFERRED_WRITE_UUIDS,
            on_frame: Callable[[DecodedFrame], None] | None = None,
            on_frame_error: Callable[[ProtocolError], None] | None = None,
            on_disconnect: Callable[[], None] | None = None,
    ):
        """Initialize BLE connection manager.

        Args:
            address: Device address or advertised name; None picks the first match
            ble_device: Optional BLEDevice from a prior scan (skips scanning)
            name_substring: Advertised-name filter used when scanning
            timeout: Connection and scan timeout in seconds (default: 10)
            max_attempts: Maximum connection attempts for bleak-retry-connector (default: 4)
            use_services_cache: Enable GATT service caching for faster reconnections (default: True)
            vendor_service_prefix: Limit notify channels to services with this UUID prefix
            preferred_write_uuids: Write channels tried before any other writable one
            on_frame: Called with each reassembled frame
            on_frame_error: Called with each non-fatal framing error
            on_disconnect: Called when the link drops unexpectedly
        """
        self.address = address
        self.ble_device = ble_device
        self.name_substring = name_substring
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.use_services_cache = use_services_cache
        self.vendor_service_prefix = vendor_service_prefix
        self.preferred_write_uuids = tuple(_normalize_uuid(u) for u in preferred_write_uuids)
        self.on_disconnect = on_disconnect

        self._client: BleakClient | None = None
        self._assembler = FrameAssembler(on_frame=on_frame, on_error=on_frame_error)
        self._notify_characteristics: list[BleakGATTCharacteristic] = []
        self._write_characteristics: list[BleakGATTCharacteristic] = []
        self._closing = False

    async def __aenter__(self) -> BLEConnection:
        """Connect to device (context manager entry)."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device (context manager exit)."""
        await self.disconnect()

    @property
    def assembler(self) -> FrameAssembler:
        return self._assembler

    async def connect(self) -> None:
        """Establish BLE link and subscribe to notifications.

        Raises:
            BLEConnectionError: If no device is found or a channel is missing
            BLETimeoutError: If connection times out
        """
        if self._client and self._client.is_connected:
            return  # Already connected

        try:
            device = self.ble_device or await self._resolve_device()

            _LOGGER.debug(
                "Connecting to %s with bleak-retry-connector (max_attempts=%d)",
                device.address,
                self.max_attempts,
            )

            self._closing = False
            self._client = await establish_connection(
                client_class=BleakClientWithServiceCache,
                device=device,
                name=device.name or device.address,
                disconnected_callback=self._disconnected_callback,
                max_attempts=self.max_attempts,
                use_services_cache=self.use_services_cache,
                timeout=self.timeout,
            )
            self.ble_device = device

            _LOGGER.info("Connected to %s (%s)", device.name, device.address)

            await self._setup_channels()

        except BLEConnectionError:
            await self._release()
            raise
        except asyncio.TimeoutError as e:
            await self._release()
            raise BLETimeoutError(
                f"Connection timeout after {self.timeout}s"
            ) from e
        except Exception as e:
            await self._release()
            raise BLEConnectionError(
                f"Failed to connect: {e}"
            ) from e

    async def _resolve_device(self) -> BLEDevice:
        """Scan and pick the device matching ``address`` (or the first one)."""
        candidates = await discover_devices(self.name_substring, timeout=self.timeout)
        if not candidates:
            raise BLEConnectionError(
                f"No devices matching {self.name_substring!r} found during scan"
            )

        if self.address:
            target = self.address.lower()
            for candidate in candidates:
                if candidate.address.lower() == target or candidate.name.lower() == target:
                    return candidate.ble_device
            _LOGGER.warning("Target %s not found, using %s", self.address, candidates[0].name)

        return candidates[0].ble_device

    async def _setup_channels(self) -> None:
        """Select notify and write channels, then subscribe.

        Raises:
            BLEConnectionError: If no notify or no write channel exists
        """
        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Not connected")

        services = list(self._client.services)
        all_chars = [char for service in services for char in service.characteristics]

        scoped = all_chars
        if self.vendor_service_prefix:
            prefix = _normalize_uuid(self.vendor_service_prefix)
            vendor = [
                char for service in services
                if _normalize_uuid(service.uuid).startswith(prefix)
                for char in service.characteristics
            ]
            scoped = vendor or all_chars

        self._notify_characteristics = [c for c in scoped if "notify" in c.properties]

        writes: list[BleakGATTCharacteristic] = []
        for uuid in self.preferred_write_uuids:
            writes.extend(
                c for c in all_chars
                if _normalize_uuid(c.uuid) == uuid and _is_writable(c) and c not in writes
            )
        for pool in (scoped, all_chars):
            writes.extend(c for c in pool if _is_writable(c) and c not in writes)
        self._write_characteristics = writes

        if not self._notify_characteristics or not self._write_characteristics:
            raise BLEConnectionError(
                "Missing write/notify characteristics "
                f"(notify={len(self._notify_characteristics)}, write={len(self._write_characteristics)})"
            )

        subscribed: list[BleakGATTCharacteristic] = []
        for char in self._notify_characteristics:
            try:
                await self._client.start_notify(char, self._notification_callback)
                subscribed.append(char)
            except Exception as e:
                _LOGGER.warning("Subscribe to %s failed: %s", char.uuid, e)
        if not subscribed:
            raise BLEConnectionError("Could not subscribe to any notify characteristic")
        self._notify_characteristics = subscribed

        _LOGGER.debug(
            "Notifications started on %d channel(s), %d write channel(s)",
            len(subscribed),
            len(self._write_characteristics),
        )

    def _notification_callback(self, sender, data: bytearray) -> None:
        """Handle incoming BLE notifications.

        Args:
            sender: Characteristic that sent notification
            data: Notification data
        """
        _LOGGER.debug("<- %s", bytes(data).hex(" "))
        self._assembler.feed(bytes(data))

    def _disconnected_callback(self, client: BleakClient) -> None:
        if self._closing:
            return
        _LOGGER.info("Link to %s dropped", self.ble_device.address if self.ble_device else "device")
        self._client = None
        self._assembler.reset()
        if self.on_disconnect is not None:
            self.on_disconnect()

    async def send(self, payload: bytes) -> None:
        """Frame a payload and write it to the first channel that accepts it.

        Args:
            payload: Opcode + params

        Raises:
            BLEConnectionError: If not connected
            TransportError: If every write channel failed
        """
        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Not connected")

        frame = encode(payload)
        _LOGGER.debug("-> %s", frame.hex(" "))

        for char in self._write_characteristics:
            with_response = "write-without-response" not in char.properties
            try:
                await self._client.write_gatt_char(char, frame, response=with_response)
                return
            except Exception as e:
                _LOGGER.warning("Write to %s failed: %s", char.uuid, e)

        raise TransportError(
            f"All {len(self._write_characteristics)} write channel(s) failed "
            f"for opcode 0x{payload[0]:02x}"
        )

    async def disconnect(self) -> None:
        """Unsubscribe, disconnect and release channel handles. Idempotent."""
        await self._release()

    async def _release(self) -> None:
        self._closing = True
        client = self._client
        if client is not None and client.is_connected:
            for char in self._notify_characteristics:
                try:
                    await client.stop_notify(char)
                except Exception as e:
                    _LOGGER.debug("Unsubscribe from %s failed: %s", char.uuid, e)
            try:
                _LOGGER.debug("Disconnecting from %s", self.ble_device.address if self.ble_device else "device")
                await client.disconnect()
            except Exception as e:
                _LOGGER.warning("Error during disconnect: %s", e)

        self._client = None
        self._notify_characteristics = []
        self._write_characteristics = []
        self._assembler.reset()

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._client is not None and self._client.is_connected
