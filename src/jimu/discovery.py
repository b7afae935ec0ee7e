"""BLE device discovery for JIMU bricks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bleak import BleakScanner

from .protocol.commands import NAME_SUBSTRING

if TYPE_CHECKING:
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveredDevice:
    """A brick seen during a scan."""

    address: str
    name: str
    ble_device: BLEDevice
    rssi: int | None = None


async def discover_devices(
        name_substring: str = NAME_SUBSTRING,
        timeout: float = 5.0,
) -> list[DiscoveredDevice]:
    """Scan for devices whose advertised name contains ``name_substring``.

    Matching is case-insensitive. Each address is reported once.

    Args:
        name_substring: Name filter (default: "jimu")
        timeout: Scan duration in seconds (default: 5)

    Returns:
        Matching devices in discovery order
    """
    needle = name_substring.lower()
    _LOGGER.debug("Scanning %.1fs for devices matching %r", timeout, needle)

    found = await BleakScanner.discover(timeout=timeout, return_adv=True)

    matches: dict[str, DiscoveredDevice] = {}
    for address, (device, adv) in found.items():
        name = adv.local_name or device.name or ""
        if not name or needle not in name.lower():
            continue
        matches.setdefault(address, DiscoveredDevice(
            address=device.address,
            name=name,
            ble_device=device,
            rssi=adv.rssi,
        ))

    _LOGGER.info("Found %d device(s) matching %r", len(matches), needle)
    return list(matches.values())
