"""Connect to a JIMU brick, print its modules and stream events.

Usage:
    uv run python examples/monitor_brick.py --scan
    uv run python examples/monitor_brick.py --target JIMU2-1234 --duration 60
    uv run python examples/monitor_brick.py --sensors 0.5
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections import Counter
from datetime import datetime

from jimu import DeviceInfo, Event, EventType, JimuDevice, JimuError, discover_devices


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _print_info(info: DeviceInfo) -> None:
    """Print what the brick reported during boot."""
    print(f"Firmware: {info.firmware or 'unknown'}")
    if info.battery:
        percent = info.battery.percent
        print(
            f"Battery: {info.battery.volts:.2f}V"
            + (f" ({percent:.0%})" if percent is not None else "")
            + (" charging" if info.battery.charging else "")
        )
    status = info.modules
    if status is None:
        print("Modules: status map not received")
        return
    print(f"  servos={status.servos}")
    print(f"  motors={status.motors}")
    print(f"  ir={status.ir} ultrasonic={status.ultrasonic}")
    print(f"  eyes={status.eyes} speakers={status.speakers}")


async def scan(timeout: float) -> None:
    devices = await discover_devices(timeout=timeout)
    if not devices:
        print("No JIMU bricks found")
    for found in devices:
        print(f"{found.name} ({found.address}) rssi={found.rssi}")


async def monitor(target: str | None, duration: float, sensor_period: float) -> None:
    """Connect, print modules, then print events until done."""
    counts: Counter[str] = Counter()

    def on_event(event: Event) -> None:
        counts[event.type.value] += 1
        print(f"[{_timestamp()}] {event.type.value}: {event.data}")

    device = JimuDevice(target)
    for event_type in (
            EventType.BATTERY_UPDATED,
            EventType.DEVICE_ERROR,
            EventType.ERROR_REPORT,
            EventType.FRAME_ERROR,
            EventType.TRANSPORT_ERROR,
            EventType.DISCONNECTED,
    ):
        device.on(event_type, on_event)

    info = await device.connect()
    _print_info(info)

    try:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration > 0 else None
        while deadline is None or loop.time() < deadline:
            if not device.is_connected:
                print("Link lost")
                break
            if sensor_period > 0:
                for reading in await device.read_all_sensors():
                    counts["sensor_reading"] += 1
                    print(f"[{_timestamp()}] sensor {reading.kind!r} id={reading.id} value={reading.value}")
                await asyncio.sleep(sensor_period)
            else:
                await asyncio.sleep(1)
    finally:
        if device.is_connected:
            await device.emergency_stop()
        await device.disconnect()

    print("\nSummary:")
    for name, count in sorted(counts.items()):
        print(f"  {name}={count}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Monitor a JIMU robot brick over BLE.")
    parser.add_argument("--scan", action="store_true", help="Only list nearby bricks.")
    parser.add_argument("--target", help="Address or advertised name (default: first found).")
    parser.add_argument(
        "--duration",
        type=float,
        default=30.0,
        help="Monitor duration in seconds (0 = run until Ctrl+C). Default: 30",
    )
    parser.add_argument(
        "--sensors",
        type=float,
        default=0.0,
        help="Poll every IR/ultrasonic sensor with this period in seconds (0 = off).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log protocol traffic.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        if args.scan:
            asyncio.run(scan(timeout=5.0))
        else:
            asyncio.run(monitor(args.target, args.duration, args.sensors))
    except KeyboardInterrupt:
        pass
    except JimuError as err:
        print(f"Error: {err}")


if __name__ == "__main__":
    main()
