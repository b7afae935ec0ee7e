"""Main JIMU BLE device class."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from .correlator import CommandCorrelator, PendingCommand, opcode_is
from .events import EventBus, Listener
from .exceptions import DeviceDisconnectedError, DeviceTimeoutError, InvalidResponseError, JimuError, TransportError
from .models.enums import EventType, EyeSegment, ModuleType, RotationDirection, SensorKind
from .models.led_color import BLACK, Color, EyeSegmentColor, compass_segments
from .models.readings import BatteryStatus, CommandResult, SensorReading, ServoFeedback, degrees_to_raw
from .models.state import DeviceInfo, DeviceState
from .models.status import ModulePresenceMap
from .protocol import (
    CommandCode,
    DecodedFrame,
    build_battery_command,
    build_brick_info_command,
    build_change_peripheral_id_command,
    build_change_servo_id_command,
    build_enable_module_command,
    build_error_report_command,
    build_eye_animation_command,
    build_eye_color_command,
    build_eye_segments_command,
    build_ping_command,
    build_probe_command,
    build_read_sensors_command,
    build_read_servo_position_command,
    build_rotate_motor_command,
    build_rotate_servos_command,
    build_set_servo_positions_command,
    build_status_command,
    build_stop_motor_command,
    build_ultrasonic_led_command,
    is_ack_like,
    parse_battery,
    parse_command_result,
    parse_error_report,
    parse_sensor_batch,
    parse_servo_feedback,
    parse_status,
    split_sensor_requests,
)
from .protocol.commands import DEFAULT_SERVO_SPEED, NAME_SUBSTRING
from .transport import BLEConnection

if TYPE_CHECKING:
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class JimuDevice:
    """JIMU robot brick.

    Main API for communicating with a JIMU brick: interprets incoming
    frames into typed state and events, runs the boot and maintenance
    sequences, and exposes one method per command.

    Usage:
        async with JimuDevice() as device:
            await device.set_servo_position_deg(1, 45)
            reading = await device.read_ultrasonic(1)

        # Pick a specific brick and listen for events
        device = JimuDevice("JIMU2-1234")
        device.on(EventType.BATTERY_UPDATED, lambda e: print(e.data.volts))
        info = await device.connect()
    """

    TIMEOUT_STATUS = 1.5
    TIMEOUT_ACK = 1.2
    TIMEOUT_BATTERY = 1.5
    TIMEOUT_SENSOR = 1.2
    BOOT_SETTLE = 0.15
    ENABLE_SETTLE = 0.12
    STOP_SETTLE = 0.03
    SENSOR_BATCH_SETTLE = 0.1

    def __init__(
            self,
            address: str | None = None,
            ble_device: BLEDevice | None = None,
            name_substring: str = NAME_SUBSTRING,
            ping_interval: float = 5.0,
            battery_interval: float = 30.0,
            min_spacing: float = 0.025,
            single_flight: bool = True,
            timeout: float = 10.0,
    ):
        """Initialize JIMU device.

        Args:
            address: Device address or advertised name; None takes the first brick found
            ble_device: Optional BLEDevice from a prior scan
            name_substring: Advertised-name filter used when scanning (default: "jimu")
            ping_interval: Keep-alive period in seconds, 0 disables (default: 5)
            battery_interval: Battery refresh period in seconds, 0 disables (default: 30)
            min_spacing: Minimum gap between commands in seconds (default: 0.025)
            single_flight: Wait for each command's echo before the next (default: True)
            timeout: BLE connect/scan timeout in seconds (default: 10)
        """
        self.ping_interval = ping_interval
        self.battery_interval = battery_interval

        self.state = DeviceState()
        self.events = EventBus()
        self._connection = BLEConnection(
            address,
            ble_device,
            name_substring=name_substring,
            timeout=timeout,
            on_frame=self._handle_frame,
            on_frame_error=self._handle_frame_error,
            on_disconnect=self._handle_disconnect,
        )
        self._correlator = CommandCorrelator(
            self._write,
            min_spacing=min_spacing,
            single_flight=single_flight,
            default_timeout=self.TIMEOUT_ACK,
        )
        self._maintenance: list[asyncio.Task] = []
        self._servo_broadcasts: set[PendingCommand] = set()

    async def __aenter__(self) -> JimuDevice:
        """Connect and boot the brick."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device."""
        await self.disconnect()

    # ----------------- Lifecycle -----------------

    async def connect(self, target: str | BLEDevice | None = None, boot: bool = True) -> DeviceInfo:
        """Connect, run the boot sequence and start maintenance timers.

        Args:
            target: Address, advertised name or BLEDevice (default: from constructor)
            boot: Run the boot sequence (default: True)

        Returns:
            DeviceInfo with firmware text, modules and battery

        Raises:
            BLEConnectionError: If the link or its channels cannot be set up
            BLETimeoutError: If connection times out
        """
        if isinstance(target, str):
            self._connection.address = target
            self._connection.ble_device = None
        elif target is not None:
            self._connection.ble_device = target

        await self._connection.connect()
        self.state.connected = True

        if boot:
            await self.boot()
        self._start_maintenance()

        info = self.get_info()
        _LOGGER.info(
            "Brick ready: firmware=%s battery=%s",
            info.firmware,
            f"{info.battery.volts:.2f}V" if info.battery else "unknown",
        )
        self.events.emit(EventType.CONNECTED, info)
        return info

    async def disconnect(self) -> None:
        """Stop timers, reject pending waiters and close the link. Idempotent."""
        self._stop_maintenance()
        self._correlator.fail_all(DeviceDisconnectedError("Disconnected by caller"))
        await self._connection.disconnect()
        self.state.reset()

    @property
    def is_connected(self) -> bool:
        return self.state.connected and self._connection.is_connected

    def on(self, event_type: EventType, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event; returns the unsubscribe callable."""
        return self.events.on(event_type, listener)

    @property
    def status(self) -> ModulePresenceMap | None:
        """Last module status map."""
        return self.state.last_status

    @property
    def battery(self) -> BatteryStatus | None:
        """Last battery report."""
        return self.state.last_battery

    def get_info(self) -> DeviceInfo:
        status = self.state.last_status
        return DeviceInfo(
            firmware=status.firmware if status else None,
            modules=status,
            battery=self.state.last_battery,
        )

    # ----------------- Inbound -----------------

    def _handle_frame(self, frame: DecodedFrame) -> None:
        """Interpret one frame, update state, publish events, resolve waiters."""
        payload = frame.payload
        opcode = frame.opcode

        try:
            if is_ack_like(payload):
                result = parse_command_result(payload)
                self.state.last_command_result = result
                self.events.emit(EventType.COMMAND_RESULT, result)
                if not result.ok:
                    _LOGGER.debug("Device error for 0x%02x: status=0x%02x", opcode, result.status)
                    self.events.emit(EventType.DEVICE_ERROR, result)

            if opcode == CommandCode.ERROR_REPORT and len(payload) >= 2:
                report = parse_error_report(payload)
                self.state.last_error = report
                self.events.emit(EventType.ERROR_REPORT, report)

            elif opcode == CommandCode.STATUS:
                status = parse_status(payload)
                self.state.last_status = status
                self.events.emit(EventType.STATUS_UPDATED, status)

            elif opcode == CommandCode.BATTERY and len(payload) >= 5:
                battery = parse_battery(payload)
                self.state.last_battery = battery
                self.events.emit(EventType.BATTERY_UPDATED, battery)

            elif opcode == CommandCode.SENSOR:
                self.events.emit(EventType.SENSOR_BATCH, parse_sensor_batch(payload))

            elif opcode == CommandCode.SERVO_POSITION and len(payload) >= 3:
                self.events.emit(EventType.SERVO_POSITION_UPDATED, parse_servo_feedback(payload))

            elif opcode == CommandCode.PING:
                self.events.emit(EventType.PING_ECHO, frame)

        except InvalidResponseError as e:
            _LOGGER.debug("Could not interpret %r: %s", frame, e)

        self.events.emit(EventType.FRAME_RECEIVED, frame)
        self._correlator.dispatch(frame)

    def _handle_frame_error(self, error: JimuError) -> None:
        self.events.emit(EventType.FRAME_ERROR, error)

    def _handle_disconnect(self) -> None:
        """Link dropped underneath us."""
        _LOGGER.info("Brick disconnected")
        self._stop_maintenance()
        self._correlator.fail_all(DeviceDisconnectedError("Device disconnected"))
        self.state.reset()
        self.events.emit(EventType.DISCONNECTED)

    # ----------------- Outbound -----------------

    async def _write(self, payload: bytes) -> None:
        try:
            await self._connection.send(payload)
        except TransportError as e:
            self.events.emit(EventType.TRANSPORT_ERROR, e)
            raise

    async def _command(self, payload: bytes) -> CommandResult | None:
        """Send with single-flight correlation; ack if the echo is ack-like."""
        frame = await self._correlator.send(payload)
        if frame is not None and is_ack_like(frame.payload):
            return parse_command_result(frame.payload)
        return None

    async def _request(
            self,
            payload: bytes,
            expect: Callable[[DecodedFrame], bool],
            timeout: float,
            label: str,
    ) -> DecodedFrame:
        frame = await self._correlator.send(payload, expect=expect, timeout=timeout, label=label)
        if frame is None:
            raise InvalidResponseError(f"No frame received for {label}")
        return frame

    async def _best_effort(self, step: Awaitable[_T], what: str) -> _T | None:
        try:
            return await step
        except (JimuError, ValueError) as e:
            _LOGGER.warning("%s failed: %s", what, e)
            return None

    # ----------------- Boot & maintenance -----------------

    async def boot(self) -> None:
        """Run the boot sequence; every step is best-effort.

        brick info -> probe -> status -> enable detected modules -> battery
        """
        for payload in (build_brick_info_command(), build_probe_command()):
            await self._best_effort(self._correlator.send(payload), f"boot command 0x{payload[0]:02x}")
            await asyncio.sleep(self.BOOT_SETTLE)

        await self._best_effort(self.refresh_status(), "status refresh")
        await self._best_effort(self.enable_detected_modules(), "module enable")
        await self._best_effort(self.request_battery(), "battery request")

    def _start_maintenance(self) -> None:
        self._stop_maintenance()
        loop = asyncio.get_running_loop()
        if self.ping_interval > 0:
            self._maintenance.append(loop.create_task(
                self._periodic(self.ping_interval, self.ping, "keep-alive ping")
            ))
        if self.battery_interval > 0:
            self._maintenance.append(loop.create_task(
                self._periodic(
                    self.battery_interval,
                    lambda: self._correlator.send(build_battery_command()),
                    "battery refresh",
                )
            ))

    def _stop_maintenance(self) -> None:
        for task in self._maintenance:
            task.cancel()
        self._maintenance.clear()

    async def _periodic(self, interval: float, action: Callable[[], Awaitable[Any]], what: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except JimuError as e:
                _LOGGER.debug("%s failed: %s", what, e)

    async def ping(self) -> None:
        """Send a keep-alive ping (single-flight, echo not required)."""
        await self._correlator.send(build_ping_command())

    # ----------------- Status, modules, battery -----------------

    async def refresh_status(self, timeout: float | None = None) -> ModulePresenceMap:
        """Request the module status map and wait for it.

        Raises:
            DeviceTimeoutError: If no status frame arrives in time
        """
        frame = await self._request(
            build_status_command(),
            opcode_is(CommandCode.STATUS),
            self.TIMEOUT_STATUS if timeout is None else timeout,
            "status map",
        )
        return parse_status(frame.payload)

    async def enable_detected_modules(self) -> list[ModuleType]:
        """Enable IR, eye, ultrasonic and speaker modules present in the status map.

        Each enable waits for its acknowledgement; a missing ack is logged
        and the next module type is still enabled.

        Returns:
            Module types whose enable was acknowledged
        """
        status = self.state.last_status or await self.refresh_status()
        enable_set = [
            (ModuleType.IR, status.masks.ir),
            (ModuleType.EYE, status.masks.eyes),
            (ModuleType.ULTRASONIC, status.masks.ultrasonic),
            (ModuleType.SPEAKER, status.masks.speakers),
        ]

        enabled: list[ModuleType] = []
        for module_type, mask in enable_set:
            if not mask:
                continue
            frame = await self._best_effort(
                self._request(
                    build_enable_module_command(module_type, mask),
                    opcode_is(CommandCode.ENABLE_MODULE),
                    self.TIMEOUT_ACK,
                    f"enable {module_type.name} ack",
                ),
                f"enable {module_type.name}",
            )
            if frame is not None:
                enabled.append(module_type)
            await asyncio.sleep(self.ENABLE_SETTLE)

        _LOGGER.debug("Enabled modules: %s", [m.name for m in enabled])
        return enabled

    async def request_battery(self, timeout: float | None = None) -> BatteryStatus:
        """Request a battery report and wait for it."""
        frame = await self._request(
            build_battery_command(),
            lambda f: f.opcode == CommandCode.BATTERY and len(f.payload) >= 5,
            self.TIMEOUT_BATTERY if timeout is None else timeout,
            "battery report",
        )
        return parse_battery(frame.payload)

    async def request_error_report(self) -> CommandResult | None:
        """Ask the brick to push its error report (0x05)."""
        return await self._command(build_error_report_command())

    # ----------------- Servos -----------------

    async def set_servo_positions(
            self,
            ids: Sequence[int],
            positions: Sequence[int],
            speed: int = DEFAULT_SERVO_SPEED,
            tail: bytes = b"\x00\x00",
    ) -> CommandResult | None:
        """Move servos to raw positions (0-240, center 120)."""
        return await self._command(build_set_servo_positions_command(ids, positions, speed, tail))

    async def set_servo_positions_deg(
            self,
            ids: Sequence[int],
            degrees: Sequence[float],
            speed: int = DEFAULT_SERVO_SPEED,
    ) -> CommandResult | None:
        """Move servos to angles in degrees (-120..120)."""
        return await self.set_servo_positions(ids, [degrees_to_raw(d) for d in degrees], speed)

    async def set_servo_position_deg(
            self,
            servo_id: int,
            degrees: float,
            speed: int = DEFAULT_SERVO_SPEED,
    ) -> CommandResult | None:
        return await self.set_servo_positions_deg([servo_id], [degrees], speed)

    async def rotate_servos(
            self,
            ids: Sequence[int],
            direction: RotationDirection | int,
            velocity: int,
    ) -> CommandResult | None:
        """Continuous rotation for up to 6 servos; velocity 0 stops."""
        return await self._command(build_rotate_servos_command(ids, direction, velocity))

    async def rotate_servo(
            self,
            servo_id: int,
            direction: RotationDirection | int,
            velocity: int,
    ) -> CommandResult | None:
        return await self.rotate_servos([servo_id], direction, velocity)

    async def read_servo_position(self, servo_id: int, timeout: float | None = None) -> ServoFeedback:
        """Read one servo's position.

        Raises:
            DeviceTimeoutError: If that servo does not report in time
        """
        frame = await self._request(
            build_read_servo_position_command(servo_id),
            lambda f: (
                f.opcode == CommandCode.SERVO_POSITION
                and len(f.payload) >= 3
                and f.payload[1] == servo_id
            ),
            self.TIMEOUT_ACK if timeout is None else timeout,
            f"servo {servo_id} position",
        )
        return parse_servo_feedback(frame.payload)

    async def read_all_servo_positions(self, timeout: float | None = None) -> list[ServoFeedback]:
        """Broadcast a position read (id=0) and collect the reports.

        There is no single correlated reply: reports are collected until the
        timeout elapses or ``cancel_servo_reads`` is called. Does not hold
        the command queue while collecting.
        """
        reports: list[ServoFeedback] = []
        unsubscribe = self.events.on(
            EventType.SERVO_POSITION_UPDATED, lambda e: reports.append(e.data)
        )
        pending = self._correlator.submit(
            build_read_servo_position_command(0),
            expect=lambda f: False,
            timeout=self.TIMEOUT_ACK if timeout is None else timeout,
            cancelable=True,
            label="broadcast servo read",
        )
        self._servo_broadcasts.add(pending)
        try:
            await pending
        except DeviceTimeoutError:
            pass
        finally:
            self._servo_broadcasts.discard(pending)
            unsubscribe()
        return reports

    def cancel_servo_reads(self) -> int:
        """End every in-flight broadcast servo read early.

        Returns:
            Number of reads cancelled
        """
        return sum(1 for pending in list(self._servo_broadcasts) if pending.cancel())

    async def change_servo_id(self, from_id: int, to_id: int) -> CommandResult | None:
        return await self._command(build_change_servo_id_command(from_id, to_id))

    # ----------------- Motors -----------------

    async def rotate_motor(
            self,
            motor_id: int,
            speed: int,
            duration_ms: int | None = None,
    ) -> CommandResult | None:
        """Run a motor at a signed speed, for up to 6000ms or until stopped."""
        return await self._command(build_rotate_motor_command(motor_id, speed, duration_ms))

    async def stop_motor(self, motor_id: int) -> CommandResult | None:
        return await self._command(build_stop_motor_command(motor_id))

    # ----------------- Sensors -----------------

    async def read_sensor(self, kind: SensorKind, sensor_id: int, timeout: float | None = None) -> SensorReading:
        """Read one sensor.

        Raises:
            DeviceTimeoutError: If no matching reading arrives in time
        """
        def matches(reading: SensorReading) -> bool:
            return reading.kind == kind and reading.id == sensor_id

        frame = await self._request(
            build_read_sensors_command([(kind, sensor_id)]),
            lambda f: f.opcode == CommandCode.SENSOR and any(matches(r) for r in parse_sensor_batch(f.payload)),
            self.TIMEOUT_SENSOR if timeout is None else timeout,
            f"{kind.name} {sensor_id} reading",
        )
        return next(r for r in parse_sensor_batch(frame.payload) if matches(r))

    async def read_ir(self, sensor_id: int = 1) -> SensorReading:
        return await self.read_sensor(SensorKind.IR, sensor_id)

    async def read_ultrasonic(self, sensor_id: int = 1) -> SensorReading:
        return await self.read_sensor(SensorKind.ULTRASONIC, sensor_id)

    async def read_sensors(self, requests: Iterable[tuple[SensorKind, int]]) -> list[SensorReading]:
        """Read several sensors, one frame per batch of distinct types.

        A batch without a reply is logged and skipped.
        """
        readings: list[SensorReading] = []
        batches = split_sensor_requests(requests)
        for idx, batch in enumerate(batches):
            if idx:
                await asyncio.sleep(self.SENSOR_BATCH_SETTLE)
            frame = await self._best_effort(
                self._request(
                    build_read_sensors_command(batch),
                    opcode_is(CommandCode.SENSOR),
                    self.TIMEOUT_SENSOR,
                    "sensor batch",
                ),
                f"sensor read {batch}",
            )
            if frame is not None:
                readings.extend(parse_sensor_batch(frame.payload))
        return readings

    async def read_all_sensors(self, status: ModulePresenceMap | None = None) -> list[SensorReading]:
        """Read every IR and ultrasonic sensor in the status map."""
        status = status or self.state.last_status or await self.refresh_status()
        requests = [(SensorKind.IR, i) for i in status.ir]
        requests += [(SensorKind.ULTRASONIC, i) for i in status.ultrasonic]
        if not requests:
            return []
        return await self.read_sensors(requests)

    # ----------------- Eyes & LEDs -----------------

    async def set_eye_color(self, eyes_mask: int, color: Color, time: int = 0xFF) -> CommandResult | None:
        return await self._command(build_eye_color_command(eyes_mask, color, time))

    async def eye_off(self, eyes_mask: int) -> CommandResult | None:
        return await self._command(build_eye_color_command(eyes_mask, BLACK, time=0x00))

    async def set_eye_segments(
            self,
            eyes_mask: int,
            segments: Sequence[EyeSegmentColor],
            time: int = 0xFF,
    ) -> CommandResult | None:
        return await self._command(build_eye_segments_command(eyes_mask, segments, time))

    async def set_eye_compass(
            self,
            eyes_mask: int,
            colors: Mapping[EyeSegment | str, Color],
            time: int = 0xFF,
    ) -> CommandResult | None:
        """Color each of the 8 ring segments by compass position (NE first)."""
        return await self.set_eye_segments(eyes_mask, compass_segments(colors), time)

    async def set_eye_animation(
            self,
            eyes_mask: int,
            animation_id: int,
            repetitions: int = 1,
            color: Color | None = None,
    ) -> CommandResult | None:
        return await self._command(build_eye_animation_command(eyes_mask, animation_id, repetitions, color))

    async def set_ultrasonic_led(self, sensor_id: int, color: Color) -> CommandResult | None:
        return await self._command(build_ultrasonic_led_command(sensor_id, color))

    async def ultrasonic_led_off(self, sensor_id: int) -> CommandResult | None:
        return await self._command(build_ultrasonic_led_command(sensor_id, BLACK, time=0x00))

    # ----------------- IDs -----------------

    async def change_peripheral_id(
            self,
            module_type: ModuleType | int,
            from_id: int,
            to_id: int,
    ) -> CommandResult | None:
        return await self._command(build_change_peripheral_id_command(module_type, from_id, to_id))

    async def fix_sensor_from_zero(
            self,
            module_type: ModuleType | int = ModuleType.IR,
            to_id: int = 2,
    ) -> CommandResult | None:
        """Give a sensor stuck at ID 0 a usable ID."""
        return await self.change_peripheral_id(module_type, 0, to_id)

    # ----------------- Emergency stop -----------------

    async def emergency_stop(self, refresh: bool = False) -> None:
        """Stop every known actuator and turn off every known light.

        Never raises: each step is best-effort, so one unresponsive module
        cannot keep the others running. Safe to repeat, and safe with a
        stale status map.

        Args:
            refresh: Request a fresh status map first (default: last known)
        """
        status = self.state.last_status
        if refresh or status is None:
            status = await self._best_effort(self.refresh_status(), "emergency stop status refresh") or status
        if status is None:
            _LOGGER.warning("Emergency stop: no module status known, nothing to stop")
            return

        _LOGGER.info(
            "Emergency stop: %d motor(s), %d servo(s), %d eye(s), %d ultrasonic",
            len(status.motors), len(status.servos), len(status.eyes), len(status.ultrasonic),
        )

        for motor_id in status.motors:
            await self._best_effort(self.stop_motor(motor_id), f"stop motor {motor_id}")
            await asyncio.sleep(self.STOP_SETTLE)

        for servo_id in status.servos:
            await self._best_effort(
                self.rotate_servo(servo_id, RotationDirection.FORWARD, 0),
                f"stop servo {servo_id}",
            )
            await asyncio.sleep(self.STOP_SETTLE)

        await self._best_effort(self._release_servos(), "servo release")

        if status.masks.eyes:
            await self._best_effort(self.eye_off(status.masks.eyes), "eyes off")

        for sensor_id in status.ultrasonic:
            await self._best_effort(self.ultrasonic_led_off(sensor_id), f"ultrasonic {sensor_id} LED off")

    async def _release_servos(self) -> None:
        """Broadcast position read; releases servo holding torque.

        The reply is not needed, so the waiter is cancelled once written.
        """
        pending = self._correlator.submit(
            build_read_servo_position_command(0),
            expect=opcode_is(CommandCode.SERVO_POSITION),
            cancelable=True,
            label="servo release",
        )
        try:
            await pending.sent()
        finally:
            pending.cancel()
        await pending
