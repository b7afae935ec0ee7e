"""Test JimuDevice state engine, boot sequence and commands."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeBrick, build_status_payload

from jimu import JimuDevice
from jimu.exceptions import (
    ChecksumError,
    DeviceDisconnectedError,
    DeviceTimeoutError,
    InvalidResponseError,
    TransportError,
)
from jimu.models.enums import EventType, ModuleType, SensorKind
from jimu.models.led_color import Color
from jimu.protocol import encode


@pytest.mark.asyncio
async def test_connect_runs_boot_sequence(device: JimuDevice, brick: FakeBrick) -> None:
    """Boot: brick info, probe, status, enables for present modules, battery."""
    connected = []
    device.on(EventType.CONNECTED, connected.append)

    info = await device.connect()

    assert brick.opcodes() == [0x36, 0x01, 0x08, 0x71, 0x71, 0x71, 0x27]
    assert [p for p in brick.sent if p[0] == 0x71] == [
        b"\x71\x01\x01\x00",  # IR 1
        b"\x71\x04\x03\x00",  # eyes 1, 2
        b"\x71\x06\x01\x00",  # ultrasonic 1
    ]
    assert info.firmware == "Jimu_p1.79"
    assert info.modules.servos == [1, 2]
    assert info.battery.volts == pytest.approx(8.0)
    assert device.is_connected
    assert len(connected) == 1
    assert connected[0].data == info


@pytest.mark.asyncio
async def test_boot_steps_are_best_effort(device: JimuDevice, brick: FakeBrick) -> None:
    """A failing boot write or a missing enable ack does not stop the boot."""
    brick.failing.add(0x36)
    brick.silent.add(0x71)
    device.TIMEOUT_ACK = 0.05

    info = await device.connect()

    assert brick.opcodes() == [0x36, 0x01, 0x08, 0x71, 0x71, 0x71, 0x27]
    assert info.modules is not None
    assert info.battery is not None


@pytest.mark.asyncio
async def test_boot_without_status(device: JimuDevice, brick: FakeBrick) -> None:
    brick.silent.add(0x08)
    device.TIMEOUT_STATUS = 0.05

    info = await device.connect()

    assert info.modules is None
    assert info.firmware is None
    assert 0x71 not in brick.opcodes()
    assert info.battery is not None


@pytest.mark.asyncio
async def test_context_manager(device: JimuDevice, brick: FakeBrick) -> None:
    async with device as dev:
        assert dev.is_connected
    assert not brick.connected
    assert device.state.last_status is None


class TestInboundFrames:
    """Test state updates and events for unsolicited frames."""

    @pytest.mark.asyncio
    async def test_battery_frame_updates_state(self, device, brick) -> None:
        events = []
        device.on(EventType.BATTERY_UPDATED, events.append)

        brick.push(b"\x27\x01\x00\x09\xC4")

        assert device.battery.charging is True
        assert device.battery.volts == 1.0
        assert events[0].data == device.battery

    @pytest.mark.asyncio
    async def test_status_frame_updates_state(self, device, brick) -> None:
        brick.push(build_status_payload(ir=[1, 3]))
        assert device.status.ir == [1, 3]

    @pytest.mark.asyncio
    async def test_error_ack_emits_device_error(self, device, brick) -> None:
        results, errors = [], []
        device.on(EventType.COMMAND_RESULT, results.append)
        device.on(EventType.DEVICE_ERROR, errors.append)

        brick.push(b"\x09\x00")
        brick.push(b"\x74\xEE\x01")

        assert [e.data.opcode for e in results] == [0x09, 0x74]
        assert len(errors) == 1
        assert errors[0].data.status == 0xEE
        assert device.state.last_command_result.opcode == 0x74

    @pytest.mark.asyncio
    async def test_error_report(self, device, brick) -> None:
        reports = []
        device.on(EventType.ERROR_REPORT, reports.append)
        brick.push(b"\x05\x01\x00\x00\x00\x02")
        assert reports[0].data.error_type == 0x01
        assert device.state.last_error.mask_bytes == b"\x00\x00\x00\x02"

    @pytest.mark.asyncio
    async def test_id_or_data_layouts_are_not_command_results(self, device, brick) -> None:
        results = []
        device.on(EventType.COMMAND_RESULT, results.append)
        brick.push(b"\x0B\x01\x78")
        brick.push(b"\x7E\x00\x00")
        assert results == []

    @pytest.mark.asyncio
    async def test_short_error_report_is_also_a_command_result(self, device, brick) -> None:
        results, reports = [], []
        device.on(EventType.COMMAND_RESULT, results.append)
        device.on(EventType.ERROR_REPORT, reports.append)
        brick.push(b"\x05\x01")
        assert [e.data.opcode for e in results] == [0x05]
        assert reports[0].data.error_type == 0x01

    @pytest.mark.asyncio
    async def test_ping_echo_and_frame_received(self, device, brick) -> None:
        pings, frames = [], []
        device.on(EventType.PING_ECHO, pings.append)
        device.on(EventType.FRAME_RECEIVED, frames.append)
        brick.push(b"\x03\x00")
        assert len(pings) == 1
        assert frames[0].data.opcode == 0x03

    @pytest.mark.asyncio
    async def test_corrupt_frame_emits_frame_error(self, device, brick) -> None:
        errors = []
        device.on(EventType.FRAME_ERROR, errors.append)
        bad = bytearray(encode(b"\x27\x00"))
        bad[-2] ^= 0x01
        brick.assembler.feed(bytes(bad))
        assert isinstance(errors[0].data, ChecksumError)

    @pytest.mark.asyncio
    async def test_uninterpretable_frame_still_dispatched(self, device, brick) -> None:
        """A short battery frame is not parsed but still reaches waiters."""
        frames = []
        device.on(EventType.FRAME_RECEIVED, frames.append)
        brick.push(b"\x27\x01\x00")
        assert device.battery is None
        assert len(frames) == 1


@pytest.mark.asyncio
async def test_link_drop_rejects_waiters_and_resets_state(device: JimuDevice, brick: FakeBrick) -> None:
    await device.connect()
    brick.silent.add(0x08)
    disconnected = []
    device.on(EventType.DISCONNECTED, disconnected.append)

    request = asyncio.create_task(device.refresh_status(timeout=5.0))
    await asyncio.sleep(0.01)
    device._handle_disconnect()

    with pytest.raises(DeviceDisconnectedError):
        await request
    assert len(disconnected) == 1
    assert device.state.last_status is None
    assert device.state.connected is False
    assert device._correlator.pending_waiters == 0


@pytest.mark.asyncio
async def test_transport_error_event(device: JimuDevice, brick: FakeBrick) -> None:
    errors = []
    device.on(EventType.TRANSPORT_ERROR, errors.append)
    brick.failing.add(0x09)

    with pytest.raises(TransportError):
        await device.set_servo_positions([1], [120])
    assert isinstance(errors[0].data, TransportError)


@pytest.mark.asyncio
async def test_request_timeout(device: JimuDevice, brick: FakeBrick) -> None:
    brick.silent.add(0x27)
    with pytest.raises(DeviceTimeoutError, match="battery report"):
        await device.request_battery(timeout=0.05)


@pytest.mark.asyncio
async def test_zero_timeout_is_not_the_default(device: JimuDevice, brick: FakeBrick) -> None:
    device.TIMEOUT_STATUS = 5.0
    brick.silent.add(0x08)
    with pytest.raises(DeviceTimeoutError, match="after 0s"):
        await asyncio.wait_for(device.refresh_status(timeout=0), 1.0)


@pytest.mark.asyncio
async def test_request_without_frame_raises(device: JimuDevice) -> None:
    """A request whose correlator yields no frame fails loudly."""
    async def no_frame(*args, **kwargs):
        return None

    device._correlator.send = no_frame
    with pytest.raises(InvalidResponseError, match="status map"):
        await device.refresh_status()


class TestServoCommands:
    @pytest.mark.asyncio
    async def test_set_position_degrees(self, device, brick) -> None:
        result = await device.set_servo_position_deg(1, 45)
        assert brick.sent == [b"\x09\x00\x00\x00\x01\xA5\x14\x00\x00"]
        assert result.ok

    @pytest.mark.asyncio
    async def test_read_servo_position(self, device, brick) -> None:
        feedback = await device.read_servo_position(2)
        assert brick.sent == [b"\x0B\x02\x00"]
        assert feedback.id == 2
        assert feedback.degrees == 30

    @pytest.mark.asyncio
    async def test_read_all_servo_positions_until_timeout(self, device, brick) -> None:
        reports = await device.read_all_servo_positions(timeout=0.05)
        assert brick.sent == [b"\x0B\x00\x00"]
        assert sorted(r.id for r in reports) == [1, 2]
        assert device._correlator.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_read_all_servo_positions_cancelled(self, device, brick) -> None:
        task = asyncio.create_task(device.read_all_servo_positions(timeout=5.0))
        await asyncio.sleep(0.02)
        assert device.cancel_servo_reads() == 1
        reports = await task
        assert len(reports) == 2

    @pytest.mark.asyncio
    async def test_change_servo_id(self, device, brick) -> None:
        await device.change_servo_id(1, 4)
        assert brick.sent == [b"\x0C\x01\x04"]


class TestSensorCommands:
    @pytest.mark.asyncio
    async def test_read_ultrasonic(self, device, brick) -> None:
        reading = await device.read_ultrasonic(1)
        assert brick.sent == [b"\x7E\x01\x06\x01"]
        assert reading.kind == SensorKind.ULTRASONIC
        assert reading.value == 101

    @pytest.mark.asyncio
    async def test_read_sensors_splits_same_type(self, device, brick) -> None:
        readings = await device.read_sensors([(SensorKind.IR, 1), (SensorKind.IR, 2)])
        assert brick.sent == [b"\x7E\x01\x01\x01", b"\x7E\x01\x01\x02"]
        assert [r.id for r in readings] == [1, 2]

    @pytest.mark.asyncio
    async def test_read_all_sensors_from_status(self, device, brick, status_payload) -> None:
        brick.push(status_payload)
        readings = await device.read_all_sensors()
        assert brick.sent == [b"\x7E\x02\x01\x01\x06\x01"]
        assert {(r.kind, r.id) for r in readings} == {
            (SensorKind.IR, 1),
            (SensorKind.ULTRASONIC, 1),
        }

    @pytest.mark.asyncio
    async def test_missing_batch_skipped(self, device, brick) -> None:
        brick.silent.add(0x7E)
        device.TIMEOUT_SENSOR = 0.05
        assert await device.read_sensors([(SensorKind.IR, 1)]) == []


class TestLightAndIdCommands:
    @pytest.mark.asyncio
    async def test_eye_color(self, device, brick) -> None:
        await device.set_eye_color(0x01, Color(1, 2, 3))
        assert brick.sent == [b"\x79\x04\x01\xFF\x01\xFF\x01\x02\x03"]

    @pytest.mark.asyncio
    async def test_eye_compass(self, device, brick) -> None:
        await device.set_eye_compass(0x01, {"N": Color(255, 0, 0)})
        payload = brick.sent[0]
        assert payload[:6] == b"\x79\x04\x01\x02\x08\xFF"
        assert payload[-4:] == b"\xFF\x00\x00\x80"

    @pytest.mark.asyncio
    async def test_ultrasonic_led_off(self, device, brick) -> None:
        await device.ultrasonic_led_off(1)
        assert brick.sent == [b"\x79\x06\x01\x00\x01\xFF\x00\x00\x00"]

    @pytest.mark.asyncio
    async def test_fix_sensor_from_zero(self, device, brick) -> None:
        await device.fix_sensor_from_zero(ModuleType.IR, 2)
        assert brick.sent == [b"\x74\x01\x00\x02"]

    @pytest.mark.asyncio
    async def test_motor(self, device, brick) -> None:
        await device.rotate_motor(1, -100, duration_ms=1000)
        await device.stop_motor(1)
        assert brick.sent == [b"\x90\x01\x01\xFF\x9C\x00\x0A", b"\x90\x01\x01\x00\x00\xFF\xFF"]

    @pytest.mark.asyncio
    async def test_error_report_request(self, device, brick) -> None:
        await device.request_error_report()
        assert brick.sent == [b"\x05\x00"]


@pytest.mark.asyncio
async def test_maintenance_pings_until_disconnect() -> None:
    device = JimuDevice(ping_interval=0.02, battery_interval=0)
    brick = FakeBrick(device)
    device._connection = brick  # Inject fake connection

    await device.connect(boot=False)
    await asyncio.sleep(0.07)
    await device.disconnect()
    pings = brick.opcodes().count(0x03)
    assert pings >= 2

    await asyncio.sleep(0.05)
    assert brick.opcodes().count(0x03) == pings
    assert device._maintenance == []
