"""Shared fixtures: reference frames and a scripted fake brick."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

import pytest

from jimu import JimuDevice
from jimu.exceptions import TransportError
from jimu.models.status import ids_to_mask_byte, ids_to_mask_bytes32
from jimu.protocol import CommandCode, FrameAssembler, encode

# Reference frames: ping echo, battery report (7.8V, not charging), servo move ack
REAL_PING_FRAME = bytes.fromhex("fbbf06030009ed")
REAL_BATTERY_FRAME = bytes.fromhex("fbbf092700014c2ca9ed")
REAL_SERVO_ACK_FRAME = bytes.fromhex("fbbf0609000fed")


def build_status_payload(
        servos: Iterable[int] = (),
        ir: Iterable[int] = (),
        eyes: Iterable[int] = (),
        ultrasonic: Iterable[int] = (),
        speakers: Iterable[int] = (),
        motors: Iterable[int] = (),
        firmware: str = "Jimu_p1.79",
) -> bytes:
    """Build a 0x08 status payload with the given modules present."""
    payload = bytearray(124)
    payload[0] = CommandCode.STATUS
    payload[1:12] = firmware.encode("ascii").ljust(11, b"\x00")[:11]
    payload[12:16] = ids_to_mask_bytes32(servos)
    payload[29] = ids_to_mask_byte(ir)
    payload[50] = ids_to_mask_byte(eyes)
    payload[64] = ids_to_mask_byte(ultrasonic)
    payload[78] = ids_to_mask_byte(speakers)
    payload[120] = ids_to_mask_byte(motors)
    return bytes(payload)


def build_sensor_payload(records: Iterable[tuple[int, int, int]]) -> bytes:
    """Build a 0x7E sensor batch from (type, id, value) records."""
    records = list(records)
    payload = bytearray([CommandCode.SENSOR, 0x00, 0x00, len(records)])
    for sensor_type, sensor_id, value in records:
        payload += bytes([sensor_type, 0x00, sensor_id]) + value.to_bytes(2, "big")
    return bytes(payload)


Responder = Callable[[bytes], "list[bytes] | None"]


class FakeBrick:
    """Stands in for BLEConnection and answers like a brick.

    Replies are framed, fed through a real FrameAssembler and delivered to
    the device on the next loop iteration, like BLE notifications.
    """

    def __init__(self, device: JimuDevice, status: bytes | None = None):
        self.device = device
        self.status = status or build_status_payload(
            servos=[1, 2], ir=[1], eyes=[1, 2], ultrasonic=[1], motors=[1],
        )
        self.battery = bytes([CommandCode.BATTERY, 0x01, 0x00, 0x4E, 0x20])
        self.sent: list[bytes] = []
        self.silent: set[int] = set()
        self.failing: set[int] = set()
        self.overrides: dict[int, Responder] = {}
        self.connected = False
        self.assembler = FrameAssembler(
            on_frame=device._handle_frame,
            on_error=device._handle_frame_error,
        )

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def send(self, payload: bytes) -> None:
        self.sent.append(bytes(payload))
        opcode = payload[0]
        if opcode in self.failing:
            raise TransportError(f"write of 0x{opcode:02x} refused")
        if opcode in self.silent:
            return

        responder = self.overrides.get(opcode, self._reply)
        replies = responder(bytes(payload)) or []
        loop = asyncio.get_running_loop()
        for reply in replies:
            loop.call_soon(self.assembler.feed, encode(reply))

    def push(self, payload: bytes) -> None:
        """Deliver an unsolicited frame now."""
        self.assembler.feed(encode(payload))

    def opcodes(self) -> list[int]:
        return [payload[0] for payload in self.sent]

    def _reply(self, payload: bytes) -> list[bytes]:
        opcode = payload[0]
        if opcode == CommandCode.STATUS:
            return [self.status]
        if opcode == CommandCode.BATTERY:
            return [self.battery]
        if opcode == CommandCode.SERVO_POSITION:
            servo_id = payload[1]
            ids = [servo_id] if servo_id else [1, 2]
            return [bytes([CommandCode.SERVO_POSITION, i, 0x00, 0x96]) for i in ids]
        if opcode == CommandCode.SENSOR:
            count = payload[1]
            records = [
                (payload[2 + i * 2], payload[3 + i * 2], 100 + payload[3 + i * 2])
                for i in range(count)
            ]
            return [build_sensor_payload(records)]
        return [bytes([opcode, 0x00])]


@pytest.fixture
def real_ping_frame() -> bytes:
    return REAL_PING_FRAME


@pytest.fixture
def real_battery_frame() -> bytes:
    return REAL_BATTERY_FRAME


@pytest.fixture
def real_servo_ack_frame() -> bytes:
    return REAL_SERVO_ACK_FRAME


@pytest.fixture
def status_payload() -> bytes:
    return build_status_payload(servos=[1, 2], ir=[1], eyes=[1, 2], ultrasonic=[1], motors=[1])


@pytest.fixture
def device() -> JimuDevice:
    """Device with fast settle times and no maintenance timers."""
    dev = JimuDevice(address="AA:BB:CC:DD:EE:FF", ping_interval=0, battery_interval=0)
    dev.BOOT_SETTLE = 0
    dev.ENABLE_SETTLE = 0
    dev.STOP_SETTLE = 0
    dev.SENSOR_BATCH_SETTLE = 0
    dev._correlator.min_spacing = 0
    return dev


@pytest.fixture
def brick(device: JimuDevice) -> FakeBrick:
    fake = FakeBrick(device)
    device._connection = fake  # Inject fake connection
    return fake
