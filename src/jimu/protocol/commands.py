"""BLE protocol commands for JIMU bricks.

Every builder returns a payload (opcode + params) for ``framing.encode``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import IntEnum
from typing import Final

from ..models.enums import ModuleType, RotationDirection
from ..models.led_color import Color, EyeSegmentColor
from ..models.status import MAX_SERVO_ID, ids_to_mask_bytes32


class CommandCode(IntEnum):
    """Opcodes (first payload byte) of the JIMU protocol."""

    PROBE = 0x01
    PING = 0x03
    ERROR_REPORT = 0x05
    ROTATE_SERVO = 0x07
    STATUS = 0x08
    SET_SERVO_POSITIONS = 0x09
    SERVO_POSITION = 0x0B
    CHANGE_SERVO_ID = 0x0C
    BATTERY = 0x27
    BRICK_INFO = 0x36
    ENABLE_MODULE = 0x71
    CHANGE_PERIPHERAL_ID = 0x74
    EYE_ANIMATION = 0x78
    EYE_COLOR = 0x79
    SENSOR = 0x7E
    MOTOR_ROTATE = 0x90


# Protocol constants
NAME_SUBSTRING = "jimu"
VENDOR_SERVICE_PREFIX = "49535343"
PREFERRED_WRITE_UUIDS: Final[tuple[str, ...]] = (
    "49535343-8841-43f4-a8d4-ecbe34729bb3",
    "49535343-aca3-481c-91ec-d85e28a60318",
)

DEFAULT_SERVO_SPEED = 0x14
MAX_ROTATE_IDS = 6
MAX_MOTOR_TICKS = 60  # deciseconds
MOTOR_RUN_UNTIL_STOPPED = 0xFFFF
EYE_DEVICE_TYPE = ModuleType.EYE
EYE_MODE_SOLID = 0x01
EYE_MODE_SEGMENTS = 0x02
EYE_TIME_HOLD = 0xFF
MAX_EYE_SCENE = 15


def _u8(name: str, value: int) -> int:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} out of range: {value} (must be 0-255)")
    return value


def _simple(opcode: CommandCode) -> bytes:
    return bytes([opcode, 0x00])


def build_probe_command() -> bytes:
    """Build the probe command used during boot: ``[0x01, 0x00]``."""
    return _simple(CommandCode.PROBE)


def build_brick_info_command() -> bytes:
    """Build the brick info request: ``[0x36, 0x00]``."""
    return _simple(CommandCode.BRICK_INFO)


def build_ping_command() -> bytes:
    """Build the keep-alive ping: ``[0x03, 0x00]``."""
    return _simple(CommandCode.PING)


def build_status_command() -> bytes:
    """Build the module status map request: ``[0x08, 0x00]``."""
    return _simple(CommandCode.STATUS)


def build_battery_command() -> bytes:
    """Build the battery request: ``[0x27, 0x00]``."""
    return _simple(CommandCode.BATTERY)


def build_error_report_command() -> bytes:
    """Build the error report request: ``[0x05, 0x00]``."""
    return _simple(CommandCode.ERROR_REPORT)


def build_enable_module_command(module_type: ModuleType | int, mask: int) -> bytes:
    """Build command to enable the modules of one type.

    Format:
        [0x71][type:1][mask:1][0x00]
        - mask: 8-slot bitmap of module IDs (bit0 = ID1)
    """
    return bytes([CommandCode.ENABLE_MODULE, _u8("module_type", module_type), _u8("mask", mask), 0x00])


def build_set_servo_positions_command(
        ids: Sequence[int],
        positions: Sequence[int],
        speed: int = DEFAULT_SERVO_SPEED,
        tail: bytes = b"\x00\x00",
) -> bytes:
    """Build command to move servos to absolute positions.

    Args:
        ids: Servo IDs (1-32)
        positions: Raw target position per ID (0-240, center 120)
        speed: Shared movement speed byte
        tail: Two reserved trailer bytes

    Returns:
        Command bytes: 0x09 + select mask (4) + positions + speed + tail

    Format:
        [0x09][select:4][pos:1 x N][speed:1][tail:2]
        - select: bitmap of target IDs, last byte covers IDs 1-8
        - pos: one byte per selected ID, in ascending ID order

    Raises:
        ValueError: If no IDs are given, counts differ, or a value is out of range
    """
    if not ids:
        raise ValueError("No servo ids provided")
    if len(ids) != len(positions):
        raise ValueError(f"Got {len(ids)} servo ids but {len(positions)} positions")
    if len(tail) != 2:
        raise ValueError(f"tail must be exactly 2 bytes, got {len(tail)}")

    targets: dict[int, int] = {}
    for servo_id, position in zip(ids, positions):
        if not 1 <= servo_id <= MAX_SERVO_ID:
            raise ValueError(f"servo id out of range: {servo_id} (must be 1-{MAX_SERVO_ID})")
        targets[servo_id] = _u8("position", position)

    ordered = [targets[servo_id] for servo_id in sorted(targets)]
    return (
        bytes([CommandCode.SET_SERVO_POSITIONS])
        + ids_to_mask_bytes32(targets)
        + bytes(ordered)
        + bytes([_u8("speed", speed)])
        + bytes(tail)
    )


def build_rotate_servos_command(
        ids: Sequence[int],
        direction: RotationDirection | int,
        velocity: int,
) -> bytes:
    """Build continuous-rotation command for up to 6 servos.

    Format:
        [0x07][count:1][id:1 x count][direction:1][velocity:2 big-endian]

    Velocity is clamped to 0-65535.
    """
    if not ids:
        raise ValueError("No servo ids provided")
    if len(ids) > MAX_ROTATE_IDS:
        raise ValueError(f"Too many servo ids: {len(ids)} (max {MAX_ROTATE_IDS})")

    vel = max(0, min(0xFFFF, int(velocity)))
    return (
        bytes([CommandCode.ROTATE_SERVO, len(ids)])
        + bytes(_u8("servo id", i) for i in ids)
        + bytes([_u8("direction", direction)])
        + vel.to_bytes(2, byteorder="big")
    )


def build_read_servo_position_command(servo_id: int = 0) -> bytes:
    """Build servo position read: ``[0x0B, id, 0x00]``; id 0 reads all."""
    return bytes([CommandCode.SERVO_POSITION, _u8("servo_id", servo_id), 0x00])


def build_change_servo_id_command(from_id: int, to_id: int) -> bytes:
    """Build servo ID reassignment: ``[0x0C, from, to]``."""
    return bytes([CommandCode.CHANGE_SERVO_ID, _u8("from_id", from_id), _u8("to_id", to_id)])


def build_rotate_motor_command(motor_id: int, speed: int, duration_ms: int | None = None) -> bytes:
    """Build motor speed command.

    Args:
        motor_id: Motor ID (1-8)
        speed: Signed speed, negative reverses (clamped to int16)
        duration_ms: Run time, capped at 6000ms; None runs until stopped

    Format:
        [0x90][0x01][id:1][speed:2 big-endian two's complement][ticks:2 big-endian]
        - ticks: duration in deciseconds (0-60), 0xFFFF = until stopped
    """
    value = max(-0x8000, min(0x7FFF, int(speed)))
    if duration_ms is None:
        ticks = MOTOR_RUN_UNTIL_STOPPED
    else:
        ticks = max(0, min(MAX_MOTOR_TICKS, round(duration_ms / 100)))

    return (
        bytes([CommandCode.MOTOR_ROTATE, 0x01, _u8("motor_id", motor_id)])
        + value.to_bytes(2, byteorder="big", signed=True)
        + ticks.to_bytes(2, byteorder="big")
    )


def build_stop_motor_command(motor_id: int) -> bytes:
    """Build motor stop (zero speed, no time limit)."""
    return build_rotate_motor_command(motor_id, 0, None)


def build_read_sensors_command(requests: Sequence[tuple[ModuleType | int, int]]) -> bytes:
    """Build one sensor read frame.

    Format:
        [0x7E][count:1]([type:1][id:1] x count)

    Raises:
        ValueError: If a sensor type appears twice; the brick answers at most
            one reading per type per frame, use ``split_sensor_requests``
    """
    if not requests:
        raise ValueError("No sensors requested")
    types = [int(sensor_type) for sensor_type, _ in requests]
    if len(set(types)) != len(types):
        raise ValueError("At most one sensor per type can be read in a single frame")

    payload = bytearray([CommandCode.SENSOR, len(requests)])
    for sensor_type, sensor_id in requests:
        payload += bytes([_u8("sensor_type", sensor_type), _u8("sensor_id", sensor_id)])
    return bytes(payload)


def split_sensor_requests(
        requests: Iterable[tuple[ModuleType | int, int]],
) -> list[list[tuple[ModuleType | int, int]]]:
    """Split sensor reads into frames holding at most one ID per type.

    Order within each type is preserved.
    """
    pending = list(requests)
    batches: list[list[tuple[ModuleType | int, int]]] = []
    while pending:
        batch: list[tuple[ModuleType | int, int]] = []
        seen: set[int] = set()
        rest: list[tuple[ModuleType | int, int]] = []
        for entry in pending:
            if int(entry[0]) in seen:
                rest.append(entry)
                continue
            seen.add(int(entry[0]))
            batch.append(entry)
        batches.append(batch)
        pending = rest
    return batches


def eye_id_to_mask(eye_id: int) -> int:
    """Single eye ID (1-8, clamped) to its bitmap bit."""
    return 1 << (max(1, min(8, eye_id)) - 1)


def build_eye_color_command(eyes_mask: int, color: Color, time: int = EYE_TIME_HOLD) -> bytes:
    """Build solid eye color command.

    Format:
        [0x79][0x04][eyes_mask:1][time:1][0x01][0xFF][r][g][b]
        - time: 0xFF holds the color, 0x00 with black turns the eye off
    """
    return (
        bytes([
            CommandCode.EYE_COLOR, EYE_DEVICE_TYPE, _u8("eyes_mask", eyes_mask),
            _u8("time", time), EYE_MODE_SOLID, 0xFF,
        ])
        + color.to_bytes()
    )


def build_eye_segments_command(
        eyes_mask: int,
        segments: Sequence[EyeSegmentColor],
        time: int = EYE_TIME_HOLD,
) -> bytes:
    """Build multi-segment eye color command.

    Format:
        [0x79][0x04][eyes_mask:1][0x02][count:1][time:1]([r][g][b][segment_mask] x count)
    """
    payload = bytearray([
        CommandCode.EYE_COLOR, EYE_DEVICE_TYPE, _u8("eyes_mask", eyes_mask),
        EYE_MODE_SEGMENTS, _u8("segment count", len(segments)), _u8("time", time),
    ])
    for segment in segments:
        payload += segment.to_bytes()
    return bytes(payload)


def build_eye_animation_command(
        eyes_mask: int,
        animation_id: int,
        repetitions: int = 1,
        color: Color | None = None,
) -> bytes:
    """Build eye animation scene command.

    Format:
        [0x78][0x04][eyes_mask:1][scene:1][0x00][repetitions:1][r][g][b]
        - scene: clamped to 1-15
    """
    scene = max(1, min(MAX_EYE_SCENE, animation_id))
    return (
        bytes([
            CommandCode.EYE_ANIMATION, EYE_DEVICE_TYPE, _u8("eyes_mask", eyes_mask),
            scene, 0x00, _u8("repetitions", repetitions),
        ])
        + (color or Color()).to_bytes()
    )


def build_ultrasonic_led_command(sensor_id: int, color: Color, time: int = EYE_TIME_HOLD) -> bytes:
    """Build ultrasonic sensor LED color command.

    Same layout as the solid eye command, addressed to device type 0x06:
        [0x79][0x06][id_mask:1][time:1][0x01][0xFF][r][g][b]
    """
    return (
        bytes([
            CommandCode.EYE_COLOR, ModuleType.ULTRASONIC, eye_id_to_mask(sensor_id),
            _u8("time", time), EYE_MODE_SOLID, 0xFF,
        ])
        + color.to_bytes()
    )


def build_change_peripheral_id_command(module_type: ModuleType | int, from_id: int, to_id: int) -> bytes:
    """Build peripheral ID reassignment: ``[0x74, type, from, to]``."""
    return bytes([
        CommandCode.CHANGE_PERIPHERAL_ID,
        _u8("module_type", module_type),
        _u8("from_id", from_id),
        _u8("to_id", to_id),
    ])
