"""Response classification and parsing for JIMU frames."""

from __future__ import annotations

import struct

from ..exceptions import InvalidResponseError
from ..models.enums import SensorKind
from ..models.readings import (
    BatteryStatus,
    CommandResult,
    ErrorReport,
    SensorReading,
    ServoFeedback,
    raw_to_degrees,
)
from ..models.status import ModulePresenceMap
from .commands import CommandCode

SENSOR_RECORD_OFFSET = 4
SENSOR_RECORD_SIZE = 5

# Opcodes whose second byte is an id or data rather than a status.
_NON_ACK_OPCODES = frozenset({
    CommandCode.STATUS,
    CommandCode.SENSOR,
    CommandCode.SERVO_POSITION,
})


def _expect_opcode(payload: bytes, opcode: CommandCode) -> None:
    if not payload:
        raise InvalidResponseError("Empty payload")
    if payload[0] != opcode:
        raise InvalidResponseError(
            f"Opcode mismatch: expected 0x{opcode:02x}, got 0x{payload[0]:02x}"
        )


def is_ack_like(payload: bytes) -> bool:
    """Check if a payload looks like a short command acknowledgement.

    Acks are 2-4 bytes: ``[opcode, status, device_id?, detail?]``.
    A short battery or error-report frame is also ack-like, so it is
    classified as a command result besides its dedicated parse.
    """
    return 2 <= len(payload) <= 4 and payload[0] not in _NON_ACK_OPCODES


def parse_command_result(payload: bytes) -> CommandResult:
    """Parse an acknowledgement-like payload.

    Raises:
        InvalidResponseError: If the payload is not ack-like
    """
    if not 2 <= len(payload) <= 4:
        raise InvalidResponseError(f"Ack must be 2-4 bytes, got {len(payload)}")
    return CommandResult(
        opcode=payload[0],
        status=payload[1],
        device_id=payload[2] if len(payload) > 2 else None,
        detail=payload[3] if len(payload) > 3 else None,
    )


def parse_error_report(payload: bytes) -> ErrorReport:
    """Parse error report (0x05).

    Format: [0x05][error_type:1][mask bytes...]
    """
    _expect_opcode(payload, CommandCode.ERROR_REPORT)
    if len(payload) < 2:
        raise InvalidResponseError("Error report too short: missing error type")
    return ErrorReport(error_type=payload[1], mask_bytes=bytes(payload[2:]))


def parse_status(payload: bytes) -> ModulePresenceMap:
    """Parse module status map (0x08)."""
    _expect_opcode(payload, CommandCode.STATUS)
    return ModulePresenceMap.from_payload(payload)


def parse_battery(payload: bytes) -> BatteryStatus:
    """Parse battery report (0x27).

    Format: [0x27][charging:1][?:1][volts:2 big-endian, 1/2500 V units]
    """
    _expect_opcode(payload, CommandCode.BATTERY)
    if len(payload) < 5:
        raise InvalidResponseError(f"Battery response too short: {len(payload)} bytes (need 5)")

    raw = struct.unpack(">H", payload[3:5])[0]
    return BatteryStatus(
        charging=payload[1] == 1,
        volts=raw / 2500,
        raw=bytes(payload[3:5]),
    )


def parse_sensor_batch(payload: bytes) -> list[SensorReading]:
    """Parse sensor batch (0x7E).

    Format: [0x7E][?:2][count:1]([type:1][?:1][id:1][value:2 big-endian] x count)

    Records cut short by the end of the payload are skipped.
    """
    _expect_opcode(payload, CommandCode.SENSOR)
    if len(payload) < SENSOR_RECORD_OFFSET:
        return []

    readings: list[SensorReading] = []
    for i in range(payload[3]):
        start = SENSOR_RECORD_OFFSET + i * SENSOR_RECORD_SIZE
        record = payload[start:start + SENSOR_RECORD_SIZE]
        if len(record) < SENSOR_RECORD_SIZE:
            break
        try:
            kind: SensorKind | int = SensorKind(record[0])
        except ValueError:
            kind = record[0]
        readings.append(SensorReading(
            kind=kind,
            id=record[2],
            value=struct.unpack(">H", record[3:5])[0],
        ))
    return readings


def parse_servo_feedback(payload: bytes) -> ServoFeedback:
    """Parse servo position report (0x0B).

    Format: [0x0B][id:1]...[raw_position:1], position is the last byte.
    """
    _expect_opcode(payload, CommandCode.SERVO_POSITION)
    if len(payload) < 3:
        raise InvalidResponseError(f"Servo report too short: {len(payload)} bytes (need 3)")
    raw = payload[-1]
    return ServoFeedback(id=payload[1], raw_position=raw, degrees=raw_to_degrees(raw))
