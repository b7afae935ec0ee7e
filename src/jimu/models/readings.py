"""Typed readings decoded from device frames."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Final

from .enums import SensorKind

BATTERY_EMPTY_VOLTS: Final = 6.5
BATTERY_FULL_VOLTS: Final = 8.4

SERVO_CENTER: Final = 120
SERVO_MIN_DEGREES: Final = -120
SERVO_MAX_DEGREES: Final = 120


def battery_percent(volts: float | None) -> float | None:
    """Estimate charge as a 0.0-1.0 fraction from pack voltage.

    Linear between BATTERY_EMPTY_VOLTS and BATTERY_FULL_VOLTS.
    """
    if volts is None or not math.isfinite(volts):
        return None
    fraction = (volts - BATTERY_EMPTY_VOLTS) / (BATTERY_FULL_VOLTS - BATTERY_EMPTY_VOLTS)
    return max(0.0, min(1.0, fraction))


def raw_to_degrees(raw: int) -> int:
    """Servo raw position (0..240) to degrees around center."""
    return max(SERVO_MIN_DEGREES, min(SERVO_MAX_DEGREES, raw - SERVO_CENTER))


def degrees_to_raw(degrees: float) -> int:
    """Degrees around center to servo raw position (0..240)."""
    return max(0, min(2 * SERVO_CENTER, round(degrees) + SERVO_CENTER))


@dataclass(frozen=True)
class BatteryStatus:
    """Battery report from opcode 0x27."""

    charging: bool
    volts: float
    raw: bytes = field(default_factory=bytes)

    @property
    def percent(self) -> float | None:
        return battery_percent(self.volts)


@dataclass(frozen=True)
class SensorReading:
    """One record from a 0x7E sensor batch.

    ``kind`` is a SensorKind when the type byte is known, else the raw int.
    """
    kind: SensorKind | int
    id: int
    value: int


@dataclass(frozen=True)
class ServoFeedback:
    """Servo position report from opcode 0x0B."""

    id: int
    raw_position: int
    degrees: int


@dataclass(frozen=True)
class CommandResult:
    """Acknowledgement-like short frame: ``[opcode, status, device_id?, detail?]``."""

    opcode: int
    status: int
    device_id: int | None = None
    detail: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == 0


@dataclass(frozen=True)
class ErrorReport:
    """Error report from opcode 0x05."""

    error_type: int
    mask_bytes: bytes = field(default_factory=bytes)
