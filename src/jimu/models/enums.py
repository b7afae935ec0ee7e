from __future__ import annotations

from enum import Enum, IntEnum
from typing import Final


class ModuleType(IntEnum):
    """Peripheral type codes used by the enable (0x71), sensor (0x7E) and
    ID-change (0x74) commands."""
    IR = 0x01
    EYE = 0x04
    ULTRASONIC = 0x06
    SPEAKER = 0x08


class SensorKind(IntEnum):
    """Sensor types that report readings through the 0x7E batch."""
    IR = ModuleType.IR
    ULTRASONIC = ModuleType.ULTRASONIC


class RotationDirection(IntEnum):
    """Direction byte for continuous-rotation servo commands."""
    FORWARD = 0x01
    REVERSE = 0x02


class EyeSegment(IntEnum):
    """Eye LED ring segments.

    Observed mapping: the first LED is north-east, then clockwise,
    so bit0 = NE .. bit7 = N.
    """
    NE = 0
    E = 1
    SE = 2
    S = 3
    SW = 4
    W = 5
    NW = 6
    N = 7

    @property
    def mask(self) -> int:
        return 1 << self.value


EYE_SEGMENT_COMPASS_ORDER: Final[tuple[EyeSegment, ...]] = tuple(EyeSegment)


class EventType(str, Enum):
    """Event names published by the device state engine."""
    FRAME_RECEIVED = "frame_received"
    FRAME_ERROR = "frame_error"
    STATUS_UPDATED = "status_updated"
    BATTERY_UPDATED = "battery_updated"
    SENSOR_BATCH = "sensor_batch"
    SERVO_POSITION_UPDATED = "servo_position_updated"
    COMMAND_RESULT = "command_result"
    DEVICE_ERROR = "device_error"
    ERROR_REPORT = "error_report"
    PING_ECHO = "ping_echo"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TRANSPORT_ERROR = "transport_error"
