"""Events published by the protocol engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .enums import EventType


@dataclass(frozen=True)
class Event:
    """A tagged event.

    ``data`` depends on ``type``:
    - FRAME_RECEIVED: DecodedFrame
    - FRAME_ERROR: ProtocolError
    - STATUS_UPDATED: ModulePresenceMap
    - BATTERY_UPDATED: BatteryStatus
    - SENSOR_BATCH: list[SensorReading]
    - SERVO_POSITION_UPDATED: ServoFeedback
    - COMMAND_RESULT / DEVICE_ERROR: CommandResult
    - ERROR_REPORT: ErrorReport
    - PING_ECHO: DecodedFrame
    - CONNECTED: DeviceInfo
    - DISCONNECTED: None
    - TRANSPORT_ERROR: Exception
    """
    type: EventType
    data: Any = None
