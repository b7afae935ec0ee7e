"""Data models for JIMU bricks."""

from .enums import (
    EYE_SEGMENT_COMPASS_ORDER,
    EventType,
    EyeSegment,
    ModuleType,
    RotationDirection,
    SensorKind,
)
from .events import Event
from .led_color import BLACK, Color, EyeSegmentColor, compass_segments
from .readings import (
    BatteryStatus,
    CommandResult,
    ErrorReport,
    SensorReading,
    ServoFeedback,
    battery_percent,
    degrees_to_raw,
    raw_to_degrees,
)
from .state import DeviceInfo, DeviceState
from .status import (
    ModuleMasks,
    ModulePresenceMap,
    ids_to_mask_byte,
    ids_to_mask_bytes32,
    mask_byte_to_ids,
    mask_bytes_to_ids,
)

__all__ = [
    # Enums
    "ModuleType",
    "SensorKind",
    "RotationDirection",
    "EyeSegment",
    "EYE_SEGMENT_COMPASS_ORDER",
    "EventType",
    # Events & state
    "Event",
    "DeviceState",
    "DeviceInfo",
    # Status map
    "ModuleMasks",
    "ModulePresenceMap",
    "mask_byte_to_ids",
    "ids_to_mask_byte",
    "mask_bytes_to_ids",
    "ids_to_mask_bytes32",
    # Readings
    "BatteryStatus",
    "SensorReading",
    "ServoFeedback",
    "CommandResult",
    "ErrorReport",
    "battery_percent",
    "raw_to_degrees",
    "degrees_to_raw",
    # LEDs
    "Color",
    "BLACK",
    "EyeSegmentColor",
    "compass_segments",
]
