"""JIMU BLE Protocol Package.

  Pure Python package for communicating with UBTECH JIMU robot bricks over BLE.
  """

from .correlator import CommandCorrelator, PendingCommand, Waiter, opcode_is
from .device import JimuDevice
from .discovery import DiscoveredDevice, discover_devices
from .drive import WheeledDrive
from .events import EventBus
from .exceptions import (
    BLEConnectionError,
    BLETimeoutError,
    ChecksumError,
    DecodeError,
    DeviceDisconnectedError,
    DeviceTimeoutError,
    InvalidResponseError,
    JimuError,
    MalformedLengthError,
    ProtocolError,
    TerminatorError,
    TransportError,
)
from .models import (
    BLACK,
    BatteryStatus,
    Color,
    CommandResult,
    DeviceInfo,
    DeviceState,
    ErrorReport,
    Event,
    EventType,
    EyeSegment,
    EyeSegmentColor,
    ModuleMasks,
    ModulePresenceMap,
    ModuleType,
    RotationDirection,
    SensorKind,
    SensorReading,
    ServoFeedback,
    battery_percent,
)
from .protocol import DecodedFrame, FrameAssembler, decode, encode

__version__ = "0.1.0"

__all__ = [
    # Main API
    "JimuDevice",
    "WheeledDrive",
    "discover_devices",
    "DiscoveredDevice",
    "EventBus",
    "CommandCorrelator",
    "PendingCommand",
    "Waiter",
    "opcode_is",
    # Exceptions
    "JimuError",
    "BLEConnectionError",
    "BLETimeoutError",
    "TransportError",
    "DeviceTimeoutError",
    "DeviceDisconnectedError",
    "ProtocolError",
    "DecodeError",
    "ChecksumError",
    "TerminatorError",
    "MalformedLengthError",
    "InvalidResponseError",
    # Models
    "ModulePresenceMap",
    "ModuleMasks",
    "BatteryStatus",
    "SensorReading",
    "ServoFeedback",
    "CommandResult",
    "ErrorReport",
    "DeviceState",
    "DeviceInfo",
    "Event",
    "Color",
    "BLACK",
    "EyeSegmentColor",
    # Enums
    "EventType",
    "ModuleType",
    "SensorKind",
    "RotationDirection",
    "EyeSegment",
    # Utilities
    "battery_percent",
    "encode",
    "decode",
    "FrameAssembler",
    "DecodedFrame",
]
