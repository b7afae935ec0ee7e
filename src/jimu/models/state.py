"""Device state owned by the state engine."""

from __future__ import annotations

from dataclasses import dataclass

from .readings import BatteryStatus, CommandResult, ErrorReport
from .status import ModulePresenceMap


@dataclass
class DeviceState:
    """Last known state of a connected brick.

    Mutated only by JimuDevice on frame arrival; reset on disconnect.
    """
    last_status: ModulePresenceMap | None = None
    last_battery: BatteryStatus | None = None
    last_error: ErrorReport | None = None
    last_command_result: CommandResult | None = None
    connected: bool = False

    def reset(self) -> None:
        self.last_status = None
        self.last_battery = None
        self.last_error = None
        self.last_command_result = None
        self.connected = False


@dataclass(frozen=True)
class DeviceInfo:
    """Summary returned after connecting."""

    firmware: str | None
    modules: ModulePresenceMap | None
    battery: BatteryStatus | None
