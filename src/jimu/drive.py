"""Differential drive over continuous-rotation servos."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .models.enums import RotationDirection
from .protocol.commands import MAX_ROTATE_IDS

if TYPE_CHECKING:
    from .device import JimuDevice

_LOGGER = logging.getLogger(__name__)

VELOCITY_SCALE = 10


def _clamp(value: float, low: float = -100, high: float = 100) -> float:
    return max(low, min(high, value))


class WheeledDrive:
    """Tank-style drive: one group of wheel servos per side.

    Usage:
        drive = WheeledDrive(device, left=[1, 2], right=[3, 4])
        await drive.drive(60, 0)     # straight ahead
        await drive.drive(0, 50)     # spin right
        await drive.stop()
    """

    def __init__(
            self,
            device: JimuDevice,
            left: Sequence[int],
            right: Sequence[int],
            invert_left: bool = False,
            invert_right: bool = True,
    ):
        """Initialize drive.

        Args:
            device: Connected brick
            left: Servo IDs on the left side
            right: Servo IDs on the right side
            invert_left: Left servos are mounted reversed (default: False)
            invert_right: Right servos are mounted reversed (default: True)
        """
        self.device = device
        self.left = list(left)
        self.right = list(right)
        self.invert_left = invert_left
        self.invert_right = invert_right

    async def drive(self, speed: float = 0, turn: float = 0) -> None:
        """Mix speed and turn (each -100..100) into per-side wheel commands.

        Positive turn steers right: the left side speeds up and the right
        side slows down.
        """
        forward = _clamp(speed)
        turn = _clamp(turn)
        _LOGGER.debug("Drive speed=%s turn=%s", forward, turn)
        await self._drive_group(self.left, forward + turn, self.invert_left)
        await self._drive_group(self.right, forward - turn, self.invert_right)

    async def stop(self) -> None:
        await self.drive(0, 0)

    async def _drive_group(self, ids: list[int], speed: float, invert: bool) -> None:
        if not ids:
            return
        if invert:
            speed = -speed
        direction = RotationDirection.FORWARD if speed >= 0 else RotationDirection.REVERSE
        velocity = round(abs(speed) * VELOCITY_SCALE)
        for i in range(0, len(ids), MAX_ROTATE_IDS):
            await self.device.rotate_servos(ids[i:i + MAX_ROTATE_IDS], direction, velocity)
