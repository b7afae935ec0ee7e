"""Typed colors for eye LED (0x78/0x79) and ultrasonic LED commands."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from .enums import EYE_SEGMENT_COMPASS_ORDER, EyeSegment


def _check_u8(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} out of range: {value} (must be 0-255)")


@dataclass(frozen=True, slots=True)
class Color:
    """24-bit RGB color."""

    r: int = 0
    g: int = 0
    b: int = 0

    def __post_init__(self) -> None:
        _check_u8("r", self.r)
        _check_u8("g", self.g)
        _check_u8("b", self.b)

    @classmethod
    def from_hex(cls, value: str) -> Color:
        """Parse ``#RRGGBB`` (leading ``#`` optional)."""
        text = value.strip().lstrip("#")
        if len(text) != 6:
            raise ValueError(f"Invalid color: {value!r} (expected #RRGGBB)")
        raw = int(text, 16)
        return cls((raw >> 16) & 0xFF, (raw >> 8) & 0xFF, raw & 0xFF)

    def to_bytes(self) -> bytes:
        return bytes([self.r, self.g, self.b])


BLACK = Color(0, 0, 0)


@dataclass(frozen=True, slots=True)
class EyeSegmentColor:
    """One color applied to the LED segments selected by ``mask``."""

    color: Color = field(default_factory=Color)
    mask: int = 0x01

    def __post_init__(self) -> None:
        _check_u8("mask", self.mask)

    def to_bytes(self) -> bytes:
        return self.color.to_bytes() + bytes([self.mask])


def compass_segments(colors: Mapping[EyeSegment | str, Color]) -> list[EyeSegmentColor]:
    """Build one entry per compass segment, NE first, missing ones black."""
    by_segment: dict[EyeSegment, Color] = {}
    for key, color in colors.items():
        segment = key if isinstance(key, EyeSegment) else EyeSegment[key.upper()]
        by_segment[segment] = color
    return [
        EyeSegmentColor(color=by_segment.get(segment, BLACK), mask=segment.mask)
        for segment in EYE_SEGMENT_COMPASS_ORDER
    ]
