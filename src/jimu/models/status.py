"""Module presence map decoded from the 0x08 status frame."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final

# Byte offsets into the 0x08 status payload (opcode at offset 0)
FIRMWARE_TEXT_SLICE: Final = slice(1, 12)
SERVO_MASK_OFFSET: Final = 12
SERVO_MASK_LENGTH: Final = 4
IR_OFFSET: Final = 29
EYE_OFFSET: Final = 50
ULTRASONIC_OFFSET: Final = 64
SPEAKER_OFFSET: Final = 78
MOTOR_OFFSET: Final = 120

MAX_SERVO_ID: Final = 32


def mask_byte_to_ids(byte: int) -> list[int]:
    """Convert an 8-slot bitmap to 1-based IDs (bit0 = ID1)."""
    return [bit + 1 for bit in range(8) if byte & (1 << bit)]


def ids_to_mask_byte(ids: Iterable[int]) -> int:
    """Convert IDs 1..8 to an 8-slot bitmap (bit0 = ID1)."""
    mask = 0
    for module_id in ids:
        mask |= 1 << ((module_id - 1) % 8)
    return mask & 0xFF


def mask_bytes_to_ids(mask: bytes) -> list[int]:
    """Convert a most-significant-group-first bitmap to sorted IDs.

    The last byte covers IDs 1-8, the one before it IDs 9-16, and so on.
    """
    ids: list[int] = []
    for idx, byte in enumerate(mask):
        offset = (len(mask) - idx - 1) * 8
        ids.extend(module_id + offset for module_id in mask_byte_to_ids(byte))
    return sorted(ids)


def ids_to_mask_bytes32(ids: Iterable[int]) -> bytes:
    """Convert servo IDs 1..32 to the 4-byte selection mask.

    IDs outside 1..32 are ignored.
    """
    mask = bytearray(SERVO_MASK_LENGTH)
    for servo_id in ids:
        if not 1 <= servo_id <= MAX_SERVO_ID:
            continue
        idx = SERVO_MASK_LENGTH - 1 - (servo_id - 1) // 8
        mask[idx] |= 1 << ((servo_id - 1) % 8)
    return bytes(mask)


@dataclass(frozen=True)
class ModuleMasks:
    """Raw presence bitmaps as reported by the brick."""

    servos: bytes = bytes(SERVO_MASK_LENGTH)
    ir: int = 0
    eyes: int = 0
    ultrasonic: int = 0
    speakers: int = 0
    motors: int = 0


@dataclass(frozen=True)
class ModulePresenceMap:
    """Modules detected by the brick, as 1-based IDs per module type.

    Attributes:
        firmware: Firmware text from bytes 1-11 of the status payload
        servos: Present servo IDs (1-32)
        ir: Present IR sensor IDs (1-8)
        eyes: Present eye LED IDs (1-8)
        ultrasonic: Present ultrasonic sensor IDs (1-8)
        speakers: Present speaker IDs (1-8)
        motors: Present motor IDs (1-8)
        masks: Raw bitmaps the ID lists were decoded from
    """
    firmware: str = ""
    servos: list[int] = field(default_factory=list)
    ir: list[int] = field(default_factory=list)
    eyes: list[int] = field(default_factory=list)
    ultrasonic: list[int] = field(default_factory=list)
    speakers: list[int] = field(default_factory=list)
    motors: list[int] = field(default_factory=list)
    masks: ModuleMasks = field(default_factory=ModuleMasks)

    @classmethod
    def from_payload(cls, payload: bytes) -> ModulePresenceMap:
        """Decode a 0x08 status payload.

        Offsets past the end of a short payload read as zero.
        """
        def byte_at(offset: int) -> int:
            return payload[offset] if offset < len(payload) else 0

        servo_mask = bytes(
            byte_at(SERVO_MASK_OFFSET + i) for i in range(SERVO_MASK_LENGTH)
        )
        masks = ModuleMasks(
            servos=servo_mask,
            ir=byte_at(IR_OFFSET),
            eyes=byte_at(EYE_OFFSET),
            ultrasonic=byte_at(ULTRASONIC_OFFSET),
            speakers=byte_at(SPEAKER_OFFSET),
            motors=byte_at(MOTOR_OFFSET),
        )
        firmware = (
            bytes(payload[FIRMWARE_TEXT_SLICE])
            .decode("ascii", errors="replace")
            .rstrip("\x00")
            .strip()
        )

        return cls(
            firmware=firmware,
            servos=mask_bytes_to_ids(servo_mask),
            ir=mask_byte_to_ids(masks.ir),
            eyes=mask_byte_to_ids(masks.eyes),
            ultrasonic=mask_byte_to_ids(masks.ultrasonic),
            speakers=mask_byte_to_ids(masks.speakers),
            motors=mask_byte_to_ids(masks.motors),
            masks=masks,
        )
