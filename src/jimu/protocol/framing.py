"""Frame codec for the JIMU BLE protocol.

Frame layout::

    +-------------+--------+---------+------------+----------+------------+
    | Start mark  | Length | Opcode  | Params     | Checksum | Terminator |
    | 0xFB 0xBF   | 1 byte | 1 byte  | variable   | 1 byte   | 0xED       |
    +-------------+--------+---------+------------+----------+------------+

- Length: ``len(payload) + 4``, which equals the total frame size minus one
- Checksum: ``(length + sum(payload)) & 0xFF``
- Payload: opcode followed by its parameters, never empty
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from ..exceptions import ChecksumError, DecodeError, TerminatorError

START_MARKER: Final = b"\xFB\xBF"
TERMINATOR: Final = 0xED
MIN_FRAME_LENGTH: Final = 5  # marker(2) + length(1) + checksum(1) + terminator(1)
MAX_PAYLOAD_LENGTH: Final = 0xFF - 4


@dataclass(frozen=True)
class DecodedFrame:
    """A validated protocol frame."""

    payload: bytes

    @property
    def opcode(self) -> int:
        return self.payload[0]

    def __repr__(self) -> str:
        return f"DecodedFrame(opcode=0x{self.opcode:02X}, payload={self.payload.hex(' ')})"


def checksum(data: bytes) -> int:
    """Sum of ``data`` modulo 256."""
    return sum(data) & 0xFF


def encode(payload: bytes) -> bytes:
    """Wrap a payload (opcode + params) in a wire frame.

    Args:
        payload: Opcode followed by parameter bytes (1..251 bytes)

    Returns:
        ``[0xFB, 0xBF, len, *payload, checksum, 0xED]``

    Raises:
        ValueError: If the payload is empty or too long for the length byte
    """
    if not payload:
        raise ValueError("Payload must contain at least an opcode byte")
    if len(payload) > MAX_PAYLOAD_LENGTH:
        raise ValueError(f"Payload too long: {len(payload)} bytes (max {MAX_PAYLOAD_LENGTH})")

    length = len(payload) + 4
    body = bytes([length]) + bytes(payload)
    return START_MARKER + body + bytes([checksum(body), TERMINATOR])


def decode(frame: bytes) -> DecodedFrame:
    """Validate one complete frame and extract its payload.

    Args:
        frame: Exactly one frame, starting at the start marker

    Returns:
        DecodedFrame with the payload between length byte and checksum

    Raises:
        TerminatorError: If the last byte is not 0xED
        ChecksumError: If the checksum does not match
        DecodeError: If the frame is too short to carry an opcode
    """
    if len(frame) < MIN_FRAME_LENGTH:
        raise DecodeError(f"Frame too short: {len(frame)} bytes (need at least {MIN_FRAME_LENGTH})")

    if frame[-1] != TERMINATOR:
        raise TerminatorError(
            f"Missing terminator: expected 0x{TERMINATOR:02X}, got 0x{frame[-1]:02X}"
        )

    expected = checksum(frame[2:-2])
    if frame[-2] != expected:
        raise ChecksumError(
            f"Checksum mismatch: expected 0x{expected:02X}, got 0x{frame[-2]:02X}"
        )

    payload = bytes(frame[3:-2])
    if not payload:
        raise DecodeError("Frame carries no opcode")

    return DecodedFrame(payload=payload)
