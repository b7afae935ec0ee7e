"""Frame reassembly from the BLE notification byte stream."""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..exceptions import DecodeError, MalformedLengthError, ProtocolError
from .framing import MIN_FRAME_LENGTH, START_MARKER, DecodedFrame, decode

_LOGGER = logging.getLogger(__name__)


class FrameAssembler:
    """Recovers frames from arbitrarily chunked notification data.

    The device gives no guarantee that one notification carries one frame:
    - A frame may be split across several notifications
    - One notification may carry several frames
    - Noise or a dropped packet may leave garbage in front of a start marker

    Corrupt frames are dropped and reported via ``on_error``; reassembly
    always continues with the remaining buffer.
    """

    def __init__(
            self,
            on_frame: Callable[[DecodedFrame], None] | None = None,
            on_error: Callable[[ProtocolError], None] | None = None,
    ):
        """Initialize frame assembler.

        Args:
            on_frame: Called with every frame that passes validation
            on_error: Called with every non-fatal framing error
        """
        self.on_frame = on_frame
        self.on_error = on_error
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[DecodedFrame]:
        """Append a chunk and extract every complete frame.

        Args:
            data: Raw bytes from one notification

        Returns:
            Frames completed by this chunk, in arrival order
        """
        frames: list[DecodedFrame] = []
        if not data:
            return frames
        self._buffer.extend(data)

        while len(self._buffer) >= 4:
            start = self._buffer.find(START_MARKER)
            if start == -1:
                # Keep a trailing first marker byte; its partner may be in the next chunk
                keep = 1 if self._buffer[-1] == START_MARKER[0] else 0
                _LOGGER.debug("No start marker in %d buffered bytes, discarding", len(self._buffer) - keep)
                del self._buffer[:len(self._buffer) - keep]
                break
            if start > 0:
                _LOGGER.debug("Resync: skipping %d bytes before start marker", start)
                del self._buffer[:start]
            if len(self._buffer) < 3:
                break

            length_byte = self._buffer[2]
            total_length = length_byte + 1
            if total_length < MIN_FRAME_LENGTH:
                del self._buffer[:2]
                self._report(MalformedLengthError(f"Frame too short (len=0x{length_byte:02X})"))
                continue
            if len(self._buffer) < total_length:
                break

            candidate = bytes(self._buffer[:total_length])
            del self._buffer[:total_length]

            try:
                frame = decode(candidate)
            except DecodeError as e:
                self._report(e)
                continue

            frames.append(frame)
            if self.on_frame is not None:
                self.on_frame(frame)

        return frames

    def reset(self) -> None:
        """Drop any partially received data."""
        self._buffer.clear()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of a frame."""
        return len(self._buffer)

    def _report(self, error: ProtocolError) -> None:
        _LOGGER.debug("Framing error: %s", error)
        if self.on_error is not None:
            self.on_error(error)
