"""Exceptions raised by the JIMU protocol engine."""

from __future__ import annotations


class JimuError(Exception):
    """Base exception for all JIMU errors."""


class BLEConnectionError(JimuError):
    """Link could not be established, or a required channel is missing."""


class BLETimeoutError(JimuError):
    """Link-level operation (connect, scan) timed out."""


class TransportError(JimuError):
    """Every write channel refused a single send.

    Does not imply the link is down.
    """


class DeviceTimeoutError(JimuError):
    """No frame matched a pending waiter before its deadline."""


class DeviceDisconnectedError(JimuError):
    """Link dropped while a waiter was pending."""


class ProtocolError(JimuError):
    """Wire-level protocol violation."""


class DecodeError(ProtocolError):
    """Frame failed validation."""


class ChecksumError(DecodeError):
    """Checksum byte does not match length byte + payload."""


class TerminatorError(DecodeError):
    """Last byte of the frame is not the 0xED terminator."""


class MalformedLengthError(ProtocolError):
    """Length byte describes a frame shorter than the minimum."""


class InvalidResponseError(ProtocolError):
    """Payload does not have the layout its opcode requires."""
