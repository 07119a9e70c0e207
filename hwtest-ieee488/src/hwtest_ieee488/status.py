"""IEEE 488.2 status reporting model.

Pure bit-field transforms for the Status Byte register and the Standard
Event Status Register, and helpers for composing enable masks. The session
decides when registers are read; this module only defines what their bits
mean.

Status Byte (IEEE 488.2 11.2, SCPI 1999.0 9.1):
    bit 7  OPER  Operation status summary (SCPI)
    bit 6  RQS   Request service / master summary status
    bit 5  ESB   Event status bit
    bit 4  MAV   Message available
    bit 3  QUES  Questionable status summary (SCPI)
    bit 2  EAV   Error/event queue not empty (SCPI)
    bit 1,0      Device defined

Standard Event Status Register (IEEE 488.2 11.5.1):
    bit 7 PON, 6 URQ, 5 CME, 4 EXE, 3 DDE, 2 QYE, 1 RQC, 0 OPC
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntFlag


class StatusBit(IntFlag):
    """Status Byte register bits."""

    DEVICE_0 = 0x01
    DEVICE_1 = 0x02
    ERROR_QUEUE = 0x04
    QUESTIONABLE = 0x08
    MESSAGE_AVAILABLE = 0x10
    EVENT_STATUS = 0x20
    REQUEST_SERVICE = 0x40
    OPERATION = 0x80


class EventStatusBit(IntFlag):
    """Standard Event Status Register bits."""

    OPERATION_COMPLETE = 0x01
    REQUEST_CONTROL = 0x02
    QUERY_ERROR = 0x04
    DEVICE_ERROR = 0x08
    EXECUTION_ERROR = 0x10
    COMMAND_ERROR = 0x20
    USER_REQUEST = 0x40
    POWER_ON = 0x80


ERROR_EVENTS = (
    EventStatusBit.QUERY_ERROR
    | EventStatusBit.DEVICE_ERROR
    | EventStatusBit.EXECUTION_ERROR
    | EventStatusBit.COMMAND_ERROR
)
"""Event bits that indicate an entry was added to the error queue."""

DEVICE_DEFINED_MASK = StatusBit.DEVICE_0 | StatusBit.DEVICE_1


def _check_byte(raw: int, name: str) -> None:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise TypeError(f"{name} must be an int, got {type(raw).__name__}")
    if not 0 <= raw <= 0xFF:
        raise ValueError(f"{name} must be in 0..255, got {raw}")


@dataclass(frozen=True)
class StatusByte:
    """Decoded Status Byte.

    Attributes:
        raw: The register value as read.
    """

    raw: int

    def __post_init__(self) -> None:
        _check_byte(self.raw, "Status byte")

    def _bit(self, bit: StatusBit) -> bool:
        return bool(self.raw & bit)

    @property
    def error_queue_available(self) -> bool:
        """Bit 2: the SCPI error/event queue is not empty."""
        return self._bit(StatusBit.ERROR_QUEUE)

    @property
    def questionable(self) -> bool:
        """Bit 3: questionable status summary."""
        return self._bit(StatusBit.QUESTIONABLE)

    @property
    def message_available(self) -> bool:
        """Bit 4: a response is waiting in the output queue."""
        return self._bit(StatusBit.MESSAGE_AVAILABLE)

    @property
    def event_status(self) -> bool:
        """Bit 5: an enabled Standard Event Status bit is set."""
        return self._bit(StatusBit.EVENT_STATUS)

    @property
    def request_service(self) -> bool:
        """Bit 6: the device is requesting service."""
        return self._bit(StatusBit.REQUEST_SERVICE)

    @property
    def operation(self) -> bool:
        """Bit 7: operation status summary."""
        return self._bit(StatusBit.OPERATION)

    @property
    def device_bits(self) -> int:
        """Bits 0 and 1, which are device defined."""
        return int(self.raw) & int(DEVICE_DEFINED_MASK)

    @property
    def flags(self) -> StatusBit:
        """The register as a flag set."""
        return StatusBit(self.raw)

    @property
    def needs_error_check(self) -> bool:
        """True if the error queue should be drained."""
        return self.event_status or self.error_queue_available


@dataclass(frozen=True)
class EventStatus:
    """Decoded Standard Event Status Register.

    Attributes:
        raw: The register value as read.
    """

    raw: int

    def __post_init__(self) -> None:
        _check_byte(self.raw, "Event status register")

    def _bit(self, bit: EventStatusBit) -> bool:
        return bool(self.raw & bit)

    @property
    def operation_complete(self) -> bool:
        """Bit 0: all pending operations finished after ``*OPC``."""
        return self._bit(EventStatusBit.OPERATION_COMPLETE)

    @property
    def request_control(self) -> bool:
        """Bit 1: the device requests bus control."""
        return self._bit(EventStatusBit.REQUEST_CONTROL)

    @property
    def query_error(self) -> bool:
        """Bit 2: query error."""
        return self._bit(EventStatusBit.QUERY_ERROR)

    @property
    def device_error(self) -> bool:
        """Bit 3: device-specific error."""
        return self._bit(EventStatusBit.DEVICE_ERROR)

    @property
    def execution_error(self) -> bool:
        """Bit 4: execution error."""
        return self._bit(EventStatusBit.EXECUTION_ERROR)

    @property
    def command_error(self) -> bool:
        """Bit 5: command error."""
        return self._bit(EventStatusBit.COMMAND_ERROR)

    @property
    def user_request(self) -> bool:
        """Bit 6: user request."""
        return self._bit(EventStatusBit.USER_REQUEST)

    @property
    def power_on(self) -> bool:
        """Bit 7: power on."""
        return self._bit(EventStatusBit.POWER_ON)

    @property
    def has_errors(self) -> bool:
        """True if any of the error bits is set."""
        return bool(self.raw & ERROR_EVENTS)

    @property
    def flags(self) -> EventStatusBit:
        """The register as a flag set."""
        return EventStatusBit(self.raw)


def decode_status_byte(raw: int) -> StatusByte:
    """Decode a Status Byte value.

    Raises:
        ValueError: If *raw* is outside 0..255.
    """
    return StatusByte(raw)


def decode_event_status(raw: int) -> EventStatus:
    """Decode a Standard Event Status Register value.

    Raises:
        ValueError: If *raw* is outside 0..255.
    """
    return EventStatus(raw)


def compose_enable_mask(flags: Iterable[int] | int) -> int:
    """Combine status flags into an 8-bit enable mask.

    Args:
        flags: A single flag value (e.g. ``StatusBit.MESSAGE_AVAILABLE |
            StatusBit.EVENT_STATUS``) or an iterable of flags.

    Returns:
        The mask as a plain int.

    Raises:
        ValueError: If the combined mask does not fit in eight bits.
    """
    if isinstance(flags, int):
        mask = int(flags)
    else:
        mask = 0
        for flag in flags:
            mask |= int(flag)
    _check_byte(mask, "Enable mask")
    return mask


def service_request_mask(flags: Iterable[int] | int) -> int:
    """Compose a ``*SRE`` mask; bit 6 is ignored by the standard and cleared."""
    return compose_enable_mask(flags) & ~int(StatusBit.REQUEST_SERVICE) & 0xFF
