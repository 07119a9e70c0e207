"""SCPI error queue client.

Drains the instrument error queue with the standard ``SYSTem:ERRor?``
query, one entry per round trip, until the instrument reports the
``0,"No error"`` sentinel. A safety limit guards against instruments that
never report an empty queue.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Protocol

from hwtest_ieee488.codec import scan_string
from hwtest_ieee488.errors import ErrorQueueOverflow, MalformedValue, UnterminatedString

DEFAULT_ERROR_QUERY = "SYST:ERR?"
DEFAULT_DRAIN_LIMIT = 100

# Signed code, then an optional comma and message (quoted or not).
_ERROR_RE = re.compile(r"^\s*([+-]?\d+)\s*(?:,\s*(.*?))?\s*$", re.DOTALL)


class ErrorCategory(Enum):
    """Error/event classes defined by SCPI 1999.0 code ranges."""

    NONE = "none"
    COMMAND = "command"
    EXECUTION = "execution"
    DEVICE = "device"
    QUERY = "query"
    POWER_ON = "power_on"
    USER_REQUEST = "user_request"
    REQUEST_CONTROL = "request_control"
    OPERATION_COMPLETE = "operation_complete"
    DEVICE_DEFINED = "device_defined"


class StandardErrorCode(IntEnum):
    """Standard error/event codes (SCPI 1999.0 21.8)."""

    NO_ERROR = 0
    COMMAND_ERROR = -100
    INVALID_CHARACTER = -101
    SYNTAX_ERROR = -102
    INVALID_SEPARATOR = -103
    DATA_TYPE_ERROR = -104
    GET_NOT_ALLOWED = -105
    PARAMETER_NOT_ALLOWED = -108
    MISSING_PARAMETER = -109
    COMMAND_HEADER_ERROR = -110
    HEADER_SEPARATOR_ERROR = -111
    PROGRAM_MNEMONIC_TOO_LONG = -112
    UNDEFINED_HEADER = -113
    HEADER_SUFFIX_OUT_OF_RANGE = -114
    UNEXPECTED_NUMBER_OF_PARAMETERS = -115
    NUMERIC_DATA_ERROR = -120
    INVALID_CHARACTER_IN_NUMBER = -121
    EXPONENT_TOO_LARGE = -123
    TOO_MANY_DIGITS = -124
    NUMERIC_DATA_NOT_ALLOWED = -128
    SUFFIX_ERROR = -130
    INVALID_SUFFIX = -131
    SUFFIX_TOO_LONG = -134
    SUFFIX_NOT_ALLOWED = -138
    CHARACTER_DATA_ERROR = -140
    INVALID_CHARACTER_DATA = -141
    CHARACTER_DATA_TOO_LONG = -144
    CHARACTER_DATA_NOT_ALLOWED = -148
    STRING_DATA_ERROR = -150
    INVALID_STRING_DATA = -151
    STRING_DATA_NOT_ALLOWED = -158
    BLOCK_DATA_ERROR = -160
    INVALID_BLOCK_DATA = -161
    BLOCK_DATA_NOT_ALLOWED = -168
    EXPRESSION_ERROR = -170
    INVALID_EXPRESSION = -171
    EXPRESSION_DATA_NOT_ALLOWED = -178
    MACRO_ERROR = -180
    EXECUTION_ERROR = -200
    INVALID_WHILE_IN_LOCAL = -201
    SETTINGS_LOST_DUE_TO_RTL = -202
    COMMAND_PROTECTED = -203
    TRIGGER_ERROR = -210
    TRIGGER_IGNORED = -211
    ARM_IGNORED = -212
    INIT_IGNORED = -213
    TRIGGER_DEADLOCK = -214
    ARM_DEADLOCK = -215
    PARAMETER_ERROR = -220
    SETTINGS_CONFLICT = -221
    DATA_OUT_OF_RANGE = -222
    TOO_MUCH_DATA = -223
    ILLEGAL_PARAMETER_VALUE = -224
    OUT_OF_MEMORY_FOR_OPERATION = -225
    LISTS_NOT_SAME_LENGTH = -226
    DATA_CORRUPT_OR_STALE = -230
    DATA_QUESTIONABLE = -231
    INVALID_FORMAT = -232
    INVALID_VERSION = -233
    HARDWARE_ERROR = -240
    HARDWARE_MISSING = -241
    MASS_STORAGE_ERROR = -250
    EXPRESSION_EXECUTION_ERROR = -260
    MACRO_EXECUTION_ERROR = -270
    PROGRAM_ERROR = -280
    MEMORY_USE_ERROR = -290
    DEVICE_SPECIFIC_ERROR = -300
    SYSTEM_ERROR = -310
    MEMORY_ERROR = -311
    STORAGE_FAULT = -320
    DEVICE_OUT_OF_MEMORY = -321
    SELF_TEST_FAILED = -330
    CALIBRATION_FAILED = -340
    QUEUE_OVERFLOW = -350
    COMMUNICATION_ERROR = -360
    PARITY_ERROR_IN_PROGRAM_MESSAGE = -361
    FRAMING_ERROR_IN_PROGRAM_MESSAGE = -362
    INPUT_BUFFER_OVERRUN = -363
    TIME_OUT_ERROR = -365
    QUERY_ERROR = -400
    QUERY_INTERRUPTED = -410
    QUERY_UNTERMINATED = -420
    QUERY_DEADLOCKED = -430
    QUERY_UNTERMINATED_AFTER_INDEFINITE_RESPONSE = -440
    POWER_ON = -500
    USER_REQUEST = -600
    REQUEST_CONTROL = -700
    OPERATION_COMPLETE = -800


_CATEGORY_RANGES: tuple[tuple[int, int, ErrorCategory], ...] = (
    (-199, -100, ErrorCategory.COMMAND),
    (-299, -200, ErrorCategory.EXECUTION),
    (-399, -300, ErrorCategory.DEVICE),
    (-499, -400, ErrorCategory.QUERY),
    (-599, -500, ErrorCategory.POWER_ON),
    (-699, -600, ErrorCategory.USER_REQUEST),
    (-799, -700, ErrorCategory.REQUEST_CONTROL),
    (-899, -800, ErrorCategory.OPERATION_COMPLETE),
)


@dataclass(frozen=True)
class ErrorQueueEntry:
    """Single entry from an instrument's error queue.

    Attributes:
        code: SCPI error code (negative for standard errors, positive for
            device-specific ones, 0 for "no error").
        message: Human-readable error description from the instrument.
    """

    code: int
    message: str

    def __str__(self) -> str:
        """Return SCPI-format error string.

        Returns:
            Error formatted as ``code,"message"``.
        """
        return f'{self.code},"{self.message}"'

    @property
    def is_error(self) -> bool:
        """False only for the "no error" sentinel."""
        return self.code != 0

    @property
    def category(self) -> ErrorCategory:
        """The SCPI error class this code belongs to."""
        if self.code == 0:
            return ErrorCategory.NONE
        for low, high, category in _CATEGORY_RANGES:
            if low <= self.code <= high:
                return category
        return ErrorCategory.DEVICE_DEFINED

    @property
    def standard_code(self) -> StandardErrorCode | None:
        """The matching :class:`StandardErrorCode`, if the code is a standard one."""
        try:
            return StandardErrorCode(self.code)
        except ValueError:
            return None


NO_ERROR = ErrorQueueEntry(code=0, message="No error")


def parse_error_entry(raw: str) -> ErrorQueueEntry:
    """Parse a ``SYST:ERR?`` response into an entry.

    Accepts ``-100,"Command error"``, unquoted messages, a leading ``+``,
    doubled quotes inside the message and a bare code.

    Raises:
        MalformedValue: If the response does not start with an integer code.
    """
    match = _ERROR_RE.match(raw)
    if match is None:
        raise MalformedValue("Invalid error queue response", raw.encode("ascii", "replace"))
    code = int(match.group(1))
    message = (match.group(2) or "").strip()
    if message[:1] in ('"', "'"):
        try:
            message, _ = scan_string(message)
        except UnterminatedString:
            message = message.strip("\"'")
    return ErrorQueueEntry(code=code, message=message.strip())


class SupportsQuery(Protocol):
    """Anything that can run a string query without automatic error checks."""

    def query(self, cmd: str, *, check: bool | None = None) -> str:
        """Send *cmd* and return the unterminated response text."""
        ...


class ErrorQueueClient:
    """Drains the instrument error queue.

    Args:
        limit: Maximum number of queries per drain.
        command: The error query to send.
    """

    def __init__(self, limit: int = DEFAULT_DRAIN_LIMIT, command: str = DEFAULT_ERROR_QUERY) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._limit = limit
        self._command = command

    @property
    def limit(self) -> int:
        """Maximum number of queries per drain."""
        return self._limit

    def iter_entries(self, session: SupportsQuery) -> Iterator[ErrorQueueEntry]:
        """Lazily yield error entries until the "no error" sentinel.

        Each step issues one query. The iterator is not restartable; every
        call reads live queue state.

        Raises:
            ErrorQueueOverflow: If *limit* queries return no sentinel.
        """
        drained: list[ErrorQueueEntry] = []
        for _ in range(self._limit):
            entry = parse_error_entry(session.query(self._command, check=False))
            if not entry.is_error:
                return
            drained.append(entry)
            yield entry
        raise ErrorQueueOverflow(self._limit, tuple(drained))

    def drain(self, session: SupportsQuery) -> tuple[ErrorQueueEntry, ...]:
        """Drain the queue and return every entry in FIFO order.

        Returns:
            The entries; empty if the queue held none.

        Raises:
            ErrorQueueOverflow: If *limit* queries return no sentinel.
        """
        return tuple(self.iter_entries(session))
