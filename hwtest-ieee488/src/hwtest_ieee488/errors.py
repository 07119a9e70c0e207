"""Exception types for hwtest-ieee488.

This module defines the exception hierarchy raised by the protocol engine.
All exceptions inherit from :class:`Ieee488Error`, allowing callers to catch
every engine error with a single except clause.

Exception hierarchy:
    Ieee488Error (base)
    +-- TransportError: I/O failure at the byte-channel boundary
    |   +-- TransportTimeout: A read did not complete in time
    |   +-- ConnectionLost: The channel went away
    +-- DecodeError: Response or value could not be decoded
    |   +-- MalformedValue
    |       +-- UnterminatedString
    |       +-- TruncatedBlock
    |       +-- MissingTerminator
    +-- BuildError: A command could not be built
    |   +-- InvalidMnemonic
    |   +-- TooManyParameters
    +-- OperationTimeout: Operation-complete wait hit its deadline
    +-- Cancelled: A wait was cancelled by the caller
    +-- ErrorQueueOverflow: Error queue never reported "no error"
    +-- SessionClosed: Session is disconnected
    +-- ScpiCommandError: Instrument reported errors
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hwtest_ieee488.error_queue import ErrorQueueEntry


class Ieee488Error(Exception):
    """Base exception for all hwtest-ieee488 errors."""


# -- Transport ---------------------------------------------------------------


class TransportError(Ieee488Error):
    """Raised when the underlying byte channel fails.

    Not locally recoverable; the session surfaces it immediately.
    """


class TransportTimeout(TransportError):
    """Raised when a transport read does not complete before its timeout.

    Any partially received response is left in the channel, so the session
    marks its buffer unreliable until :meth:`Session.clear` is called.
    """


class ConnectionLost(TransportError):
    """Raised when the transport detects that the channel is gone."""


# -- Decoding ----------------------------------------------------------------


class DecodeError(Ieee488Error):
    """Base class for codec and parser failures.

    Attributes:
        raw: The offending bytes, attached for diagnosis.
    """

    def __init__(self, message: str, raw: bytes = b"") -> None:
        self.raw = raw
        if raw:
            message = f"{message} (raw={raw!r})"
        super().__init__(message)


class MalformedValue(DecodeError):
    """Raised when bytes cannot be decoded as the expected value kind."""


class UnterminatedString(MalformedValue):
    """Raised when a quoted string has no closing quote."""


class TruncatedBlock(MalformedValue):
    """Raised when a block carries fewer payload bytes than its header declares."""


class MissingTerminator(MalformedValue):
    """Raised when a response that required a terminator did not end with one."""


# -- Building ----------------------------------------------------------------


class BuildError(Ieee488Error):
    """Base class for command building failures.

    These are always caught before any bytes are written and indicate a
    caller bug.
    """


class InvalidMnemonic(BuildError):
    """Raised when a path segment is empty or contains a disallowed character."""


class TooManyParameters(BuildError):
    """Raised when a command exceeds the configured parameter limit."""


# -- Synchronization ---------------------------------------------------------


class OperationTimeout(Ieee488Error):
    """Raised when an operation-complete wait reaches its deadline.

    Recoverable: issue :meth:`Session.clear` and retry.

    Attributes:
        timeout: The timeout that elapsed, in seconds.
        sequence: The command sequence number being waited on.
    """

    def __init__(self, timeout: float, sequence: int) -> None:
        self.timeout = timeout
        self.sequence = sequence
        super().__init__(
            f"Operation #{sequence} did not complete within {timeout:g} s"
        )


class Cancelled(Ieee488Error):
    """Raised when a completion wait observes its cancellation signal."""


class ErrorQueueOverflow(Ieee488Error):
    """Raised when the error queue never returns the "no error" sentinel.

    Attributes:
        limit: Number of queries issued before giving up.
        entries: The entries drained before giving up.
    """

    def __init__(self, limit: int, entries: tuple[ErrorQueueEntry, ...]) -> None:
        self.limit = limit
        self.entries = entries
        super().__init__(
            f"Error queue still not empty after {limit} queries; "
            "instrument never returned the 'no error' entry"
        )


class SessionClosed(Ieee488Error):
    """Raised for any operation on a disconnected session."""


class ScpiCommandError(Ieee488Error):
    """Raised when an instrument reports errors after a command or query.

    Raised by :class:`Session` when automatic error checking is enabled and
    the status byte shows pending events after an operation.

    Attributes:
        errors: One or more entries drained from the instrument's error queue.
        response: The decoded query response, if the failing operation was a
            query that produced one.

    Example:
        >>> try:
        ...     session.command("INVALID:COMMAND")
        ... except ScpiCommandError as e:
        ...     for err in e.errors:
        ...         print(f"Error {err.code}: {err.message}")
    """

    def __init__(self, errors: tuple[ErrorQueueEntry, ...], response: Any = None) -> None:
        """Initialize the command error with instrument errors.

        Args:
            errors: Tuple of instrument errors from the error queue.
            response: Response decoded before the errors were detected.
        """
        self.errors = errors
        self.response = response
        messages = "; ".join(str(e) for e in errors)
        super().__init__(f"SCPI instrument error(s): {messages}")
