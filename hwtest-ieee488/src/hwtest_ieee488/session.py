"""IEEE 488.2 session controller with automatic error checking.

This module provides the :class:`Session` class, the only component that
touches the byte transport. It sequences every exchange with the instrument,
tracks the status snapshot, synchronizes with ``*OPC``/``*OPC?`` and drains
the SCPI error queue automatically when the Status Byte reports pending
events.

Two API levels are provided:

- structured: :meth:`Session.send_command` / :meth:`Session.send_query` take
  :class:`~hwtest_ieee488.builder.Command` objects and return typed
  :mod:`~hwtest_ieee488.codec` values
- text: :meth:`Session.command` / :meth:`Session.query` and the typed
  ``query_*`` variants take SCPI strings

Typical usage::

    from hwtest_ieee488 import Command, Session, VisaTransport

    transport = VisaTransport("TCPIP::192.168.1.100::INSTR")
    transport.open()
    with Session(transport) as session:
        print(session.identify())
        session.send_command(Command.set("VOLT", 5.0))
        session.wait_operation_complete(timeout=2.0)
        voltage = session.query_number("MEAS:VOLT?")
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from enum import Enum
from typing import Any, Protocol

from hwtest_ieee488 import common
from hwtest_ieee488.builder import Command, CommandBuilder
from hwtest_ieee488.codec import ArbitraryBlock, String, ValueKind, decode_arbitrary_ascii, encode
from hwtest_ieee488.common import InstrumentIdentity, parse_idn_response
from hwtest_ieee488.config import CompletionMethod, SessionConfig
from hwtest_ieee488.error_queue import ErrorQueueClient, ErrorQueueEntry
from hwtest_ieee488.errors import (
    Cancelled,
    ConnectionLost,
    MalformedValue,
    OperationTimeout,
    ScpiCommandError,
    SessionClosed,
    TransportError,
    TransportTimeout,
    TruncatedBlock,
)
from hwtest_ieee488.number import format_bool, parse_bool, parse_int, parse_number, parse_numbers
from hwtest_ieee488.parser import ResponseParser, ResponseValue, Shape
from hwtest_ieee488.status import (
    ERROR_EVENTS,
    EventStatus,
    EventStatusBit,
    StatusByte,
    compose_enable_mask,
    decode_event_status,
    decode_status_byte,
    service_request_mask,
)
from hwtest_ieee488.transport import (
    ByteTransport,
    SupportsDeviceClear,
    SupportsDiscardInput,
    SupportsReadTimeout,
    SupportsSerialPoll,
)

logger = logging.getLogger(__name__)

# Shortest transport read timeout used while waiting for an *OPC? response.
_MIN_READ_TIMEOUT = 0.001

# Entries reported when ESR flags errors but the instrument has no SCPI queue.
_EVENT_ERRORS: tuple[tuple[EventStatusBit, ErrorQueueEntry], ...] = (
    (EventStatusBit.COMMAND_ERROR, ErrorQueueEntry(-100, "Command error")),
    (EventStatusBit.EXECUTION_ERROR, ErrorQueueEntry(-200, "Execution error")),
    (EventStatusBit.DEVICE_ERROR, ErrorQueueEntry(-300, "Device-specific error")),
    (EventStatusBit.QUERY_ERROR, ErrorQueueEntry(-400, "Query error")),
)


class SessionState(Enum):
    """Session lifecycle states."""

    DISCONNECTED = "disconnected"
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    AWAITING_COMPLETION = "awaiting_completion"


class CancelSignal(Protocol):
    """Cooperative cancellation signal, e.g. :class:`threading.Event`."""

    def is_set(self) -> bool:
        """Return True once cancellation has been requested."""
        ...


def _response_terminators(read_terminator: str) -> tuple[str, ...]:
    if read_terminator == "\n":
        return ("\r\n", "\n")
    return (read_terminator,)


class Session:
    """Controller-side IEEE 488.2 session over a byte transport.

    The session serializes all calls with a re-entrant lock, so one session
    may be shared between threads; only one exchange is ever in flight.

    After every command and query (unless disabled), the session reads the
    Status Byte. If the Event Status Bit or the SCPI error-queue bit is set,
    it reads ``*ESR?`` and drains ``SYST:ERR?``, raising
    :class:`ScpiCommandError` when the instrument reported errors.

    A transport read timeout leaves the response stream in an unknown state.
    The session then refuses further I/O with :class:`TransportError` until
    :meth:`clear` is called.

    Args:
        transport: An open transport implementing :class:`ByteTransport`.
        config: Session configuration. Defaults to :class:`SessionConfig`.
        clock: Monotonic clock used for completion deadlines.
        sleep: Sleep function used between completion polls.

    Example:
        >>> session = Session(transport)
        >>> session.reset()
        >>> session.wait_operation_complete()
        >>> session.query_number("MEAS:VOLT:DC?")
        4.998
    """

    def __init__(
        self,
        transport: ByteTransport,
        config: SessionConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transport = transport
        self._config = config if config is not None else SessionConfig()
        self._clock = clock
        self._sleep = sleep
        self._builder = CommandBuilder(
            self._config.write_terminator,
            form=self._config.mnemonic_form,
            max_parameters=self._config.max_parameters,
        )
        self._parser = ResponseParser(
            _response_terminators(self._config.read_terminator),
            ieee_sentinels=self._config.ieee_sentinels,
        )
        self._error_queue = ErrorQueueClient(limit=self._config.error_queue_limit)
        self._write_terminator = self._config.write_terminator.encode("ascii")
        self._read_terminator = self._config.read_terminator.encode("ascii")
        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._sequence = 0
        self._last_status: StatusByte | None = None
        self._event_status_enable: int | None = None
        self._service_request_enable: int | None = None
        self._latched_events = 0
        self._unreliable = False
        logger.info("Session opened on %s", type(transport).__name__)

    # -- Properties ----------------------------------------------------------

    @property
    def config(self) -> SessionConfig:
        """The session configuration."""
        return self._config

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Return True unless the session is disconnected."""
        return self._state is not SessionState.DISCONNECTED

    @property
    def sequence(self) -> int:
        """Number of program messages written so far."""
        return self._sequence

    @property
    def last_status(self) -> StatusByte | None:
        """The most recently read Status Byte, if any."""
        return self._last_status

    @property
    def event_status_enable(self) -> int | None:
        """The last ``*ESE`` mask written by this session."""
        return self._event_status_enable

    @property
    def service_request_enable(self) -> int | None:
        """The last ``*SRE`` mask written by this session."""
        return self._service_request_enable

    @property
    def buffer_unreliable(self) -> bool:
        """True after a read timeout, until :meth:`clear` is called."""
        return self._unreliable

    # -- Structured operations -----------------------------------------------

    def send_command(self, command: Command | Sequence[Command], *, check: bool | None = None) -> None:
        """Encode and write one command, or several chained with ``;``.

        Args:
            command: A set command or a sequence of them.
            check: Override the configured error check setting.

        Raises:
            ValueError: If a query is passed; use :meth:`send_query`.
            InvalidMnemonic: If a path is malformed (nothing is written).
            TooManyParameters: If a parameter limit is exceeded (nothing is
                written).
            TransportError: If the write fails.
            ScpiCommandError: If the instrument reports errors.
        """
        commands = [command] if isinstance(command, Command) else list(command)
        if any(c.is_query for c in commands):
            raise ValueError("send_command() does not accept queries; use send_query()")
        data = self._builder.build_message(commands)
        with self._lock:
            self._write(data)
            self._check(check)

    def send_query(
        self,
        command: Command,
        shape: Shape = Shape.SCALAR,
        kind: ValueKind = ValueKind.ANY,
        *,
        check: bool | None = None,
    ) -> ResponseValue:
        """Write a query and read its typed response.

        Args:
            command: The query command.
            shape: Expected response shape.
            kind: Decoding hint for each element.
            check: Override the configured error check setting.

        Returns:
            The parsed response value.

        Raises:
            ValueError: If *command* is not a query.
            TransportError: On I/O failure.
            MalformedValue: If the response cannot be decoded.
            TruncatedBlock: If a block response is short.
            ScpiCommandError: If the instrument reports errors; the parsed
                response is attached.
        """
        if not command.is_query:
            raise ValueError("send_query() requires a query command")
        data = self._builder.build_message([command])
        with self._lock:
            raw = self._exchange(data, shape)
            value = self._parser.parse(raw, shape, kind)
            self._check(check, value)
            return value

    def read_status_byte(self) -> StatusByte:
        """Read the Status Byte and update :attr:`last_status`.

        Uses a hardware serial poll when the transport supports one and the
        configuration allows it; otherwise queries ``*STB?``.

        Returns:
            The decoded Status Byte.
        """
        with self._lock:
            if self._can_serial_poll():
                status = self._serial_poll()
            else:
                status = decode_status_byte(parse_int(self.query(common.STB_QUERY, check=False)))
            self._last_status = status
            return status

    def wait_operation_complete(
        self,
        timeout: float | None = None,
        *,
        poll_interval: float | None = None,
        cancel: CancelSignal | None = None,
        method: CompletionMethod | None = None,
    ) -> None:
        """Block until all pending instrument operations have completed.

        With :attr:`CompletionMethod.POLL` the session sends ``*OPC`` and
        polls ``*ESR?`` until the OPC bit is set. With
        :attr:`CompletionMethod.QUERY` it sends ``*OPC?``; if the transport
        supports serial polls it polls the MAV bit before reading the
        response. Otherwise it retries the read every *poll_interval* until
        the deadline, shortening the transport read timeout to the time
        left when the transport allows it.

        Args:
            timeout: Deadline in seconds from now. Defaults to
                :attr:`SessionConfig.timeout`.
            poll_interval: Seconds between polls. Defaults to
                :attr:`SessionConfig.poll_interval`.
            cancel: Checked before every poll; once set the wait stops.
            method: Completion strategy. Defaults to
                :attr:`SessionConfig.completion_method`.

        Raises:
            OperationTimeout: If the deadline is reached first.
            Cancelled: If *cancel* is set.
            ScpiCommandError: If the instrument reports errors.
        """
        timeout = self._config.timeout if timeout is None else timeout
        interval = self._config.poll_interval if poll_interval is None else poll_interval
        method = self._config.completion_method if method is None else method
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        if interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {interval}")

        with self._lock:
            self._ensure_usable()
            _raise_if_cancelled(cancel)
            deadline = self._clock() + timeout
            with self._in_state(SessionState.AWAITING_COMPLETION):
                if method is CompletionMethod.POLL:
                    self._complete_by_event_poll(deadline, timeout, interval, cancel)
                else:
                    self._complete_by_query(deadline, timeout, interval, cancel)
            self._check(None)

    def check_errors(self) -> tuple[ErrorQueueEntry, ...]:
        """Drain the instrument error queue.

        Repeatedly queries ``SYST:ERR?`` until the instrument returns the
        ``0,"No error"`` entry.

        Returns:
            Every queued entry in FIFO order; empty if there were none.

        Raises:
            ErrorQueueOverflow: If the drain limit is reached.
        """
        with self._lock:
            return self._error_queue.drain(self)

    def reset(self) -> None:
        """Send a reset command (``*RST``).

        Resets the instrument to its power-on default state. The cached
        Status Byte and any error events latched while waiting for
        completion are dropped.
        """
        with self._lock:
            logger.info("Resetting instrument")
            self._write(common.RST.encode("ascii") + self._write_terminator)
            self._last_status = None
            self._latched_events = 0
            self._check(None)

    def clear(self) -> None:
        """Clear the device and the session's unreliable-buffer state.

        Sends the bus device clear when the transport supports it, otherwise
        ``*CLS``. Input the transport received but nobody read, such as a
        response that arrived after a timeout, is discarded when the
        transport supports it. Allowed while the buffer is unreliable.
        """
        with self._lock:
            self._ensure_open()
            if isinstance(self._transport, SupportsDeviceClear):
                logger.info("Sending device clear")
                self._io(self._transport.device_clear)
                self._discard_input()
            else:
                logger.info("Transport has no device clear; sending %s", common.CLS)
                self._discard_input()
                self._io(self._transport.write, common.CLS.encode("ascii") + self._write_terminator)
                self._sequence += 1
            self._unreliable = False
            self._latched_events = 0
            self._last_status = None

    def identify(self) -> str:
        """Query the instrument identification string (``*IDN?``).

        Returns:
            Raw identification string in the format:
            ``manufacturer,model,serial,firmware``.
        """
        return self.query(common.IDN_QUERY)

    # -- Text operations -----------------------------------------------------

    def command(self, cmd: str, *, check: bool | None = None) -> None:
        """Send a command string (no response expected).

        Args:
            cmd: The command text without terminator (e.g. ``"CONF:VOLT:DC 10"``).
            check: Override the configured error check setting.

        Raises:
            ScpiCommandError: If the instrument reports errors.
        """
        with self._lock:
            self._write(cmd.encode("ascii") + self._write_terminator)
            self._check(check)

    def query(self, cmd: str, *, check: bool | None = None) -> str:
        """Send a query string and return the response text.

        Args:
            cmd: The query text without terminator (e.g. ``"MEAS:VOLT:DC?"``).
            check: Override the configured error check setting.

        Returns:
            The response with its terminator and surrounding whitespace removed.

        Raises:
            ScpiCommandError: If the instrument reports errors.
        """
        with self._lock:
            raw = self._exchange(cmd.encode("ascii") + self._write_terminator, Shape.SCALAR)
            response = self._parser.strip_terminator(raw).decode("ascii", "replace").strip()
            self._check(check, response)
            return response

    def query_number(self, cmd: str, *, check: bool | None = None) -> float:
        """Query and parse the response as a SCPI number.

        Raises:
            ValueError: If the response cannot be parsed as a number.
            ScpiCommandError: If the instrument reports errors.
        """
        return parse_number(self.query(cmd, check=check), ieee_sentinels=self._config.ieee_sentinels)

    def query_numbers(self, cmd: str, *, check: bool | None = None) -> tuple[float, ...]:
        """Query and parse the response as a comma-separated list of numbers.

        Raises:
            ValueError: If any element cannot be parsed as a number.
            ScpiCommandError: If the instrument reports errors.
        """
        return parse_numbers(self.query(cmd, check=check), ieee_sentinels=self._config.ieee_sentinels)

    def query_int(self, cmd: str, *, check: bool | None = None) -> int:
        """Query and parse the response as an integer.

        Raises:
            ValueError: If the response is not a valid integer.
            ScpiCommandError: If the instrument reports errors.
        """
        return parse_int(self.query(cmd, check=check))

    def query_bool(self, cmd: str, *, check: bool | None = None) -> bool:
        """Query and parse the response as a boolean.

        Raises:
            ValueError: If the response is not a recognized boolean token.
            ScpiCommandError: If the instrument reports errors.
        """
        return parse_bool(self.query(cmd, check=check))

    def query_ascii(self, cmd: str, *, check: bool | None = None) -> str:
        """Query a response of arbitrary ASCII data (e.g. ``"*OPT?"``).

        The text runs to the terminator and is returned as sent; commas and
        surrounding whitespace are kept.

        Raises:
            MalformedValue: If the response is not ASCII.
            ScpiCommandError: If the instrument reports errors.
        """
        with self._lock:
            raw = self._exchange(cmd.encode("ascii") + self._write_terminator, Shape.ASCII)
            text = decode_arbitrary_ascii(self._parser.strip_terminator(raw)).value
            self._check(check, text)
            return text

    def query_block(self, cmd: str, *, check: bool | None = None) -> bytes:
        """Query a binary block response (e.g. ``"CURV?"``).

        Returns:
            The block payload.

        Raises:
            TruncatedBlock: If fewer payload bytes arrive than declared.
            ScpiCommandError: If the instrument reports errors.
        """
        with self._lock:
            raw = self._exchange(cmd.encode("ascii") + self._write_terminator, Shape.BLOCK)
            block = self._parser.parse_block(raw)
            self._check(check, block)
            return block.data

    # -- IEEE 488.2 / SCPI convenience methods -------------------------------

    def initialize(self) -> None:
        """Clear status and write the configured ``*ESE`` and ``*SRE`` masks."""
        with self._lock:
            self.clear_status()
            self.set_event_status_enable(self._config.event_status_enable)
            self.set_service_request_enable(self._config.service_request_enable)
            logger.info(
                "Session initialized (ESE=0x%02X, SRE=0x%02X)",
                self._config.event_status_enable,
                self._config.service_request_enable,
            )

    def get_identity(self) -> InstrumentIdentity:
        """Query and parse the instrument identification (``*IDN?``)."""
        return parse_idn_response(self.identify())

    def clear_status(self) -> None:
        """Clear the status registers and error queue (``*CLS``)."""
        with self._lock:
            self.command(common.CLS)
            self._latched_events = 0

    def self_test(self) -> int:
        """Run the instrument self-test (``*TST?``).

        Returns:
            The self-test result; 0 means passed.
        """
        return self.query_int(common.TST_QUERY)

    def wait(self) -> None:
        """Send ``*WAI`` so later commands run after pending operations."""
        self.command(common.WAI)

    def read_event_status(self) -> EventStatus:
        """Read and clear the Standard Event Status Register (``*ESR?``)."""
        return decode_event_status(parse_int(self.query(common.ESR_QUERY, check=False)))

    def set_event_status_enable(self, mask: Any) -> None:
        """Write the Standard Event Status Enable mask (``*ESE``).

        Args:
            mask: An int, an :class:`EventStatusBit` combination or an
                iterable of flags.
        """
        value = compose_enable_mask(mask)
        with self._lock:
            self.command(f"{common.ESE} {value}")
            self._event_status_enable = value

    def get_event_status_enable(self) -> int:
        """Read the Standard Event Status Enable mask (``*ESE?``)."""
        return self.query_int(common.ESE_QUERY)

    def set_service_request_enable(self, mask: Any) -> None:
        """Write the Service Request Enable mask (``*SRE``); bit 6 is ignored."""
        value = service_request_mask(mask)
        with self._lock:
            self.command(f"{common.SRE} {value}")
            self._service_request_enable = value

    def get_service_request_enable(self) -> int:
        """Read the Service Request Enable mask (``*SRE?``)."""
        return self.query_int(common.SRE_QUERY)

    def system_version(self) -> str:
        """Query the SCPI version the instrument complies with (``SYST:VERS?``)."""
        return self.query(common.SYSTEM_VERSION_QUERY)

    def read_operation_status(self) -> int:
        """Read the Operation Status event register (``STAT:OPER?``)."""
        return self.query_int(common.STATUS_OPERATION_QUERY)

    def read_questionable_status(self) -> int:
        """Read the Questionable Status event register (``STAT:QUES?``)."""
        return self.query_int(common.STATUS_QUESTIONABLE_QUERY)

    def preset_status(self) -> None:
        """Preset the SCPI status enable registers (``STAT:PRES``)."""
        self.command(common.STATUS_PRESET)

    def read_operation_condition(self) -> int:
        """Read the Operation Status condition register (``STAT:OPER:COND?``)."""
        return self.query_int(common.STATUS_OPERATION_CONDITION_QUERY)

    def set_operation_enable(self, mask: int) -> None:
        """Write the Operation Status enable register (``STAT:OPER:ENAB``)."""
        self.command(f"{common.STATUS_OPERATION_ENABLE} {_register_mask(mask)}")

    def get_operation_enable(self) -> int:
        """Read the Operation Status enable register (``STAT:OPER:ENAB?``)."""
        return self.query_int(common.STATUS_OPERATION_ENABLE_QUERY)

    def read_questionable_condition(self) -> int:
        """Read the Questionable Status condition register (``STAT:QUES:COND?``)."""
        return self.query_int(common.STATUS_QUESTIONABLE_CONDITION_QUERY)

    def set_questionable_enable(self, mask: int) -> None:
        """Write the Questionable Status enable register (``STAT:QUES:ENAB``)."""
        self.command(f"{common.STATUS_QUESTIONABLE_ENABLE} {_register_mask(mask)}")

    def get_questionable_enable(self) -> int:
        """Read the Questionable Status enable register (``STAT:QUES:ENAB?``)."""
        return self.query_int(common.STATUS_QUESTIONABLE_ENABLE_QUERY)

    # -- Optional IEEE 488.2 common commands ---------------------------------

    def get_options(self) -> tuple[str, ...]:
        """Query the installed options (``*OPT?``).

        Returns:
            One entry per reported option; empty when the instrument reports
            ``0`` (no options).
        """
        fields = tuple(field.strip() for field in self.query_ascii(common.OPT_QUERY).split(","))
        return () if fields == ("0",) else fields

    def trigger(self) -> None:
        """Send the bus trigger command (``*TRG``)."""
        self.command(common.TRG)

    def save(self, slot: int) -> None:
        """Save the current settings to a setup register (``*SAV``)."""
        self.command(f"{common.SAV} {_slot(slot)}")

    def recall(self, slot: int) -> None:
        """Restore settings from a setup register (``*RCL``)."""
        self.command(f"{common.RCL} {_slot(slot)}")

    def save_default_settings(self, slot: int) -> None:
        """Store the default settings in a setup register (``*SDS``)."""
        self.command(f"{common.SDS} {_slot(slot)}")

    def set_power_on_status_clear(self, enabled: bool) -> None:
        """Choose whether enable masks are cleared at power-on (``*PSC``)."""
        self.command(f"{common.PSC} {format_bool(enabled)}")

    def get_power_on_status_clear(self) -> bool:
        """Read the power-on status clear flag (``*PSC?``)."""
        return self.query_bool(common.PSC_QUERY)

    def set_parallel_poll_enable(self, mask: int) -> None:
        """Write the Parallel Poll Enable register (``*PRE``)."""
        self.command(f"{common.PRE} {_register_mask(mask)}")

    def get_parallel_poll_enable(self) -> int:
        """Read the Parallel Poll Enable register (``*PRE?``)."""
        return self.query_int(common.PRE_QUERY)

    def individual_status(self) -> bool:
        """Read the ``ist`` message a parallel poll would report (``*IST?``)."""
        return self.query_bool(common.IST_QUERY)

    def calibrate(self) -> int:
        """Run the internal calibration (``*CAL?``).

        Returns:
            The calibration result; 0 means passed.
        """
        return self.query_int(common.CAL_QUERY)

    def set_protected_user_data(self, data: bytes) -> None:
        """Write the protected user data area (``*PUD``) as a block."""
        self.send_command(Command.set(common.PUD, ArbitraryBlock(bytes(data))))

    def get_protected_user_data(self) -> bytes:
        """Read the protected user data area (``*PUD?``)."""
        return self.query_block(common.PUD_QUERY)

    # -- Macros ---------------------------------------------------------------

    def define_macro(self, label: str, body: str | bytes) -> None:
        """Define a macro (``*DMC``).

        Args:
            label: Macro label, a command header such as ``"SETUP"`` or
                ``"READ?"``.
            body: Program message text the label expands to; ``$1`` to
                ``$9`` stand for the parameters given with the label.
        """
        data = body.encode("ascii") if isinstance(body, str) else bytes(body)
        self.send_command(Command.set(common.DMC, String(label), ArbitraryBlock(data)))

    def enable_macros(self, enabled: bool = True) -> None:
        """Turn macro expansion on or off (``*EMC``)."""
        self.command(f"{common.EMC} {format_bool(enabled)}")

    def macros_enabled(self) -> bool:
        """Return True if macro expansion is on (``*EMC?``)."""
        return self.query_bool(common.EMC_QUERY)

    def get_macro(self, label: str) -> bytes:
        """Return the body of a defined macro (``*GMC?``)."""
        label_data = encode(String(label)).decode("ascii")
        return self.query_block(f"{common.GMC_QUERY} {label_data}")

    def list_macros(self) -> tuple[str, ...]:
        """Return the labels of all defined macros (``*LMC?``)."""
        labels = self.send_query(Command.query(common.LMC_QUERY), Shape.LIST, ValueKind.STRING)
        return tuple(label.value for label in labels if isinstance(label, String) and label.value)

    def remove_macro(self, label: str) -> None:
        """Delete one macro (``*RMC``)."""
        self.send_command(Command.set(common.RMC, String(label)))

    def purge_macros(self) -> None:
        """Delete all macros (``*PMC``)."""
        self.command(common.PMC)

    # -- Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Close the session and the underlying transport.

        Safe to call multiple times.
        """
        with self._lock:
            if self._state is SessionState.DISCONNECTED:
                return
            self._state = SessionState.DISCONNECTED
            logger.info("Session closed")
            self._transport.close()

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Private helpers -----------------------------------------------------

    def _ensure_open(self) -> None:
        if self._state is SessionState.DISCONNECTED:
            raise SessionClosed("Session is closed")

    def _ensure_usable(self) -> None:
        self._ensure_open()
        if self._unreliable:
            raise TransportError("Transport buffer is unreliable after a timeout; call clear() first")

    @contextmanager
    def _in_state(self, state: SessionState) -> Iterator[None]:
        previous = self._state
        self._state = state
        try:
            yield
        finally:
            if self._state is not SessionState.DISCONNECTED:
                self._state = previous

    def _io(self, func: Callable[..., Any], *args: Any, retrying: bool = False) -> Any:
        """Call a transport method, translating timeouts and connection loss.

        A timeout marks the buffer unreliable unless *retrying* is set, in
        which case the caller decides.
        """
        try:
            return func(*args)
        except TransportTimeout:
            if not retrying:
                self._unreliable = True
                logger.warning("Transport timed out; buffer marked unreliable until clear()")
            raise
        except ConnectionLost as exc:
            self._state = SessionState.DISCONNECTED
            logger.warning("Connection lost: %s", exc)
            raise SessionClosed(f"Connection lost: {exc}") from exc

    def _write(self, data: bytes) -> int:
        self._ensure_usable()
        logger.debug("-> %r", data)
        self._io(self._transport.write, data)
        self._sequence += 1
        return self._sequence

    def _read_line(self, *, retrying: bool = False) -> bytes:
        raw: bytes = self._io(
            self._transport.read_until, self._read_terminator, retrying=retrying
        )
        logger.debug("<- %r", raw)
        return raw

    def _read_exact(self, length: int) -> bytes:
        data: bytes = self._io(self._transport.read_exact, length)
        if len(data) < length:
            raise TruncatedBlock(f"Expected {length} bytes, got {len(data)}", data)
        return data

    def _read_block(self) -> bytes:
        head = self._read_exact(2)
        if head.endswith(self._read_terminator):
            return head
        if head[:1] != b"#" or not head[1:2].isdigit():
            return head + self._read_line()
        digits = int(head[1:2])
        if digits == 0:
            return head + self._read_line()
        length_field = self._read_exact(digits)
        if not length_field.isdigit():
            raise MalformedValue("Block length field is not decimal", head + length_field)
        payload = self._read_exact(int(length_field))
        trailer = self._read_line() if self._config.block_terminated else b""
        raw = head + length_field + payload + trailer
        logger.debug("<- block of %d bytes", len(payload))
        return raw

    def _exchange(self, data: bytes, shape: Shape) -> bytes:
        with self._in_state(SessionState.AWAITING_RESPONSE):
            self._write(data)
            if shape is Shape.BLOCK:
                return self._read_block()
            return self._read_line()

    def _can_serial_poll(self) -> bool:
        return self._config.use_serial_poll and isinstance(self._transport, SupportsSerialPoll)

    def _serial_poll(self) -> StatusByte:
        self._ensure_usable()
        status = decode_status_byte(self._io(self._transport.serial_poll))  # type: ignore[attr-defined]
        logger.debug("Serial poll: 0x%02X", status.raw)
        self._last_status = status
        return status

    def _complete_by_event_poll(
        self, deadline: float, timeout: float, interval: float, cancel: CancelSignal | None
    ) -> None:
        sequence = self._write(common.OPC.encode("ascii") + self._write_terminator)
        while True:
            _raise_if_cancelled(cancel)
            events = self.read_event_status()
            self._latched_events |= events.raw & int(ERROR_EVENTS)
            if events.operation_complete:
                logger.debug("Operation #%d complete", sequence)
                return
            self._sleep_until_next_poll(deadline, timeout, interval, sequence)

    def _complete_by_query(
        self, deadline: float, timeout: float, interval: float, cancel: CancelSignal | None
    ) -> None:
        sequence = self._write(common.OPC_QUERY.encode("ascii") + self._write_terminator)
        try:
            if self._can_serial_poll():
                while True:
                    _raise_if_cancelled(cancel)
                    if self._serial_poll().message_available:
                        break
                    self._sleep_until_next_poll(deadline, timeout, interval, sequence)
            while True:
                _raise_if_cancelled(cancel)
                try:
                    raw = self._read_line_before(deadline)
                    break
                except TransportTimeout:
                    logger.debug("Operation #%d still pending", sequence)
                self._sleep_until_next_poll(deadline, timeout, interval, sequence)
        except (Cancelled, OperationTimeout):
            # The *OPC? response is still pending in the output queue.
            self._unreliable = True
            raise
        if parse_int(self._parser.strip_terminator(raw).decode("ascii", "replace")) != 1:
            raise MalformedValue("Unexpected *OPC? response", raw)
        logger.debug("Operation #%d complete", sequence)

    def _read_line_before(self, deadline: float) -> bytes:
        """Read one response line, giving up at *deadline* if the transport allows."""
        transport = self._transport
        if not isinstance(transport, SupportsReadTimeout):
            return self._read_line(retrying=True)
        saved = transport.read_timeout
        transport.read_timeout = max(deadline - self._clock(), _MIN_READ_TIMEOUT)
        try:
            return self._read_line(retrying=True)
        finally:
            transport.read_timeout = saved

    def _discard_input(self) -> None:
        if not isinstance(self._transport, SupportsDiscardInput):
            return
        discarded = self._io(self._transport.discard_input)
        if discarded:
            logger.info("Discarded %d stale input bytes", discarded)

    def _sleep_until_next_poll(
        self, deadline: float, timeout: float, interval: float, sequence: int
    ) -> None:
        remaining = deadline - self._clock()
        if remaining <= 0:
            logger.warning("Operation #%d did not complete within %g s", sequence, timeout)
            raise OperationTimeout(timeout, sequence)
        self._sleep(min(interval, remaining))

    def _check(self, override: bool | None, response: Any = None) -> None:
        """Read status and raise if the instrument reported errors."""
        should_check = self._config.check_errors if override is None else override
        if not should_check:
            return
        status = self.read_status_byte()
        if not status.needs_error_check and not self._latched_events & ERROR_EVENTS:
            return
        errors = self._collect_errors()
        if errors:
            logger.warning(
                "Instrument reported %d error(s): %s",
                len(errors),
                "; ".join(str(e) for e in errors),
            )
            raise ScpiCommandError(errors, response)

    def _collect_errors(self) -> tuple[ErrorQueueEntry, ...]:
        events = self.read_event_status().raw | self._latched_events
        self._latched_events = 0
        errors = self._error_queue.drain(self)
        if not errors and events & ERROR_EVENTS:
            errors = tuple(entry for bit, entry in _EVENT_ERRORS if events & bit)
        return errors


def _raise_if_cancelled(cancel: CancelSignal | None) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled("Operation-complete wait cancelled")


def _register_mask(mask: int) -> int:
    if not 0 <= mask <= 0xFFFF:
        raise ValueError(f"Register mask must be in 0..65535, got {mask}")
    return int(mask)


def _slot(slot: int) -> int:
    if slot < 0:
        raise ValueError(f"Register number must be >= 0, got {slot}")
    return int(slot)
