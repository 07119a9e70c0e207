"""Simulated IEEE 488.2 / SCPI instrument.

Provides an in-process instrument implementing the
:class:`~hwtest_ieee488.transport.ByteTransport` protocol, for tests and for
development without hardware. It implements the mandatory parts of the
standards itself:

- the IEEE 488.2 common commands (``*IDN?``, ``*RST``, ``*CLS``, ``*ESE``,
  ``*ESR?``, ``*OPC``/``*OPC?``, ``*SRE``, ``*STB?``, ``*TST?``, ``*WAI``)
- the optional common commands for options, triggering, saved settings,
  power-on status clear, parallel poll, calibration, protected user data
  and macros (``*OPT?``, ``*TRG``, ``*SAV``, ``*RCL``, ``*SDS``, ``*PSC``,
  ``*PRE``, ``*IST?``, ``*CAL?``, ``*PUD``, ``*DMC``, ``*EMC``, ``*GMC?``,
  ``*LMC?``, ``*PMC``, ``*RMC``)
- the status model (Status Byte, Standard Event Status Register, enable
  masks, MAV, error queue summary)
- the SCPI error/event queue with overflow handling, ``SYST:ERR?`` and
  ``SYST:VERS?``, the Operation and Questionable status registers
  (event, condition and enable) and ``STAT:PRES``
- overlapped operations that complete after a number of status polls, so
  operation-complete synchronization can be tested without real time

Instrument-specific commands are registered by the caller::

    instrument = SimulatedInstrument()
    instrument.register_setting("SOURce:VOLTage", 0.0)
    instrument.register_command("INITiate", operation_polls=3)

:class:`SimulatedGpibInstrument` additionally offers serial poll and device
clear, like a GPIB or VXI-11 resource.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from hwtest_ieee488.builder import Command, CommandKind, MnemonicPath, parse_program_message
from hwtest_ieee488.codec import (
    ArbitraryBlock,
    Boolean,
    CharacterData,
    Numeric,
    Parameter,
    String,
    encode,
)
from hwtest_ieee488.errors import BuildError, ConnectionLost, DecodeError, TransportTimeout
from hwtest_ieee488.number import format_number
from hwtest_ieee488.status import EventStatusBit, StatusBit

logger = logging.getLogger(__name__)

CommandHandler = Callable[[tuple[Parameter, ...]], None]
QueryHandler = Callable[[tuple[Parameter, ...]], Any]

# ESR bit set for each standard error class
_ERROR_CLASS_BITS: tuple[tuple[int, int, EventStatusBit], ...] = (
    (-199, -100, EventStatusBit.COMMAND_ERROR),
    (-299, -200, EventStatusBit.EXECUTION_ERROR),
    (-399, -300, EventStatusBit.DEVICE_ERROR),
    (-499, -400, EventStatusBit.QUERY_ERROR),
)

_OPC_RESPONSE = object()

# Enable mask of the SCPI Operation and Questionable registers at power-on;
# bit 15 is never used.
_SCPI_ENABLE_DEFAULT = 0x7FFF


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SimulatedInstrumentConfig:
    """Configuration for a simulated instrument.

    Args:
        identity: ``*IDN?`` response string.
        scpi_version: ``SYST:VERS?`` response.
        self_test_result: ``*TST?`` response; 0 means passed.
        error_queue_size: Error queue capacity (SCPI requires at least 2).
        terminator: Program and response message terminator.
        options: ``*OPT?`` fields; an empty tuple reports ``0``.
        calibration_result: ``*CAL?`` response; 0 means passed.
        saved_setting_slots: Number of ``*SAV``/``*RCL`` registers.
    """

    identity: str = "HWTEST,SIM488,SN000001,1.0"
    scpi_version: str = "1999.0"
    self_test_result: int = 0
    error_queue_size: int = 10
    terminator: str = "\n"
    options: tuple[str, ...] = ()
    calibration_result: int = 0
    saved_setting_slots: int = 10

    def __post_init__(self) -> None:
        if not self.identity:
            raise ValueError("identity must be non-empty")
        if self.error_queue_size < 2:
            raise ValueError("error_queue_size must be >= 2")
        if not self.terminator:
            raise ValueError("terminator must be non-empty")
        if self.saved_setting_slots < 1:
            raise ValueError("saved_setting_slots must be >= 1")
        if any(not option or "," in option or "\n" in option for option in self.options):
            raise ValueError("options must be non-empty and hold no comma or newline")


@dataclass
class _Registration:
    path: MnemonicPath
    handler: Callable[[tuple[Parameter, ...]], Any] | None
    operation_polls: int | None = 0


@dataclass
class _ScpiRegister:
    """Condition, event and enable registers of one SCPI status structure."""

    condition: int = 0
    event: int = 0
    enable: int = _SCPI_ENABLE_DEFAULT

    def set_condition(self, bits: int) -> None:
        self.event |= bits & ~self.condition
        self.condition = bits

    def read_event(self) -> int:
        value, self.event = self.event, 0
        return value

    @property
    def summary(self) -> bool:
        return bool(self.event & self.enable)


def _macro_key(command: Command) -> str:
    label = command.path.render().lstrip(":").upper()
    return label + "?" if command.is_query else label


def _payload(parameter: ArbitraryBlock | String) -> bytes:
    if isinstance(parameter, ArbitraryBlock):
        return parameter.data
    return parameter.value.encode("ascii")


def _find_message_end(buffer: bytes | bytearray, terminator: bytes) -> int | None:
    """Return the offset just past the first top-level terminator, if any."""
    index = 0
    while index < len(buffer):
        byte = buffer[index : index + 1]
        if byte in (b'"', b"'"):
            close = buffer.find(byte, index + 1)
            if close < 0:
                break
            index = close + 1
            continue
        if byte == b"#" and buffer[index + 1 : index + 2].isdigit():
            digits = int(buffer[index + 1 : index + 2])
            if digits:
                length_field = bytes(buffer[index + 2 : index + 2 + digits])
                if len(length_field) < digits:
                    return None
                if length_field.isdigit():
                    end = index + 2 + digits + int(length_field)
                    if end > len(buffer):
                        return None
                    index = end
                    continue
        if buffer[index : index + len(terminator)] == terminator:
            return index + len(terminator)
        index += 1
    found = buffer.find(terminator, index)
    return None if found < 0 else found + len(terminator)


# ---------------------------------------------------------------------------
# Simulated instrument
# ---------------------------------------------------------------------------


class SimulatedInstrument:
    """In-process IEEE 488.2 instrument implementing ``ByteTransport``.

    Overlapped operations model the time an instrument needs to finish a
    command as a number of status polls (``*ESR?``, ``*STB?`` or serial
    poll). A blocking read waits for a finite operation to finish; an
    operation started with ``None`` polls never finishes and reads time out.

    Args:
        config: Instrument configuration. Defaults to
            :class:`SimulatedInstrumentConfig`.
    """

    def __init__(self, config: SimulatedInstrumentConfig | None = None) -> None:
        self._config = config if config is not None else SimulatedInstrumentConfig()
        self._terminator = self._config.terminator.encode("ascii")
        self._input = bytearray()
        self._output = bytearray()
        self._held: list[Any] | None = None
        self._errors: deque[tuple[int, str]] = deque()
        self._esr = 0
        self._ese = 0
        self._sre = 0
        self._parallel_poll_enable = 0
        self._power_on_clear = True
        self._operation = _ScpiRegister()
        self._questionable = _ScpiRegister()
        self._remaining_polls: int | None = 0
        self._opc_armed = False
        self._closed = False
        self._commands: list[_Registration] = []
        self._queries: list[_Registration] = []
        self._settings: dict[str, Any] = {}
        self._setting_defaults: dict[str, Any] = {}
        self._saved_settings: dict[int, dict[str, Any]] = {}
        self._user_data = b""
        self._macros: dict[str, bytes] = {}
        self._macros_enabled = False
        self.received: list[bytes] = []
        self.poll_count = 0
        self.trigger_count = 0

    # -- Transport interface ------------------------------------------------

    def write(self, data: bytes) -> None:
        """Receive program message bytes and execute complete messages."""
        self._require_open()
        self.received.append(bytes(data))
        self._input.extend(data)
        while True:
            end = _find_message_end(self._input, self._terminator)
            if end is None:
                return
            message = bytes(self._input[:end])
            del self._input[:end]
            self._execute(message)

    def read_until(self, terminator: bytes) -> bytes:
        """Return output up to and including *terminator*.

        Raises:
            TransportTimeout: If no complete response is or will become
                available.
        """
        self._require_open()
        while True:
            index = self._output.find(terminator)
            if index >= 0:
                end = index + len(terminator)
                data = bytes(self._output[:end])
                del self._output[:end]
                return data
            if not self._finish_pending():
                raise TransportTimeout("No response available from simulated instrument")

    def read_exact(self, length: int) -> bytes:
        """Return exactly *length* bytes of output.

        Raises:
            TransportTimeout: If fewer bytes are or will become available.
        """
        self._require_open()
        while len(self._output) < length:
            if not self._finish_pending():
                raise TransportTimeout("No response available from simulated instrument")
        data = bytes(self._output[:length])
        del self._output[:length]
        return data

    def read_available(self) -> bytes:
        """Return and clear all buffered output.

        A response held back by a finite overlapped operation is released
        first, as a blocking read would.
        """
        self._finish_pending()
        data = bytes(self._output)
        self._output.clear()
        return data

    def close(self) -> None:
        """Close the instrument; further I/O raises :class:`ConnectionLost`."""
        self._closed = True

    # -- Registration -------------------------------------------------------

    def register_command(
        self,
        path: str,
        handler: CommandHandler | None = None,
        *,
        operation_polls: int | None = 0,
    ) -> None:
        """Register a set command.

        Args:
            path: Mixed-case command path (``"SOURce:VOLTage"``); the short
                and long forms of every keyword are accepted.
            handler: Called with the decoded parameters. ``ValueError``
                raised by the handler queues ``-224``.
            operation_polls: Make the command overlapped, completing after
                this many status polls; ``None`` never completes.
        """
        self._commands.append(_Registration(MnemonicPath.parse(path), handler, operation_polls))

    def register_query(self, path: str, handler: QueryHandler) -> None:
        """Register a query.

        The handler's return value is sent as the response unit: ``str``
        verbatim, ``bytes`` as a definite-length block, and bool, int,
        float or :data:`Parameter` values encoded as data elements.
        """
        self._queries.append(_Registration(MnemonicPath.parse(path.removesuffix("?")), handler))

    def register_setting(self, path: str, initial: Any) -> None:
        """Register a value settable with ``PATH <value>`` and read with ``PATH?``.

        The setting returns to *initial* on ``*RST``; ``*SAV`` and ``*RCL``
        store and restore it.
        """
        key = MnemonicPath.parse(path).render()
        self._settings[key] = initial
        self._setting_defaults[key] = initial

        def _set(params: tuple[Parameter, ...]) -> None:
            if len(params) != 1:
                raise ValueError(f"{path} takes exactly one value")
            value = params[0]
            if isinstance(value, CharacterData) and value.value.upper() in ("ON", "OFF"):
                self._settings[key] = value.value.upper() == "ON"
            elif isinstance(value, (Numeric, Boolean)):
                self._settings[key] = value.value
            else:
                raise ValueError(f"{path} takes a numeric or boolean value")

        def _get(params: tuple[Parameter, ...]) -> Any:
            return self._settings[key]

        self.register_command(path, _set)
        self.register_query(path, _get)

    def setting(self, path: str) -> Any:
        """Return the current value of a registered setting."""
        return self._settings[MnemonicPath.parse(path).render()]

    # -- Test helpers -------------------------------------------------------

    def push_error(self, code: int, message: str) -> None:
        """Queue an error as if a command had failed.

        When the queue is full, the most recent entry is replaced with
        ``-350,"Queue overflow"``.
        """
        for low, high, bit in _ERROR_CLASS_BITS:
            if low <= code <= high:
                self._esr |= bit
        if len(self._errors) >= self._config.error_queue_size:
            self._errors[-1] = (-350, "Queue overflow")
            return
        self._errors.append((code, message))
        logger.debug("Simulated instrument queued error %d,%r", code, message)

    def start_operation(self, polls: int | None) -> None:
        """Start an overlapped operation lasting *polls* status polls.

        ``None`` starts an operation that never completes; ``0`` completes
        immediately.
        """
        self._remaining_polls = polls
        if polls == 0:
            self._complete_operation()

    def set_operation_events(self, bits: int) -> None:
        """Latch bits in the SCPI Operation Status event register."""
        self._operation.event |= bits

    def set_questionable_events(self, bits: int) -> None:
        """Latch bits in the SCPI Questionable Status event register."""
        self._questionable.event |= bits

    def set_operation_condition(self, bits: int) -> None:
        """Set the Operation Status condition; rising bits latch as events."""
        self._operation.set_condition(bits)

    def set_questionable_condition(self, bits: int) -> None:
        """Set the Questionable Status condition; rising bits latch as events."""
        self._questionable.set_condition(bits)

    def power_on(self) -> None:
        """Simulate a power cycle.

        Settings, buffers, the error queue and the SCPI registers return to
        their power-on state and the ESR reports ``PON``. The ``*ESE``,
        ``*SRE`` and ``*PRE`` masks survive only when ``*PSC 0`` was set.
        Saved settings, protected user data and macro definitions are kept.
        """
        self._input.clear()
        self._output.clear()
        self._held = None
        self._errors.clear()
        self._settings.update(self._setting_defaults)
        self._remaining_polls = 0
        self._opc_armed = False
        self._macros_enabled = False
        self._operation = _ScpiRegister()
        self._questionable = _ScpiRegister()
        if self._power_on_clear:
            self._ese = 0
            self._sre = 0
            self._parallel_poll_enable = 0
        self._esr = int(EventStatusBit.POWER_ON)
        logger.debug("Simulated power on")

    def inject_response(self, data: bytes) -> None:
        """Append raw bytes to the output queue."""
        self._output.extend(data)

    def disconnect(self) -> None:
        """Simulate loss of the connection."""
        self._closed = True

    @property
    def config(self) -> SimulatedInstrumentConfig:
        """The instrument configuration."""
        return self._config

    @property
    def busy(self) -> bool:
        """True while an overlapped operation is pending."""
        return self._remaining_polls != 0

    @property
    def event_status(self) -> int:
        """The Standard Event Status Register, without clearing it."""
        return self._esr

    @property
    def error_queue(self) -> tuple[tuple[int, str], ...]:
        """Queued errors, oldest first."""
        return tuple(self._errors)

    @property
    def macros(self) -> dict[str, bytes]:
        """Defined macros, by upper-case label."""
        return dict(self._macros)

    @property
    def status_byte(self) -> int:
        """The Status Byte including the master summary bit."""
        stb = 0
        if self._errors:
            stb |= StatusBit.ERROR_QUEUE
        if self._questionable.summary:
            stb |= StatusBit.QUESTIONABLE
        if self._output:
            stb |= StatusBit.MESSAGE_AVAILABLE
        if self._esr & self._ese:
            stb |= StatusBit.EVENT_STATUS
        if self._operation.summary:
            stb |= StatusBit.OPERATION
        if stb & self._sre & ~StatusBit.REQUEST_SERVICE:
            stb |= StatusBit.REQUEST_SERVICE
        return int(stb)

    # -- Execution ----------------------------------------------------------

    def _execute(self, message: bytes) -> None:
        logger.debug("Simulated instrument received %r", message)
        if self._output or self._held is not None:
            # A new message before the previous response was read.
            self._output.clear()
            self._held = None
            self.push_error(-410, "Query INTERRUPTED")
        try:
            commands = self._expand_macros(parse_program_message(message, self._terminator))
        except (BuildError, DecodeError):
            self.push_error(-102, "Syntax error")
            return
        responses: list[Any] = []
        for command in commands:
            if command.kind is CommandKind.QUERY:
                response = self._query(command.path, command.parameters)
                if response is not None:
                    responses.append(response)
            else:
                self._command(command.path, command.parameters)
        if not responses:
            return
        if any(r is _OPC_RESPONSE for r in responses):
            self._held = responses
        else:
            self._emit(responses)

    def _expand_macros(self, commands: list[Command]) -> list[Command]:
        if not self._macros_enabled or not self._macros:
            return commands
        expanded: list[Command] = []
        for command in commands:
            body = None if command.path.common else self._macros.get(_macro_key(command))
            if body is None:
                expanded.append(command)
                continue
            # $1 to $9 stand for the parameters given with the label.
            for index, parameter in enumerate(command.parameters, start=1):
                body = body.replace(f"${index}".encode("ascii"), encode(parameter))
            expanded.extend(parse_program_message(body, self._terminator))
        return expanded

    def _emit(self, responses: list[Any]) -> None:
        units = [b"1" if r is _OPC_RESPONSE else r for r in responses]
        self._output.extend(b";".join(units) + self._terminator)

    def _command(self, path: MnemonicPath, params: tuple[Parameter, ...]) -> None:
        if path.common:
            self._common_command(path.segments[0].keyword.upper(), params)
            return
        if self._is(path, "STATus:PRESet"):
            self._operation.enable = 0
            self._questionable.enable = 0
            return
        for name, register in self._scpi_registers():
            if self._is(path, f"STATus:{name}:ENABle"):
                value = self._int_parameter(params, 0xFFFF)
                if value is not None:
                    register.enable = value
                return
        registration = self._lookup(self._commands, path)
        if registration is None:
            self.push_error(-113, "Undefined header")
            return
        if registration.handler is not None:
            try:
                registration.handler(params)
            except ValueError:
                self.push_error(-224, "Illegal parameter value")
                return
        if registration.operation_polls != 0:
            self.start_operation(registration.operation_polls)

    def _query(self, path: MnemonicPath, params: tuple[Parameter, ...]) -> Any:
        if path.common:
            return self._common_query(path.segments[0].keyword.upper(), params)
        if self._is(path, "SYSTem:ERRor") or self._is(path, "SYSTem:ERRor:NEXT"):
            code, msg = self._errors.popleft() if self._errors else (0, "No error")
            return f'{code},"{msg}"'.encode("ascii")
        if self._is(path, "SYSTem:VERSion"):
            return self._config.scpi_version.encode("ascii")
        for name, register in self._scpi_registers():
            if self._is(path, f"STATus:{name}") or self._is(path, f"STATus:{name}:EVENt"):
                return str(register.read_event()).encode("ascii")
            if self._is(path, f"STATus:{name}:CONDition"):
                return str(register.condition).encode("ascii")
            if self._is(path, f"STATus:{name}:ENABle"):
                return str(register.enable).encode("ascii")
        registration = self._lookup(self._queries, path)
        if registration is None or registration.handler is None:
            self.push_error(-113, "Undefined header")
            return None
        try:
            value = registration.handler(params)
        except ValueError:
            self.push_error(-224, "Illegal parameter value")
            return None
        return self._encode_response(value)

    def _common_command(self, keyword: str, params: tuple[Parameter, ...]) -> None:
        if keyword == "CLS":
            self._esr = 0
            self._errors.clear()
            self._operation.event = 0
            self._questionable.event = 0
            self._opc_armed = False
            self._held = None
        elif keyword == "RST":
            self._settings.update(self._setting_defaults)
            self._remaining_polls = 0
            self._opc_armed = False
            self._macros_enabled = False
        elif keyword == "OPC":
            self._opc_armed = True
            if not self.busy:
                self._complete_operation()
        elif keyword == "WAI":
            if self._remaining_polls is not None:
                self._complete_operation()
        elif keyword in ("ESE", "SRE"):
            value = self._int_parameter(params, 255)
            if value is None:
                return
            if keyword == "ESE":
                self._ese = value
            else:
                self._sre = value & ~int(StatusBit.REQUEST_SERVICE) & 0xFF
        elif keyword == "TRG":
            self.trigger_count += 1
        elif keyword in ("SAV", "RCL", "SDS"):
            self._saved_settings_command(keyword, params)
        elif keyword == "PSC":
            value = self._int_parameter(params, 0xFFFF)
            if value is not None:
                self._power_on_clear = value != 0
        elif keyword == "PRE":
            value = self._int_parameter(params, 0xFFFF)
            if value is not None:
                self._parallel_poll_enable = value
        elif keyword == "PUD":
            if len(params) != 1 or not isinstance(params[0], (ArbitraryBlock, String)):
                self.push_error(-109, "Missing parameter")
                return
            self._user_data = _payload(params[0])
        elif keyword in ("DMC", "EMC", "PMC", "RMC"):
            self._macro_command(keyword, params)
        else:
            self.push_error(-113, "Undefined header")

    def _common_query(self, keyword: str, params: tuple[Parameter, ...]) -> Any:
        if keyword == "IDN":
            return self._config.identity.encode("ascii")
        if keyword == "OPC":
            return b"1" if not self.busy else _OPC_RESPONSE
        if keyword == "ESR":
            self._poll()
            value, self._esr = self._esr, 0
            return str(value).encode("ascii")
        if keyword == "STB":
            self._poll()
            return str(self.status_byte).encode("ascii")
        if keyword == "ESE":
            return str(self._ese).encode("ascii")
        if keyword == "SRE":
            return str(self._sre).encode("ascii")
        if keyword == "TST":
            return str(self._config.self_test_result).encode("ascii")
        if keyword == "OPT":
            return (",".join(self._config.options) or "0").encode("ascii")
        if keyword == "CAL":
            return str(self._config.calibration_result).encode("ascii")
        if keyword == "PSC":
            return b"1" if self._power_on_clear else b"0"
        if keyword == "PRE":
            return str(self._parallel_poll_enable).encode("ascii")
        if keyword == "IST":
            return b"1" if self.status_byte & self._parallel_poll_enable else b"0"
        if keyword == "PUD":
            return encode(ArbitraryBlock(self._user_data))
        if keyword == "EMC":
            return b"1" if self._macros_enabled else b"0"
        if keyword == "LMC":
            labels = [encode(String(label)) for label in self._macros]
            return b",".join(labels) if labels else b'""'
        if keyword == "GMC":
            label = self._macro_label(params)
            if label is None:
                return None
            if label not in self._macros:
                self.push_error(-224, "Illegal parameter value")
                return None
            return encode(ArbitraryBlock(self._macros[label]))
        self.push_error(-113, "Undefined header")
        return None

    def _saved_settings_command(self, keyword: str, params: tuple[Parameter, ...]) -> None:
        slot = self._int_parameter(params, self._config.saved_setting_slots - 1)
        if slot is None:
            return
        if keyword == "SAV":
            self._saved_settings[slot] = dict(self._settings)
        elif keyword == "SDS":
            self._saved_settings[slot] = dict(self._setting_defaults)
        elif slot in self._saved_settings:
            self._settings.update(self._saved_settings[slot])
        else:
            self.push_error(-221, "Settings conflict")

    def _macro_command(self, keyword: str, params: tuple[Parameter, ...]) -> None:
        if keyword == "PMC":
            self._macros.clear()
        elif keyword == "EMC":
            value = self._int_parameter(params, 0xFFFF)
            if value is not None:
                self._macros_enabled = value != 0
        elif keyword == "RMC":
            label = self._macro_label(params)
            if label is not None and self._macros.pop(label, None) is None:
                self.push_error(-224, "Illegal parameter value")
        else:
            if len(params) != 2 or not isinstance(params[1], (ArbitraryBlock, String)):
                self.push_error(-109, "Missing parameter")
                return
            label = self._macro_label(params[:1])
            if label is None:
                return
            self._macros[label] = _payload(params[1])

    def _macro_label(self, params: tuple[Parameter, ...]) -> str | None:
        if len(params) != 1 or not isinstance(params[0], String):
            self.push_error(-109, "Missing parameter")
            return None
        label = params[0].value.strip()
        try:
            path = MnemonicPath.parse(label.removesuffix("?"))
        except BuildError:
            path = None
        if path is None or path.common:
            self.push_error(-224, "Illegal parameter value")
            return None
        return label.upper()

    # -- Private helpers ----------------------------------------------------

    def _require_open(self) -> None:
        if self._closed:
            raise ConnectionLost("Simulated instrument is disconnected")

    def _scpi_registers(self) -> tuple[tuple[str, _ScpiRegister], ...]:
        return (("OPERation", self._operation), ("QUEStionable", self._questionable))

    def _int_parameter(self, params: tuple[Parameter, ...], high: int) -> int | None:
        """Return a single integer parameter in ``0..high``, or queue an error."""
        if len(params) != 1 or not isinstance(params[0], Numeric):
            self.push_error(-109, "Missing parameter")
            return None
        number = params[0].value
        if not 0 <= number <= high:
            self.push_error(-222, "Data out of range")
            return None
        return int(number)

    @staticmethod
    def _is(path: MnemonicPath, pattern: str) -> bool:
        return MnemonicPath.parse(pattern).accepts(path)

    @staticmethod
    def _lookup(registrations: list[_Registration], path: MnemonicPath) -> _Registration | None:
        for registration in registrations:
            if registration.path.accepts(path):
                return registration
        return None

    @staticmethod
    def _encode_response(value: Any) -> bytes:
        if isinstance(value, str):
            return value.encode("ascii")
        if isinstance(value, (bytes, bytearray)):
            return encode(ArbitraryBlock(bytes(value)))
        if isinstance(value, bool):
            return b"1" if value else b"0"
        if isinstance(value, (int, float)):
            return format_number(value).encode("ascii")
        return encode(value)

    def _poll(self) -> None:
        """Advance a pending operation by one status poll."""
        self.poll_count += 1
        if self._remaining_polls is None or self._remaining_polls == 0:
            return
        self._remaining_polls -= 1
        if self._remaining_polls == 0:
            self._complete_operation()

    def _finish_pending(self) -> bool:
        """Complete a finite pending operation; return True if output changed."""
        if self._held is None or self._remaining_polls is None:
            return False
        self._complete_operation()
        return True

    def _complete_operation(self) -> None:
        self._remaining_polls = 0
        if self._opc_armed:
            self._esr |= EventStatusBit.OPERATION_COMPLETE
            self._opc_armed = False
        if self._held is not None:
            held, self._held = self._held, None
            self._emit(held)
        logger.debug("Simulated operation complete")


class SimulatedGpibInstrument(SimulatedInstrument):
    """Simulated instrument on a bus with serial poll and device clear."""

    def serial_poll(self) -> int:
        """Return the Status Byte; counts as one status poll."""
        self._require_open()
        self._poll()
        return self.status_byte

    def device_clear(self) -> None:
        """Clear input and output buffers and cancel a pending ``*OPC?``."""
        self._require_open()
        self._input.clear()
        self._output.clear()
        self._held = None
        logger.debug("Simulated device clear")
