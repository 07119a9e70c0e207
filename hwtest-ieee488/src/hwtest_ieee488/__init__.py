"""IEEE 488.2 / SCPI protocol engine for hwtest instrument automation.

This package provides the controller side of the IEEE 488.2 and SCPI 1999.0
protocols over an abstract byte transport. It includes:

- Codec for SCPI data elements (numeric, boolean, string, character,
  expression, arbitrary block and arbitrary ASCII data)
- Structured command builder and response parser
- IEEE 488.2 status model (Status Byte, Standard Event Status Register)
- SCPI error queue client
- Session controller with operation-complete synchronization and automatic
  error checking
- PyVISA and raw TCP socket transports
- Simulated instrument and TCP server for tests and development

Typical usage::

    from hwtest_ieee488 import Session, SocketTransport

    transport = SocketTransport("192.168.1.100")
    transport.open()
    with Session(transport) as session:
        identity = session.get_identity()
        print(f"Connected to {identity.manufacturer} {identity.model}")
"""

from hwtest_ieee488.builder import (
    Command,
    CommandBuilder,
    CommandKind,
    MnemonicForm,
    MnemonicPath,
    Segment,
    parse_program_message,
)
from hwtest_ieee488.codec import (
    ArbitraryAscii,
    ArbitraryBlock,
    Boolean,
    CharacterData,
    Expression,
    Numeric,
    Parameter,
    String,
    ValueKind,
    decode,
    decode_arbitrary_ascii,
    encode,
    to_parameter,
)
from hwtest_ieee488.common import InstrumentIdentity, parse_idn_response
from hwtest_ieee488.config import CompletionMethod, SessionConfig, load_session_config
from hwtest_ieee488.emulator import (
    SimulatedGpibInstrument,
    SimulatedInstrument,
    SimulatedInstrumentConfig,
)
from hwtest_ieee488.error_queue import (
    NO_ERROR,
    ErrorCategory,
    ErrorQueueClient,
    ErrorQueueEntry,
    StandardErrorCode,
    parse_error_entry,
)
from hwtest_ieee488.errors import (
    BuildError,
    Cancelled,
    ConnectionLost,
    DecodeError,
    ErrorQueueOverflow,
    Ieee488Error,
    InvalidMnemonic,
    MalformedValue,
    MissingTerminator,
    OperationTimeout,
    ScpiCommandError,
    SessionClosed,
    TooManyParameters,
    TransportError,
    TransportTimeout,
    TruncatedBlock,
    UnterminatedString,
)
from hwtest_ieee488.number import (
    ScpiSpecial,
    format_bool,
    format_number,
    parse_bool,
    parse_int,
    parse_number,
    parse_numbers,
    parse_special,
)
from hwtest_ieee488.parser import ResponseParser, Shape
from hwtest_ieee488.server import InstrumentServer
from hwtest_ieee488.session import Session, SessionState
from hwtest_ieee488.socket_transport import SocketTransport
from hwtest_ieee488.status import (
    EventStatus,
    EventStatusBit,
    StatusBit,
    StatusByte,
    compose_enable_mask,
    decode_event_status,
    decode_status_byte,
)
from hwtest_ieee488.transport import (
    ByteTransport,
    SupportsDeviceClear,
    SupportsDiscardInput,
    SupportsReadTimeout,
    SupportsSerialPoll,
)
from hwtest_ieee488.visa import VisaTransport

__all__ = [
    # Builder
    "Command",
    "CommandBuilder",
    "CommandKind",
    "MnemonicForm",
    "MnemonicPath",
    "Segment",
    "parse_program_message",
    # Codec
    "ArbitraryAscii",
    "ArbitraryBlock",
    "Boolean",
    "CharacterData",
    "Expression",
    "Numeric",
    "Parameter",
    "String",
    "ValueKind",
    "decode",
    "decode_arbitrary_ascii",
    "encode",
    "to_parameter",
    # Common commands
    "InstrumentIdentity",
    "parse_idn_response",
    # Configuration
    "CompletionMethod",
    "SessionConfig",
    "load_session_config",
    # Simulation
    "InstrumentServer",
    "SimulatedGpibInstrument",
    "SimulatedInstrument",
    "SimulatedInstrumentConfig",
    # Error queue
    "NO_ERROR",
    "ErrorCategory",
    "ErrorQueueClient",
    "ErrorQueueEntry",
    "StandardErrorCode",
    "parse_error_entry",
    # Errors
    "BuildError",
    "Cancelled",
    "ConnectionLost",
    "DecodeError",
    "ErrorQueueOverflow",
    "Ieee488Error",
    "InvalidMnemonic",
    "MalformedValue",
    "MissingTerminator",
    "OperationTimeout",
    "ScpiCommandError",
    "SessionClosed",
    "TooManyParameters",
    "TransportError",
    "TransportTimeout",
    "TruncatedBlock",
    "UnterminatedString",
    # Number parsing/formatting
    "ScpiSpecial",
    "format_bool",
    "format_number",
    "parse_bool",
    "parse_int",
    "parse_number",
    "parse_numbers",
    "parse_special",
    # Parser
    "ResponseParser",
    "Shape",
    # Session
    "Session",
    "SessionState",
    # Status
    "EventStatus",
    "EventStatusBit",
    "StatusBit",
    "StatusByte",
    "compose_enable_mask",
    "decode_event_status",
    "decode_status_byte",
    # Transports
    "ByteTransport",
    "SocketTransport",
    "SupportsDeviceClear",
    "SupportsDiscardInput",
    "SupportsReadTimeout",
    "SupportsSerialPoll",
    "VisaTransport",
]
