"""Token/value codec for IEEE 488.2 / SCPI data elements.

This module defines the tagged parameter types that travel inside program
and response messages, and converts them to and from their wire form:

- :class:`Numeric`: decimal numeric data with optional unit/multiplier suffix
- :class:`Boolean`: ``1``/``0`` (``ON``/``OFF`` accepted when decoding)
- :class:`String`: quoted string data with doubled-quote escaping
- :class:`CharacterData`: unquoted program mnemonic (``MAX``, ``IMMediate``)
- :class:`Expression`: parenthesized expression data (``(@1,2)``)
- :class:`ArbitraryBlock`: ``#<digits><length><payload>`` binary data

Responses may also carry :class:`ArbitraryAscii`, free text that runs to the
message terminator (``*OPT?``). It is never program data.

Typical usage::

    from hwtest_ieee488.codec import Numeric, ValueKind, decode, encode

    wire = encode(Numeric(5.0, suffix="MV"))  # b"5.0MV"
    value = decode(wire, ValueKind.NUMERIC)   # Numeric(5.0, suffix="MV")
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Union

from hwtest_ieee488.errors import MalformedValue, TruncatedBlock, UnterminatedString
from hwtest_ieee488.number import (
    ScpiSpecial,
    format_number,
    parse_non_decimal,
    parse_number,
    split_suffix,
)

_MNEMONIC_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_SUFFIX_RE = re.compile(r"^[A-Za-z%/][A-Za-z0-9/%.]*$")
# A suffix such as "E3" would be read back as an exponent.
_EXPONENT_SUFFIX_RE = re.compile(r"^[eE]\d")
_FLOAT_TOKENS: frozenset[str] = frozenset({"NAN", "INF", "+INF", "NINF", "-INF"})

MAX_BLOCK_LENGTH_DIGITS = 9


class ValueKind(Enum):
    """Expected kind of a data element, used as a decoding hint."""

    ANY = "any"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    STRING = "string"
    CHARACTER = "character"
    EXPRESSION = "expression"
    BLOCK = "block"
    ASCII = "ascii"


def is_program_mnemonic(text: str) -> bool:
    """Return True if *text* is a valid IEEE 488.2 program mnemonic.

    A mnemonic starts with an ASCII letter followed by letters, digits or
    underscores.
    """
    return _MNEMONIC_RE.match(text) is not None


# ---------------------------------------------------------------------------
# Parameter types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Numeric:
    """Decimal numeric data.

    Attributes:
        value: The number. ``int`` values are sent in NR1 form.
        suffix: Optional unit/multiplier suffix (e.g. ``"MV"``, ``"KHZ"``).
        precision: Significant digits used when encoding floats; ``None``
            selects the shortest representation that round-trips. Not part
            of equality.

    Two NaN values compare equal, so a decoded ``NAN`` equals the value
    that was encoded.
    """

    kind: ClassVar[ValueKind] = ValueKind.NUMERIC

    value: int | float
    suffix: str = ""
    precision: int | None = field(default=None, compare=False)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Numeric):
            return NotImplemented
        if self.suffix != other.suffix:
            return False
        if _is_nan(self.value) or _is_nan(other.value):
            return _is_nan(self.value) and _is_nan(other.value)
        return self.value == other.value

    def __hash__(self) -> int:
        return hash(("NAN" if _is_nan(self.value) else self.value, self.suffix))


def _is_nan(value: int | float) -> bool:
    return isinstance(value, float) and math.isnan(value)


@dataclass(frozen=True)
class Boolean:
    """Boolean data, sent as ``1`` or ``0``."""

    kind: ClassVar[ValueKind] = ValueKind.BOOLEAN

    value: bool


@dataclass(frozen=True)
class String:
    """Quoted string data. Only ASCII text is representable."""

    kind: ClassVar[ValueKind] = ValueKind.STRING

    value: str


@dataclass(frozen=True)
class CharacterData:
    """Unquoted character data (a program mnemonic such as ``MAX``).

    ``NAN``, ``INF`` and ``NINF`` are numeric data in SCPI, so
    :attr:`ValueKind.ANY` decodes them as :class:`Numeric`. Pass
    :attr:`ValueKind.CHARACTER` to read them back as character data.
    """

    kind: ClassVar[ValueKind] = ValueKind.CHARACTER

    value: str


@dataclass(frozen=True)
class Expression:
    """Expression data. ``value`` is the text between the outer parentheses."""

    kind: ClassVar[ValueKind] = ValueKind.EXPRESSION

    value: str


@dataclass(frozen=True)
class ArbitraryBlock:
    """Length-prefixed binary payload."""

    kind: ClassVar[ValueKind] = ValueKind.BLOCK

    data: bytes

    @property
    def declared_length(self) -> int:
        """Byte length announced in the block header."""
        return len(self.data)


@dataclass(frozen=True)
class ArbitraryAscii:
    """Arbitrary ASCII response data (IEEE 488.2 8.7.11).

    The text runs to the response terminator and is not split on commas,
    so it can only be the last element of a response.
    """

    kind: ClassVar[ValueKind] = ValueKind.ASCII

    value: str


Parameter = Union[Numeric, Boolean, String, CharacterData, Expression, ArbitraryBlock]


def to_parameter(value: object) -> Parameter:
    """Coerce a plain Python value into a :data:`Parameter`.

    ``bool`` becomes :class:`Boolean`, ``int``/``float`` become
    :class:`Numeric`, ``bytes`` become :class:`ArbitraryBlock`, ``str``
    becomes :class:`String`, and :class:`ScpiSpecial` members become
    :class:`CharacterData`. Parameters are returned unchanged.

    Raises:
        TypeError: If *value* has no SCPI representation.
    """
    if isinstance(value, (Numeric, Boolean, String, CharacterData, Expression, ArbitraryBlock)):
        return value
    if isinstance(value, bool):
        return Boolean(value)
    if isinstance(value, (int, float)):
        return Numeric(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ArbitraryBlock(bytes(value))
    if isinstance(value, str):
        return String(value)
    if isinstance(value, ScpiSpecial):
        return CharacterData(value.value)
    raise TypeError(f"Cannot convert {type(value).__name__} to a SCPI parameter")


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_block_header(length: int) -> bytes:
    """Return the definite-length block header for *length* payload bytes.

    Raises:
        MalformedValue: If *length* is negative or needs more than nine digits.
    """
    if length < 0:
        raise MalformedValue(f"Block length must be non-negative, got {length}")
    digits = str(length)
    if len(digits) > MAX_BLOCK_LENGTH_DIGITS:
        raise MalformedValue(f"Block size {length} overflows the 9-digit length header")
    return f"#{len(digits)}{digits}".encode("ascii")


def _check_balanced(text: str) -> bool:
    depth = 0
    quote: str | None = None
    for char in text:
        if quote is not None:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0 and quote is None


def encode(parameter: Parameter | ArbitraryAscii) -> bytes:
    """Encode a parameter to its wire representation.

    Args:
        parameter: The value to encode.

    Returns:
        The encoded bytes, without separators or terminator.

    Raises:
        MalformedValue: If the value has no valid wire form (non-ASCII
            string, invalid mnemonic, unbalanced expression, bad suffix,
            suffix on a non-finite value).
    """
    if isinstance(parameter, Numeric):
        if isinstance(parameter.value, bool):
            raise MalformedValue("Numeric value must not be a bool; use Boolean")
        if parameter.suffix:
            if (
                _SUFFIX_RE.match(parameter.suffix) is None
                or _EXPONENT_SUFFIX_RE.match(parameter.suffix) is not None
            ):
                raise MalformedValue(f"Invalid numeric suffix: {parameter.suffix!r}")
            if not math.isfinite(parameter.value):
                raise MalformedValue(f"{format_number(parameter.value)} cannot carry a suffix")
        try:
            text = format_number(parameter.value, parameter.precision)
        except ValueError as exc:
            raise MalformedValue(str(exc)) from exc
        return (text + parameter.suffix).encode("ascii")
    if isinstance(parameter, Boolean):
        return b"1" if parameter.value else b"0"
    if isinstance(parameter, String):
        if not parameter.value.isascii():
            raise MalformedValue(f"String data must be ASCII: {parameter.value!r}")
        return ('"' + parameter.value.replace('"', '""') + '"').encode("ascii")
    if isinstance(parameter, CharacterData):
        if not is_program_mnemonic(parameter.value):
            raise MalformedValue(f"Invalid character data: {parameter.value!r}")
        return parameter.value.encode("ascii")
    if isinstance(parameter, Expression):
        if not parameter.value.isascii() or not _check_balanced(parameter.value):
            raise MalformedValue(f"Invalid expression data: {parameter.value!r}")
        return ("(" + parameter.value + ")").encode("ascii")
    if isinstance(parameter, ArbitraryBlock):
        return encode_block_header(len(parameter.data)) + parameter.data
    if isinstance(parameter, ArbitraryAscii):
        if not parameter.value.isascii() or "\n" in parameter.value:
            raise MalformedValue(f"Invalid arbitrary ASCII data: {parameter.value!r}")
        return parameter.value.encode("ascii")
    raise TypeError(f"Not a SCPI parameter: {parameter!r}")


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def read_block(data: bytes, start: int = 0) -> tuple[ArbitraryBlock, int]:
    """Read an arbitrary block beginning at ``data[start]``.

    The payload length is taken from the header; the payload is never
    scanned for terminators. The indefinite form ``#0`` consumes the rest of
    *data*.

    Args:
        data: Buffer holding the block.
        start: Offset of the ``#`` character.

    Returns:
        ``(block, end)`` where *end* is the offset just past the payload.

    Raises:
        MalformedValue: If the header is invalid.
        TruncatedBlock: If fewer payload bytes are available than declared.
    """
    if data[start : start + 1] != b"#":
        raise MalformedValue("Block data must start with '#'", data[start:])
    count_byte = data[start + 1 : start + 2]
    if not count_byte or not count_byte.isdigit():
        raise MalformedValue("Block header has no digit count", data[start:])
    digit_count = int(count_byte)
    if digit_count == 0:
        return ArbitraryBlock(bytes(data[start + 2 :])), len(data)
    length_start = start + 2
    length_end = length_start + digit_count
    length_text = data[length_start:length_end]
    if len(length_text) < digit_count:
        raise TruncatedBlock("Block header ends before its length field", data[start:])
    if not length_text.isdigit():
        raise MalformedValue("Block length field is not decimal", data[start:])
    length = int(length_text)
    end = length_end + length
    if end > len(data):
        raise TruncatedBlock(
            f"Block declares {length} bytes but only {len(data) - length_end} are available",
            data[start:],
        )
    return ArbitraryBlock(bytes(data[length_end:end])), end


def scan_string(text: str, start: int = 0) -> tuple[str, int]:
    """Read quoted string data beginning at ``text[start]``.

    Either ``'`` or ``"`` may delimit the string; a doubled delimiter inside
    the string stands for one literal delimiter.

    Returns:
        ``(value, end)`` where *end* is the offset just past the closing quote.

    Raises:
        MalformedValue: If ``text[start]`` is not a quote character.
        UnterminatedString: If no closing quote is found.
    """
    quote = text[start : start + 1]
    if quote not in ('"', "'"):
        raise MalformedValue("String data must start with a quote", text[start:].encode())
    chars: list[str] = []
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == quote:
            if text[index + 1 : index + 2] == quote:
                chars.append(quote)
                index += 2
                continue
            return "".join(chars), index + 1
        chars.append(char)
        index += 1
    raise UnterminatedString("String data has no closing quote", text[start:].encode())


def _ascii(data: bytes) -> str:
    try:
        return data.decode("ascii")
    except UnicodeDecodeError:
        raise MalformedValue("Data element is not ASCII", data) from None


def sniff_kind(data: bytes) -> ValueKind:
    """Guess the kind of a data element from its leading bytes.

    Raises:
        MalformedValue: If the element is empty or starts with an
            unrecognized character.
    """
    stripped = data.lstrip()
    if not stripped:
        raise MalformedValue("Empty data element", data)
    first = stripped[:1]
    if first == b"#":
        return ValueKind.BLOCK if stripped[1:2].isdigit() else ValueKind.NUMERIC
    if first in (b'"', b"'"):
        return ValueKind.STRING
    if first == b"(":
        return ValueKind.EXPRESSION
    if first.isdigit() or first in (b"+", b"-", b"."):
        return ValueKind.NUMERIC
    if first.isalpha():
        token = stripped.rstrip().upper()
        if token.decode("ascii", "replace") in _FLOAT_TOKENS:
            return ValueKind.NUMERIC
        return ValueKind.CHARACTER
    raise MalformedValue("Unrecognized data element", data)


def _decode_numeric(data: bytes) -> Numeric:
    text = _ascii(data).strip()
    if text.upper() in _FLOAT_TOKENS:
        return Numeric(parse_number(text))
    try:
        non_decimal = parse_non_decimal(text)
        if non_decimal is not None:
            return Numeric(non_decimal)
        number, suffix = split_suffix(text)
    except ValueError as exc:
        raise MalformedValue(str(exc), data) from None
    if _INTEGER_RE.match(number):
        return Numeric(int(number), suffix)
    return Numeric(float(number), suffix)


def _decode_boolean(data: bytes) -> Boolean:
    token = _ascii(data).strip().upper()
    if token in ("1", "ON"):
        return Boolean(True)
    if token in ("0", "OFF"):
        return Boolean(False)
    raise MalformedValue("Invalid boolean data", data)


def _decode_string(data: bytes) -> String:
    text = _ascii(data).strip()
    value, end = scan_string(text)
    if text[end:].strip():
        raise MalformedValue("Unexpected data after closing quote", data)
    return String(value)


def _decode_character(data: bytes) -> CharacterData:
    text = _ascii(data).strip()
    if not is_program_mnemonic(text):
        raise MalformedValue("Invalid character data", data)
    return CharacterData(text)


def _decode_expression(data: bytes) -> Expression:
    text = _ascii(data).strip()
    if not (text.startswith("(") and text.endswith(")")) or not _check_balanced(text):
        raise MalformedValue("Invalid expression data", data)
    inner = text[1:-1]
    if not _check_balanced(inner):
        raise MalformedValue("Invalid expression data", data)
    return Expression(inner)


def _decode_block(data: bytes) -> ArbitraryBlock:
    offset = len(data) - len(data.lstrip())
    block, end = read_block(data, offset)
    if data[end:].strip():
        raise MalformedValue("Unexpected data after block payload", data)
    return block


def decode_arbitrary_ascii(data: bytes) -> ArbitraryAscii:
    """Decode arbitrary ASCII response data.

    Args:
        data: The response text with its terminator already removed. It is
            kept as-is; commas and surrounding whitespace are part of the
            value.

    Raises:
        MalformedValue: If *data* is not ASCII or holds a newline.
    """
    text = _ascii(data)
    if "\n" in text:
        raise MalformedValue("Arbitrary ASCII data must not contain a newline", data)
    return ArbitraryAscii(text)


_DECODERS = {
    ValueKind.NUMERIC: _decode_numeric,
    ValueKind.BOOLEAN: _decode_boolean,
    ValueKind.STRING: _decode_string,
    ValueKind.CHARACTER: _decode_character,
    ValueKind.EXPRESSION: _decode_expression,
    ValueKind.BLOCK: _decode_block,
}


def decode(data: bytes, kind: ValueKind = ValueKind.ANY) -> Parameter:
    """Decode one data element.

    Args:
        data: The element bytes, without separators or terminator.
        kind: Expected kind; :attr:`ValueKind.ANY` sniffs it from the data.

    Returns:
        The decoded parameter.

    Raises:
        MalformedValue: If *data* is not valid for *kind*.
        UnterminatedString: If string data lacks its closing quote.
        TruncatedBlock: If block data is shorter than its header declares.
        ValueError: If *kind* is :attr:`ValueKind.ASCII`; use
            :func:`decode_arbitrary_ascii`.
    """
    if kind is ValueKind.ASCII:
        raise ValueError("Arbitrary ASCII data is decoded with decode_arbitrary_ascii")
    if kind is ValueKind.ANY:
        kind = sniff_kind(data)
    return _DECODERS[kind](bytes(data))


def split_data(data: bytes, separator: bytes = b",") -> list[bytes]:
    """Split *data* on top-level occurrences of *separator*.

    Separators inside quoted strings, parenthesized expressions and
    arbitrary blocks are not delimiters. Block payloads are skipped by their
    declared length.

    Args:
        data: Message bytes with the terminator already removed.
        separator: Single-byte separator (``b","`` or ``b";"``).

    Returns:
        The pieces, unstripped. An empty *data* yields ``[]``.

    Raises:
        UnterminatedString: If a quoted string is not closed.
        TruncatedBlock: If a block is shorter than its header declares.
    """
    if not data:
        return []
    pieces: list[bytes] = []
    start = 0
    index = 0
    depth = 0
    while index < len(data):
        byte = data[index : index + 1]
        if byte in (b'"', b"'"):
            index = _skip_quoted(data, index)
            continue
        if byte == b"#" and data[index + 1 : index + 2].isdigit():
            _, index = read_block(data, index)
            continue
        if byte == b"(":
            depth += 1
        elif byte == b")":
            depth = max(depth - 1, 0)
        elif byte == separator and depth == 0:
            pieces.append(data[start:index])
            start = index + 1
        index += 1
    pieces.append(data[start:])
    return pieces


def _skip_quoted(data: bytes, start: int) -> int:
    quote = data[start : start + 1]
    index = start + 1
    while index < len(data):
        if data[index : index + 1] == quote:
            if data[index + 1 : index + 2] == quote:
                index += 2
                continue
            return index + 1
        index += 1
    raise UnterminatedString("String data has no closing quote", data[start:])
