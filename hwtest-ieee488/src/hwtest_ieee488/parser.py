"""Response parser for IEEE 488.2 response messages.

Turns raw response bytes into typed values: a single data element, a
comma-separated list of elements, a binary block, or arbitrary ASCII text
such as the ``*OPT?`` response. Terminators are stripped before parsing;
block payloads are consumed by their declared length so that
terminator-like bytes inside a payload are never treated as the end of the
message.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from enum import Enum
from typing import Union

from hwtest_ieee488.codec import (
    ArbitraryAscii,
    ArbitraryBlock,
    Numeric,
    Parameter,
    ValueKind,
    decode,
    decode_arbitrary_ascii,
    read_block,
    split_data,
)
from hwtest_ieee488.errors import MalformedValue, MissingTerminator
from hwtest_ieee488.number import IEEE_INF, IEEE_NAN


class Shape(Enum):
    """Expected overall shape of a response."""

    SCALAR = "scalar"
    LIST = "list"
    BLOCK = "block"
    ASCII = "ascii"


ResponseValue = Union[Parameter, ArbitraryAscii, tuple[Parameter, ...]]


class ResponseParser:
    """Parses raw response messages.

    Args:
        terminators: Accepted response terminators, longest first.
        require_terminator: Fail with :class:`MissingTerminator` when a
            text response does not end with one of *terminators*.
        ieee_sentinels: Map the IEEE 488.2 values ``9.91E37`` and
            ``±9.9E37`` to NaN and ±infinity in numeric elements.
    """

    def __init__(
        self,
        terminators: Sequence[str] = ("\r\n", "\n"),
        *,
        require_terminator: bool = True,
        ieee_sentinels: bool = False,
    ) -> None:
        if not terminators or any(not t for t in terminators):
            raise ValueError("terminators must be non-empty strings")
        encoded = [t.encode("ascii") for t in terminators]
        self._terminators = tuple(sorted(encoded, key=len, reverse=True))
        self._require_terminator = require_terminator
        self._ieee_sentinels = ieee_sentinels

    @property
    def terminators(self) -> tuple[bytes, ...]:
        """Accepted terminators, longest first."""
        return self._terminators

    def strip_terminator(self, raw: bytes) -> bytes:
        """Remove one trailing terminator from *raw*.

        Raises:
            MissingTerminator: If none is present and one is required.
        """
        for terminator in self._terminators:
            if raw.endswith(terminator):
                return raw[: -len(terminator)]
        if self._require_terminator:
            raise MissingTerminator("Response is not terminated", raw)
        return raw

    def parse(
        self,
        raw: bytes,
        shape: Shape = Shape.SCALAR,
        kind: ValueKind = ValueKind.ANY,
    ) -> ResponseValue:
        """Parse a complete response message.

        Args:
            raw: The bytes read from the transport, terminator included.
            shape: Expected shape of the response.
            kind: Decoding hint applied to every element.

        Returns:
            A :data:`Parameter` for :attr:`Shape.SCALAR`, a tuple of them for
            :attr:`Shape.LIST`, an :class:`ArbitraryBlock` for
            :attr:`Shape.BLOCK`, or an :class:`ArbitraryAscii` for
            :attr:`Shape.ASCII` (*kind* is ignored).

        Raises:
            MissingTerminator: If a required terminator is absent.
            MalformedValue: If an element cannot be decoded.
            TruncatedBlock: If a block payload is shorter than declared.
        """
        if shape is Shape.BLOCK:
            return self.parse_block(raw)
        body = self.strip_terminator(raw)
        if shape is Shape.ASCII:
            return decode_arbitrary_ascii(body)
        if shape is Shape.LIST:
            return self.parse_list(body, kind)
        elements = split_data(body, b",")
        if len(elements) != 1:
            raise MalformedValue(f"Expected one data element, got {len(elements)}", raw)
        return self._decode(elements[0], kind)

    def parse_list(self, body: bytes, kind: ValueKind = ValueKind.ANY) -> tuple[Parameter, ...]:
        """Parse an unterminated comma-separated element list.

        An empty body yields an empty tuple.
        """
        if not body.strip():
            return ()
        return tuple(self._decode(element, kind) for element in split_data(body, b","))

    def parse_block(self, raw: bytes) -> ArbitraryBlock:
        """Parse a block response, reading its declared length from the bytes.

        Anything after the payload must be whitespace or a terminator.

        Raises:
            TruncatedBlock: If fewer bytes are available than declared.
            MalformedValue: If the header is invalid or trailing data remains.
        """
        start = len(raw) - len(raw.lstrip())
        if raw[start + 1 : start + 2] == b"0":
            # Indefinite form: payload runs until the terminator.
            block, _ = read_block(self.strip_terminator(raw), start)
            return block
        block, end = read_block(raw, start)
        trailer = raw[end:]
        if trailer and trailer.strip(b"\r\n\t ") != b"":
            raise MalformedValue("Unexpected data after block payload", raw)
        return block

    def split_units(self, raw: bytes) -> list[bytes]:
        """Split a chained-query response on top-level ``;``.

        Returns:
            One unterminated body per response message unit.
        """
        return [unit.strip() for unit in split_data(self.strip_terminator(raw), b";")]

    def _decode(self, element: bytes, kind: ValueKind) -> Parameter:
        value = decode(element, kind)
        if self._ieee_sentinels and isinstance(value, Numeric) and isinstance(value.value, float):
            if value.value == IEEE_NAN:
                return Numeric(math.nan, value.suffix)
            if abs(value.value) == IEEE_INF:
                return Numeric(math.copysign(math.inf, value.value), value.suffix)
        return value
